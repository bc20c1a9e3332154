"""
FastAPI tracking server.

The server exposes a tracking store over JSON endpoints under
``/api/2.0/mltrack``. It keeps metadata only: clients upload artifacts
straight to the artifact store named by each run's ``artifact_uri``, the
server merely lists them.
"""
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mltrack.common.common import EnvVars, ViewType
from mltrack.entities import Metric, Param, RunTag
from mltrack.exceptions import TrackingError, ErrorCode
from mltrack.server import schemas
from mltrack.store.abstract_store import AbstractStore
from mltrack.store.artifact.artifact_repository_registry import get_artifact_repository
from mltrack.tracking.registry import get_tracking_store
from mltrack.utils import get_current_time_millis

logger = logging.getLogger(__name__)

API_PREFIX = "/api/2.0/mltrack"


class TrackingJSONResponse(JSONResponse):
    """JSON response that keeps NaN and infinite metric values as bare tokens."""

    def render(self, content: Any) -> bytes:
        return json.dumps(content, ensure_ascii=False, allow_nan=True, separators=(",", ":")).encode("utf-8")


def _error_response(error: TrackingError) -> JSONResponse:
    return TrackingJSONResponse(status_code=error.get_http_status(), content=error.to_dict())


def get_store(request: Request) -> AbstractStore:
    return request.app.state.store


router = APIRouter(prefix=API_PREFIX)


# ========================
# Experiments
# ========================

@router.get("/experiments/list")
def list_experiments(view_type: str = ViewType.ACTIVE_ONLY.name, store: AbstractStore = Depends(get_store)):
    experiments = store.list_experiments(ViewType.from_string(view_type))
    return {"experiments": [e.to_dict() for e in experiments]}


@router.post("/experiments/create")
def create_experiment(body: schemas.CreateExperimentRequest, store: AbstractStore = Depends(get_store)):
    experiment_id = store.create_experiment(body.name, body.artifact_location)
    return {"experiment_id": experiment_id}


@router.get("/experiments/get")
def get_experiment(experiment_id: str, store: AbstractStore = Depends(get_store)):
    return {"experiment": store.get_experiment(experiment_id).to_dict()}


@router.get("/experiments/get-by-name")
def get_experiment_by_name(experiment_name: str, store: AbstractStore = Depends(get_store)):
    experiment = store.get_experiment_by_name(experiment_name)
    if experiment is None:
        raise TrackingError(f"Could not find experiment with name '{experiment_name}'",
                            ErrorCode.RESOURCE_DOES_NOT_EXIST)
    return {"experiment": experiment.to_dict()}


@router.post("/experiments/delete")
def delete_experiment(body: schemas.ExperimentIdRequest, store: AbstractStore = Depends(get_store)):
    store.delete_experiment(body.experiment_id)
    return {}


@router.post("/experiments/restore")
def restore_experiment(body: schemas.ExperimentIdRequest, store: AbstractStore = Depends(get_store)):
    store.restore_experiment(body.experiment_id)
    return {}


@router.post("/experiments/update")
def update_experiment(body: schemas.UpdateExperimentRequest, store: AbstractStore = Depends(get_store)):
    store.rename_experiment(body.experiment_id, body.new_name)
    return {}


# ========================
# Runs
# ========================

@router.post("/runs/create")
def create_run(body: schemas.CreateRunRequest, store: AbstractStore = Depends(get_store)):
    run = store.create_run(experiment_id=body.experiment_id,
                           user_id=body.user_id,
                           start_time=body.start_time or get_current_time_millis(),
                           tags=[RunTag(t.key, t.value) for t in body.tags],
                           run_name=body.run_name,
                           source_type=body.source_type,
                           source_name=body.source_name,
                           entry_point_name=body.entry_point_name,
                           source_version=body.source_version)
    return {"run": run.to_dict()}


@router.get("/runs/get")
def get_run(run_id: str, store: AbstractStore = Depends(get_store)):
    return {"run": store.get_run(run_id).to_dict()}


@router.post("/runs/update")
def update_run(body: schemas.UpdateRunRequest, store: AbstractStore = Depends(get_store)):
    run_info = store.update_run_info(body.run_id, body.status, body.end_time)
    return {"run_info": run_info.to_dict()}


@router.post("/runs/delete")
def delete_run(body: schemas.RunIdRequest, store: AbstractStore = Depends(get_store)):
    store.delete_run(body.run_id)
    return {}


@router.post("/runs/restore")
def restore_run(body: schemas.RunIdRequest, store: AbstractStore = Depends(get_store)):
    store.restore_run(body.run_id)
    return {}


@router.post("/runs/log-metric")
def log_metric(body: schemas.LogMetricRequest, store: AbstractStore = Depends(get_store)):
    store.log_metric(body.run_id, Metric(body.key, body.value, body.timestamp, body.step))
    return {}


@router.post("/runs/log-parameter")
def log_param(body: schemas.LogParamRequest, store: AbstractStore = Depends(get_store)):
    store.log_param(body.run_id, Param(body.key, body.value))
    return {}


@router.post("/runs/set-tag")
def set_tag(body: schemas.SetTagRequest, store: AbstractStore = Depends(get_store)):
    store.set_tag(body.run_id, RunTag(body.key, body.value))
    return {}


@router.post("/runs/delete-tag")
def delete_tag(body: schemas.DeleteTagRequest, store: AbstractStore = Depends(get_store)):
    store.delete_tag(body.run_id, body.key)
    return {}


@router.post("/runs/log-batch")
def log_batch(body: schemas.LogBatchRequest, store: AbstractStore = Depends(get_store)):
    store.log_batch(body.run_id,
                    metrics=[Metric(m.key, m.value, m.timestamp, m.step) for m in body.metrics],
                    params=[Param(p.key, p.value) for p in body.params],
                    tags=[RunTag(t.key, t.value) for t in body.tags])
    return {}


@router.post("/runs/search")
def search_runs(body: schemas.SearchRunsRequest, store: AbstractStore = Depends(get_store)):
    runs = store.search_runs(body.experiment_ids, body.filter,
                             ViewType.from_string(body.run_view_type),
                             body.max_results, body.order_by, body.page_token)
    return {"runs": [r.to_dict() for r in runs], "next_page_token": runs.token}


@router.get("/metrics/get-history")
def get_metric_history(run_id: str, metric_key: str, store: AbstractStore = Depends(get_store)):
    metrics = store.get_metric_history(run_id, metric_key)
    return {"metrics": [m.to_dict() for m in metrics]}


# ========================
# Artifacts
# ========================

@router.get("/artifacts/list")
def list_artifacts(run_id: str, path: Optional[str] = None, store: AbstractStore = Depends(get_store)):
    artifact_uri = store.get_run(run_id).info.artifact_uri
    files = get_artifact_repository(artifact_uri).list_artifacts(path)
    return {"root_uri": artifact_uri, "files": [f.to_dict() for f in files]}


def create_app(backend_store_uri: Optional[str] = None,
               default_artifact_root: Optional[str] = None,
               store: Optional[AbstractStore] = None) -> FastAPI:
    """
    Build the tracking server application.

    Args:
        backend_store_uri: URI of the store holding metadata (file path, sqlite:///, mysql://)
        default_artifact_root: Artifact root of new experiments
        store: A ready made store, used instead of building one from the URI
    """
    if store is None:
        store = get_tracking_store(backend_store_uri, default_artifact_root)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Tracking server started with {type(store).__name__} at {backend_store_uri}")
        yield
        logger.info("Tracking server shut down")

    app = FastAPI(title="mltrack tracking server",
                  description="Experiment and run metadata over JSON",
                  default_response_class=TrackingJSONResponse,
                  lifespan=lifespan)
    app.state.store = store
    app.include_router(router)

    @app.get("/health")
    def health():
        return {"status": "OK"}

    @app.exception_handler(TrackingError)
    async def tracking_error_handler(request: Request, exc: TrackingError):
        if exc.error_code == ErrorCode.INTERNAL_ERROR:
            logger.error(f"Internal error on {request.url.path}: {exc}")
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        message = "; ".join(f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}"
                            for e in exc.errors())
        return _error_response(TrackingError(f"Invalid request: {message}", ErrorCode.BAD_REQUEST))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error_response(TrackingError(f"No endpoint {request.method} {request.url.path}",
                                                 ErrorCode.ENDPOINT_NOT_FOUND))
        return TrackingJSONResponse(status_code=exc.status_code,
                                    content={"error_code": ErrorCode.BAD_REQUEST.name, "message": str(exc.detail)})

    return app


def create_app_from_env() -> FastAPI:
    """Application factory for uvicorn worker processes, configured by the CLI through the environment."""
    return create_app(os.environ.get(EnvVars.SERVER_BACKEND_STORE_URI.value),
                      os.environ.get(EnvVars.SERVER_DEFAULT_ARTIFACT_ROOT.value) or None)
