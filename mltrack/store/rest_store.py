import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from mltrack.common.common import EnvVars, ViewType
from mltrack.config import load_config
from mltrack.entities import Experiment, FileInfo, Metric, Param, Run, RunInfo, RunTag
from mltrack.exceptions import TrackingError, RestError, ErrorCode
from mltrack.store.abstract_store import AbstractStore
from mltrack.utils.search_utils import PagedList, SEARCH_MAX_RESULTS_DEFAULT

logger = logging.getLogger(__name__)

API_PREFIX = "/api/2.0/mltrack"
RETRY_STATUS_CODES = (429, 502, 503, 504)
BACKOFF_FACTOR = 0.5


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


@dataclass
class HostCreds:
    """Where a tracking server lives and how to authenticate with it."""
    host: str
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    verify: bool = True

    @classmethod
    def from_env(cls, host: str) -> "HostCreds":
        return cls(host=host,
                   token=os.environ.get(EnvVars.TRACKING_TOKEN.value),
                   username=os.environ.get(EnvVars.TRACKING_USERNAME.value),
                   password=os.environ.get(EnvVars.TRACKING_PASSWORD.value),
                   verify=not _env_flag(EnvVars.TRACKING_INSECURE_TLS.value))

    def auth_headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def basic_auth(self) -> Optional[httpx.BasicAuth]:
        if self.username and self.password and not self.token:
            return httpx.BasicAuth(self.username, self.password)
        return None


class RestStore(AbstractStore):
    """
    Client for a remote tracking server.

    Every store operation is one JSON request against the server's
    ``/api/2.0/mltrack`` endpoints. Error responses are turned back into
    :class:`RestError` carrying the server's error code.

    Args:
        host_creds: Server location and credentials, or a callable returning them
        client: Optional ``httpx.Client`` to send requests with
        max_retries: Retries on connection errors and retryable statuses,
            ``http.max_retries`` of the configuration by default
        timeout: Request timeout in seconds, ``http.timeout`` by default
    """

    def __init__(self, host_creds: Union[HostCreds, Callable[[], HostCreds]],
                 client: Optional[httpx.Client] = None,
                 max_retries: Optional[int] = None,
                 timeout: Optional[float] = None):
        self._get_host_creds = host_creds if callable(host_creds) else (lambda: host_creds)
        self._client = client
        self._owns_client = False
        self._client_lock = threading.Lock()
        if max_retries is None:
            max_retries = int(load_config().http.max_retries)
        if timeout is None:
            timeout = float(load_config().http.timeout)
        self.max_retries = max_retries
        self.timeout = timeout

    @property
    def client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(verify=self._get_host_creds().verify, timeout=self.timeout)
                self._owns_client = True
            return self._client

    def close(self) -> None:
        """Close the connection pool this store opened, an injected client is left open."""
        with self._client_lock:
            if self._client is not None and self._owns_client:
                self._client.close()
                self._client = None

    def __enter__(self) -> "RestStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _request(self, method: str, endpoint: str,
                 params: Optional[Dict[str, Any]] = None,
                 payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        creds = self._get_host_creds()
        url = f"{creds.host.rstrip('/')}{API_PREFIX}/{endpoint}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        headers = creds.auth_headers()
        content = None
        if payload is not None:
            # NaN and infinite metric values are sent as bare JSON tokens
            content = json.dumps(payload, allow_nan=True)
            headers["Content-Type"] = "application/json"

        response = None
        for attempt in range(self.max_retries + 1):
            try:
                response = self.client.request(method, url, params=params, content=content,
                                               headers=headers,
                                               auth=creds.basic_auth() or httpx.USE_CLIENT_DEFAULT,
                                               timeout=self.timeout)
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    raise TrackingError(f"API request to {url} failed after {attempt + 1} attempts: {e}") from e
                logger.warning(f"API request to {url} failed ({e}), retrying")
                time.sleep(BACKOFF_FACTOR * (2 ** attempt))
                continue
            if response.status_code in RETRY_STATUS_CODES and attempt < self.max_retries:
                logger.warning(f"API request to {url} returned {response.status_code}, retrying")
                time.sleep(BACKOFF_FACTOR * (2 ** attempt))
                continue
            break
        return self._verify_response(url, response)

    @staticmethod
    def _verify_response(url: str, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = None
        if response.status_code == 200:
            if body is None:
                raise TrackingError(f"API request to {url} returned a non JSON body: {response.text[:200]}")
            return body
        if isinstance(body, dict) and "error_code" in body:
            raise RestError(body)
        raise TrackingError(f"API request to {url} failed with error code "
                            f"{response.status_code} != 200. Response body: '{response.text[:200]}'")

    def _get(self, endpoint: str, **params) -> Dict[str, Any]:
        return self._request("GET", endpoint, params=params)

    def _post(self, endpoint: str, **payload) -> Dict[str, Any]:
        return self._request("POST", endpoint, payload=payload)

    # ========================
    # Experiments
    # ========================

    def list_experiments(self, view_type: ViewType = ViewType.ACTIVE_ONLY) -> List[Experiment]:
        body = self._get("experiments/list", view_type=ViewType.from_string(view_type).name)
        return [Experiment.from_dict(e) for e in body.get("experiments", [])]

    def create_experiment(self, name: str, artifact_location: Optional[str] = None) -> str:
        body = self._post("experiments/create", name=name, artifact_location=artifact_location)
        return str(body["experiment_id"])

    def get_experiment(self, experiment_id: str) -> Experiment:
        body = self._get("experiments/get", experiment_id=str(experiment_id))
        return Experiment.from_dict(body["experiment"])

    def get_experiment_by_name(self, experiment_name: str) -> Optional[Experiment]:
        try:
            body = self._get("experiments/get-by-name", experiment_name=experiment_name)
        except RestError as e:
            if e.error_code == ErrorCode.RESOURCE_DOES_NOT_EXIST:
                return None
            raise
        return Experiment.from_dict(body["experiment"])

    def delete_experiment(self, experiment_id: str) -> None:
        self._post("experiments/delete", experiment_id=str(experiment_id))

    def restore_experiment(self, experiment_id: str) -> None:
        self._post("experiments/restore", experiment_id=str(experiment_id))

    def rename_experiment(self, experiment_id: str, new_name: str) -> None:
        self._post("experiments/update", experiment_id=str(experiment_id), new_name=new_name)

    # ========================
    # Runs
    # ========================

    def create_run(self, experiment_id: str, user_id: str, start_time: int,
                   tags: List[RunTag], run_name: Optional[str] = None,
                   source_type: str = "UNKNOWN", source_name: str = "",
                   entry_point_name: str = "", source_version: str = "") -> Run:
        body = self._post("runs/create",
                          experiment_id=str(experiment_id),
                          user_id=user_id,
                          start_time=start_time,
                          tags=[t.to_dict() for t in tags or []],
                          run_name=run_name,
                          source_type=source_type,
                          source_name=source_name,
                          entry_point_name=entry_point_name,
                          source_version=source_version)
        return Run.from_dict(body["run"])

    def get_run(self, run_id: str) -> Run:
        return Run.from_dict(self._get("runs/get", run_id=run_id)["run"])

    def update_run_info(self, run_id: str, run_status: str, end_time: Optional[int]) -> RunInfo:
        body = self._post("runs/update", run_id=run_id, status=run_status, end_time=end_time)
        return RunInfo.from_dict(body["run_info"])

    def delete_run(self, run_id: str) -> None:
        self._post("runs/delete", run_id=run_id)

    def restore_run(self, run_id: str) -> None:
        self._post("runs/restore", run_id=run_id)

    def log_metric(self, run_id: str, metric: Metric) -> None:
        self._post("runs/log-metric", run_id=run_id, **metric.to_dict())

    def log_param(self, run_id: str, param: Param) -> None:
        self._post("runs/log-parameter", run_id=run_id, **param.to_dict())

    def set_tag(self, run_id: str, tag: RunTag) -> None:
        self._post("runs/set-tag", run_id=run_id, **tag.to_dict())

    def delete_tag(self, run_id: str, key: str) -> None:
        self._post("runs/delete-tag", run_id=run_id, key=key)

    def log_batch(self, run_id: str, metrics: List[Metric],
                  params: List[Param], tags: List[RunTag]) -> None:
        self._post("runs/log-batch", run_id=run_id,
                   metrics=[m.to_dict() for m in metrics or []],
                   params=[p.to_dict() for p in params or []],
                   tags=[t.to_dict() for t in tags or []])

    def get_metric_history(self, run_id: str, metric_key: str) -> List[Metric]:
        body = self._get("metrics/get-history", run_id=run_id, metric_key=metric_key)
        return [Metric.from_dict(m) for m in body.get("metrics", [])]

    def search_runs(self, experiment_ids: List[str],
                    filter_string: Optional[str] = None,
                    run_view_type: ViewType = ViewType.ACTIVE_ONLY,
                    max_results: int = SEARCH_MAX_RESULTS_DEFAULT,
                    order_by: Optional[List[str]] = None,
                    page_token: Optional[str] = None) -> PagedList:
        body = self._post("runs/search",
                          experiment_ids=[str(e) for e in experiment_ids],
                          filter=filter_string,
                          run_view_type=ViewType.from_string(run_view_type).name,
                          max_results=max_results,
                          order_by=order_by or [],
                          page_token=page_token)
        runs = [Run.from_dict(r) for r in body.get("runs", [])]
        return PagedList(runs, body.get("next_page_token"))

    # ========================
    # Artifacts
    # ========================

    def list_artifacts(self, run_id: str, path: Optional[str] = None) -> List[FileInfo]:
        """List a run's artifacts as seen by the server."""
        body = self._get("artifacts/list", run_id=run_id, path=path)
        return [FileInfo.from_dict(f) for f in body.get("files", [])]
