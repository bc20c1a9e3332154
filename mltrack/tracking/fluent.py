"""
Module level tracking API.

The fluent API keeps a stack of active runs for the current process.
Logging functions act on the top of the stack and start a run when none
is active::

    import mltrack

    mltrack.set_experiment("mnist")
    with mltrack.start_run(run_name="baseline"):
        mltrack.log_param("lr", 0.01)
        for epoch in range(10):
            mltrack.log_metric("loss", train_one_epoch(), step=epoch)
"""
import atexit
import logging
import os
import subprocess
import sys
from typing import Any, Dict, List, Optional

import pandas as pd

from mltrack.common.common import (DEFAULT_EXPERIMENT_ID, EnvVars, LifecycleStage, RunStatus,
                                   SourceType, ViewType, TAG_GIT_COMMIT, TAG_ENTRY_POINT,
                                   TAG_PARENT_RUN_ID, TAG_SOURCE_NAME, TAG_SOURCE_TYPE, TAG_USER)
from mltrack.entities import Experiment, Metric, Param, Run, RunInfo, RunTag
from mltrack.exceptions import TrackingError, ErrorCode
from mltrack.tracking.client import TrackingClient, _get_user_id
from mltrack.tracking.registry import get_tracking_uri, set_tracking_uri
from mltrack.utils import get_current_time_millis
from mltrack.utils.search_utils import SEARCH_MAX_RESULTS_THRESHOLD
from mltrack.utils.uri import append_to_uri_path

logger = logging.getLogger(__name__)

SEARCH_MAX_RESULTS_PANDAS = 100000

_active_run_stack: List["ActiveRun"] = []
_active_experiment_id: Optional[str] = None


class ActiveRun(Run):
    """
    A run started by :func:`start_run`.

    Used as a context manager, the run ends FINISHED when the block completes
    and FAILED when it raises. The exception is not suppressed.
    """

    def __init__(self, run: Run):
        Run.__init__(self, run.info, run.data)

    def __enter__(self) -> "ActiveRun":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        status = RunStatus.FINISHED if exc_type is None else RunStatus.FAILED
        end_run(status.name)
        return False


def _get_client() -> TrackingClient:
    return TrackingClient()


# ========================
# Experiments
# ========================

def set_experiment(experiment_name: str) -> Experiment:
    """
    Make ``experiment_name`` the active experiment, creating it when missing.

    Raises:
        TrackingError: INVALID_STATE when the experiment exists but is deleted
    """
    global _active_experiment_id
    client = _get_client()
    experiment = client.get_experiment_by_name(experiment_name)
    if experiment is None:
        logger.info(f"Experiment with name '{experiment_name}' does not exist. Creating a new experiment.")
        experiment = client.get_experiment(client.create_experiment(experiment_name))
    elif experiment.lifecycle_stage == LifecycleStage.DELETED.value:
        raise TrackingError(f"Cannot set a deleted experiment '{experiment_name}' as the active experiment. "
                            f"You can restore the experiment, or permanently delete it to create a new one.",
                            ErrorCode.INVALID_STATE)
    _active_experiment_id = experiment.experiment_id
    return experiment


def create_experiment(name: str, artifact_location: Optional[str] = None) -> str:
    return _get_client().create_experiment(name, artifact_location)


def get_experiment(experiment_id: str) -> Experiment:
    return _get_client().get_experiment(experiment_id)


def get_experiment_by_name(name: str) -> Optional[Experiment]:
    return _get_client().get_experiment_by_name(name)


def delete_experiment(experiment_id: str) -> None:
    _get_client().delete_experiment(experiment_id)


def _get_experiment_id() -> str:
    if _active_experiment_id is not None:
        return _active_experiment_id
    env_id = os.environ.get(EnvVars.EXPERIMENT_ID.value)
    if env_id:
        return env_id
    env_name = os.environ.get(EnvVars.EXPERIMENT_NAME.value)
    if env_name:
        experiment = _get_client().get_experiment_by_name(env_name)
        if experiment is None:
            raise TrackingError(f"Experiment '{env_name}' named by {EnvVars.EXPERIMENT_NAME.value} does not exist",
                                ErrorCode.RESOURCE_DOES_NOT_EXIST)
        return experiment.experiment_id
    return DEFAULT_EXPERIMENT_ID


# ========================
# Runs
# ========================

def _get_source_name() -> str:
    main_file = sys.argv[0] if sys.argv and sys.argv[0] else "<console>"
    return main_file


def _get_git_commit(path: str) -> Optional[str]:
    directory = path if os.path.isdir(path) else os.path.dirname(os.path.abspath(path))
    if not os.path.isdir(directory):
        return None
    try:
        result = subprocess.run(["git", "rev-parse", "HEAD"], cwd=directory,
                                capture_output=True, text=True, timeout=5, check=True)
    except (OSError, subprocess.SubprocessError):
        return None
    return result.stdout.strip() or None


def _resume_run(client: TrackingClient, run_id: str) -> Run:
    run = client.get_run(run_id)
    if run.info.lifecycle_stage == LifecycleStage.DELETED.value:
        raise TrackingError(f"Cannot start run with ID {run_id} because it is in the deleted state.",
                            ErrorCode.INVALID_STATE)
    client.store.update_run_info(run_id, RunStatus.RUNNING.name, None)
    return client.get_run(run_id)


def start_run(run_id: Optional[str] = None, experiment_id: Optional[str] = None,
              run_name: Optional[str] = None, nested: bool = False,
              source_name: Optional[str] = None, source_version: Optional[str] = None,
              entry_point_name: Optional[str] = None, source_type: Optional[str] = None,
              tags: Optional[Dict[str, Any]] = None) -> ActiveRun:
    """
    Start a new run, or resume ``run_id``, and make it the active run.

    Args:
        run_id: Existing run to resume; ``MLTRACK_RUN_ID`` is used when not given
        experiment_id: Experiment for a new run, see :func:`set_experiment`
        run_name: Name of a new run
        nested: Allow starting a child of the currently active run
        source_name: Name of the source file or project, ``sys.argv[0]`` by default
        source_version: Commit of the source, the git HEAD of the source by default
        entry_point_name: Project entry point
        source_type: One of the ``SourceType`` names, ``LOCAL`` by default
        tags: Extra tags for a new run

    Returns:
        ActiveRun: the run, usable as a context manager

    Raises:
        TrackingError: INVALID_STATE when a run is active and ``nested`` is False
    """
    if _active_run_stack and not nested:
        raise TrackingError(
            f"Run with UUID {_active_run_stack[0].info.run_id} is already active. To start a new run, "
            f"first end the current run with mltrack.end_run(). To start a nested run, "
            f"call start_run with nested=True",
            ErrorCode.INVALID_STATE)

    client = _get_client()
    existing_run_id = run_id or (None if _active_run_stack else os.environ.get(EnvVars.RUN_ID.value))
    if existing_run_id:
        run = _resume_run(client, existing_run_id)
    else:
        source_name = source_name or _get_source_name()
        source_type = SourceType.from_string(source_type or SourceType.LOCAL.name).name
        source_version = source_version or _get_git_commit(source_name) or ""
        user_tags = {k: str(v) for k, v in (tags or {}).items()}
        run_tags = {TAG_USER: _get_user_id(),
                    TAG_SOURCE_NAME: source_name,
                    TAG_SOURCE_TYPE: source_type}
        if source_version:
            run_tags[TAG_GIT_COMMIT] = source_version
        if entry_point_name:
            run_tags[TAG_ENTRY_POINT] = entry_point_name
        if _active_run_stack:
            run_tags[TAG_PARENT_RUN_ID] = _active_run_stack[-1].info.run_id
        run_tags.update(user_tags)

        run = client.create_run(experiment_id=str(experiment_id or _get_experiment_id()),
                                tags=run_tags,
                                run_name=run_name,
                                source_type=source_type,
                                source_name=source_name,
                                entry_point_name=entry_point_name or "",
                                source_version=source_version)
        logger.debug(f"Started run {run.info.run_id} in experiment {run.info.experiment_id}")

    active = ActiveRun(run)
    _active_run_stack.append(active)
    return active


def end_run(status: str = RunStatus.FINISHED.name) -> None:
    """End the active run, if any, with ``status``."""
    if not _active_run_stack:
        return
    run = _active_run_stack.pop()
    _get_client().set_terminated(run.info.run_id, status)


def _end_runs_at_exit() -> None:
    while _active_run_stack:
        end_run()


atexit.register(_end_runs_at_exit)


def active_run() -> Optional[ActiveRun]:
    return _active_run_stack[-1] if _active_run_stack else None


def _get_or_start_run() -> ActiveRun:
    if _active_run_stack:
        return _active_run_stack[-1]
    return start_run()


# ========================
# Logging
# ========================

def log_param(key: str, value: Any) -> None:
    _get_client().log_param(_get_or_start_run().info.run_id, key, value)


def log_params(params: Dict[str, Any]) -> None:
    run_id = _get_or_start_run().info.run_id
    _get_client().log_batch(run_id, params=[Param(k, str(v)) for k, v in params.items()])


def log_metric(key: str, value: float, step: Optional[int] = None) -> None:
    _get_client().log_metric(_get_or_start_run().info.run_id, key, value,
                             get_current_time_millis(), step or 0)


def log_metrics(metrics: Dict[str, float], step: Optional[int] = None) -> None:
    run_id = _get_or_start_run().info.run_id
    timestamp = get_current_time_millis()
    _get_client().log_batch(run_id, metrics=[Metric(k, v, timestamp, step or 0) for k, v in metrics.items()])


def set_tag(key: str, value: Any) -> None:
    _get_client().set_tag(_get_or_start_run().info.run_id, key, value)


def set_tags(tags: Dict[str, Any]) -> None:
    run_id = _get_or_start_run().info.run_id
    _get_client().log_batch(run_id, tags=[RunTag(k, str(v)) for k, v in tags.items()])


def delete_tag(key: str) -> None:
    _get_client().delete_tag(_get_or_start_run().info.run_id, key)


def log_artifact(local_path: str, artifact_path: Optional[str] = None) -> None:
    _get_client().log_artifact(_get_or_start_run().info.run_id, local_path, artifact_path)


def log_artifacts(local_dir: str, artifact_path: Optional[str] = None) -> None:
    _get_client().log_artifacts(_get_or_start_run().info.run_id, local_dir, artifact_path)


def get_artifact_uri(artifact_path: Optional[str] = None) -> str:
    """Absolute URI of ``artifact_path`` in the active run's artifact store."""
    artifact_uri = _get_or_start_run().info.artifact_uri
    return append_to_uri_path(artifact_uri, artifact_path) if artifact_path else artifact_uri


# ========================
# Search
# ========================

def runs_to_dataframe(runs: List[Run]) -> pd.DataFrame:
    info_columns = ["run_id", "experiment_id", "status", "artifact_uri", "start_time", "end_time"]
    rows = []
    for run in runs:
        row = {
            "run_id": run.info.run_id,
            "experiment_id": run.info.experiment_id,
            "status": run.info.status,
            "artifact_uri": run.info.artifact_uri,
            "start_time": pd.to_datetime(run.info.start_time, unit="ms", utc=True),
            "end_time": pd.to_datetime(run.info.end_time, unit="ms", utc=True)
            if run.info.end_time is not None else pd.NaT,
        }
        row.update({f"metrics.{k}": v for k, v in run.data.metrics.items()})
        row.update({f"params.{k}": v for k, v in run.data.params.items()})
        row.update({f"tags.{k}": v for k, v in run.data.tags.items()})
        rows.append(row)
    if not rows:
        return pd.DataFrame(columns=info_columns)
    data_columns = sorted({c for row in rows for c in row} - set(info_columns))
    return pd.DataFrame(rows, columns=info_columns + data_columns)


def search_runs(experiment_ids: Optional[List[str]] = None, filter_string: Optional[str] = None,
                run_view_type: ViewType = ViewType.ACTIVE_ONLY,
                max_results: int = SEARCH_MAX_RESULTS_PANDAS,
                order_by: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Search runs and return them as a pandas DataFrame.

    Each row is a run with ``run_id``, ``experiment_id``, ``status``,
    ``artifact_uri``, ``start_time`` and ``end_time`` columns, plus one
    ``metrics.<key>``, ``params.<key>`` and ``tags.<key>`` column per key
    found in any of the runs.

    Args:
        experiment_ids: Experiments to search, the active experiment when None
    """
    if not experiment_ids:
        experiment_ids = [_get_experiment_id()]
    client = _get_client()
    runs: List[Run] = []
    token = None
    while len(runs) < max_results:
        page_size = min(max_results - len(runs), SEARCH_MAX_RESULTS_THRESHOLD)
        page = client.search_runs(experiment_ids, filter_string, run_view_type,
                                  page_size, order_by, token)
        runs.extend(page)
        token = page.token
        if not token:
            break
    return runs_to_dataframe(runs)


def list_run_infos(experiment_id: str, run_view_type: ViewType = ViewType.ACTIVE_ONLY) -> List[RunInfo]:
    return _get_client().list_run_infos(experiment_id, run_view_type)


__all__ = [
    "ActiveRun",
    "active_run",
    "create_experiment",
    "delete_experiment",
    "delete_tag",
    "end_run",
    "get_artifact_uri",
    "get_experiment",
    "get_experiment_by_name",
    "get_tracking_uri",
    "list_run_infos",
    "log_artifact",
    "log_artifacts",
    "log_metric",
    "log_metrics",
    "log_param",
    "log_params",
    "search_runs",
    "set_experiment",
    "set_tag",
    "set_tags",
    "set_tracking_uri",
    "start_run",
]
