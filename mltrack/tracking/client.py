import getpass
import logging
from typing import Dict, List, Optional

from mltrack.common.common import RunStatus, SourceType, ViewType, TAG_USER
from mltrack.entities import Experiment, FileInfo, Metric, Param, Run, RunInfo, RunTag
from mltrack.store.artifact.artifact_repository_registry import get_artifact_repository
from mltrack.tracking.registry import get_tracking_store, get_tracking_uri
from mltrack.utils import get_current_time_millis
from mltrack.utils.search_utils import PagedList, SEARCH_MAX_RESULTS_DEFAULT

logger = logging.getLogger(__name__)


def _get_user_id() -> str:
    try:
        return getpass.getuser()
    except (ImportError, KeyError, OSError):
        return "unknown"


class TrackingClient:
    """
    Explicit client for a tracking server or store.

    Unlike the module level fluent API, every method takes the ids it works
    on and no run is ever implicitly active.
    """

    def __init__(self, tracking_uri: Optional[str] = None, store=None):
        """
        Args:
            tracking_uri: Address of the tracking store, the current tracking URI when None
            store: A ready made store to use instead of building one from the URI
        """
        self.tracking_uri = tracking_uri or get_tracking_uri()
        self.store = store if store is not None else get_tracking_store(self.tracking_uri)

    # ========================
    # Experiments
    # ========================

    def list_experiments(self, view_type: ViewType = ViewType.ACTIVE_ONLY) -> List[Experiment]:
        return self.store.list_experiments(ViewType.from_string(view_type))

    def get_experiment(self, experiment_id: str) -> Experiment:
        return self.store.get_experiment(str(experiment_id))

    def get_experiment_by_name(self, name: str) -> Optional[Experiment]:
        return self.store.get_experiment_by_name(name)

    def create_experiment(self, name: str, artifact_location: Optional[str] = None) -> str:
        """Create an experiment and return its id."""
        return self.store.create_experiment(name, artifact_location)

    def delete_experiment(self, experiment_id: str) -> None:
        self.store.delete_experiment(str(experiment_id))

    def restore_experiment(self, experiment_id: str) -> None:
        self.store.restore_experiment(str(experiment_id))

    def rename_experiment(self, experiment_id: str, new_name: str) -> None:
        self.store.rename_experiment(str(experiment_id), new_name)

    # ========================
    # Runs
    # ========================

    def create_run(self, experiment_id: str, start_time: Optional[int] = None,
                   tags: Optional[Dict[str, str]] = None, run_name: Optional[str] = None,
                   source_type: Optional[str] = None, source_name: str = "",
                   entry_point_name: str = "", source_version: str = "") -> Run:
        """
        Create a run in ``experiment_id``.

        The run starts in the RUNNING state; terminate it with :meth:`set_terminated`.
        """
        tags = dict(tags or {})
        user_id = tags.get(TAG_USER) or _get_user_id()
        return self.store.create_run(
            experiment_id=str(experiment_id),
            user_id=user_id,
            start_time=start_time or get_current_time_millis(),
            tags=[RunTag(k, str(v)) for k, v in tags.items()],
            run_name=run_name,
            source_type=SourceType.from_string(source_type or SourceType.UNKNOWN.name).name,
            source_name=source_name,
            entry_point_name=entry_point_name,
            source_version=source_version)

    def get_run(self, run_id: str) -> Run:
        return self.store.get_run(run_id)

    def list_run_infos(self, experiment_id: str,
                       run_view_type: ViewType = ViewType.ACTIVE_ONLY) -> List[RunInfo]:
        return self.store.list_run_infos(str(experiment_id), ViewType.from_string(run_view_type))

    def search_runs(self, experiment_ids: List[str], filter_string: Optional[str] = None,
                    run_view_type: ViewType = ViewType.ACTIVE_ONLY,
                    max_results: int = SEARCH_MAX_RESULTS_DEFAULT,
                    order_by: Optional[List[str]] = None,
                    page_token: Optional[str] = None) -> PagedList:
        if isinstance(experiment_ids, (str, int)):
            experiment_ids = [experiment_ids]
        return self.store.search_runs([str(e) for e in experiment_ids], filter_string,
                                      ViewType.from_string(run_view_type), max_results,
                                      order_by, page_token)

    def get_metric_history(self, run_id: str, key: str) -> List[Metric]:
        return self.store.get_metric_history(run_id, key)

    def log_metric(self, run_id: str, key: str, value: float,
                   timestamp: Optional[int] = None, step: Optional[int] = None) -> None:
        timestamp = timestamp if timestamp is not None else get_current_time_millis()
        self.store.log_metric(run_id, Metric(key, value, timestamp, step or 0))

    def log_param(self, run_id: str, key: str, value) -> None:
        self.store.log_param(run_id, Param(key, str(value)))

    def set_tag(self, run_id: str, key: str, value) -> None:
        self.store.set_tag(run_id, RunTag(key, str(value)))

    def delete_tag(self, run_id: str, key: str) -> None:
        self.store.delete_tag(run_id, key)

    def log_batch(self, run_id: str, metrics: Optional[List[Metric]] = None,
                  params: Optional[List[Param]] = None, tags: Optional[List[RunTag]] = None) -> None:
        self.store.log_batch(run_id, list(metrics or []), list(params or []), list(tags or []))

    def set_terminated(self, run_id: str, status: str = RunStatus.FINISHED.name,
                       end_time: Optional[int] = None) -> RunInfo:
        """Set a run's terminal status and end time (now, when not given)."""
        end_time = end_time if end_time is not None else get_current_time_millis()
        return self.store.update_run_info(run_id, RunStatus.from_string(status).name, end_time)

    def delete_run(self, run_id: str) -> None:
        self.store.delete_run(run_id)

    def restore_run(self, run_id: str) -> None:
        self.store.restore_run(run_id)

    # ========================
    # Artifacts
    # ========================

    def _get_artifact_repo(self, run_id: str):
        return get_artifact_repository(self.store.get_run(run_id).info.artifact_uri)

    def log_artifact(self, run_id: str, local_path: str, artifact_path: Optional[str] = None) -> None:
        """Upload a local file to the run's artifact store."""
        self._get_artifact_repo(run_id).log_artifact(local_path, artifact_path)

    def log_artifacts(self, run_id: str, local_dir: str, artifact_path: Optional[str] = None) -> None:
        """Upload the contents of a local directory to the run's artifact store."""
        self._get_artifact_repo(run_id).log_artifacts(local_dir, artifact_path)

    def list_artifacts(self, run_id: str, path: Optional[str] = None) -> List[FileInfo]:
        return self._get_artifact_repo(run_id).list_artifacts(path)

    def download_artifacts(self, run_id: str, path: str = "", dst_path: Optional[str] = None) -> str:
        """Download a run artifact (file or directory) and return its local path."""
        return self._get_artifact_repo(run_id).download_artifacts(path, dst_path)
