from abc import ABC, abstractmethod
from typing import List, Optional

from mltrack.common.common import ViewType
from mltrack.entities import Experiment, Metric, Param, Run, RunInfo, RunTag
from mltrack.utils.search_utils import PagedList, SEARCH_MAX_RESULTS_DEFAULT


class AbstractStore(ABC):
    """
    Abstract class for tracking stores.
    A store keeps experiment and run metadata; artifacts live in the
    artifact store named by each run's ``artifact_uri``.
    """

    @abstractmethod
    def list_experiments(self, view_type: ViewType = ViewType.ACTIVE_ONLY) -> List[Experiment]:
        pass

    @abstractmethod
    def create_experiment(self, name: str, artifact_location: Optional[str] = None) -> str:
        """Create an experiment and return its id."""
        pass

    @abstractmethod
    def get_experiment(self, experiment_id: str) -> Experiment:
        pass

    def get_experiment_by_name(self, experiment_name: str) -> Optional[Experiment]:
        for experiment in self.list_experiments(ViewType.ALL):
            if experiment.name == experiment_name:
                return experiment
        return None

    @abstractmethod
    def delete_experiment(self, experiment_id: str) -> None:
        pass

    @abstractmethod
    def restore_experiment(self, experiment_id: str) -> None:
        pass

    @abstractmethod
    def rename_experiment(self, experiment_id: str, new_name: str) -> None:
        pass

    @abstractmethod
    def create_run(self, experiment_id: str, user_id: str, start_time: int,
                   tags: List[RunTag], run_name: Optional[str] = None,
                   source_type: str = "UNKNOWN", source_name: str = "",
                   entry_point_name: str = "", source_version: str = "") -> Run:
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> Run:
        pass

    @abstractmethod
    def update_run_info(self, run_id: str, run_status: str, end_time: Optional[int]) -> RunInfo:
        pass

    @abstractmethod
    def delete_run(self, run_id: str) -> None:
        pass

    @abstractmethod
    def restore_run(self, run_id: str) -> None:
        pass

    @abstractmethod
    def log_metric(self, run_id: str, metric: Metric) -> None:
        pass

    @abstractmethod
    def log_param(self, run_id: str, param: Param) -> None:
        pass

    @abstractmethod
    def set_tag(self, run_id: str, tag: RunTag) -> None:
        pass

    @abstractmethod
    def delete_tag(self, run_id: str, key: str) -> None:
        pass

    @abstractmethod
    def get_metric_history(self, run_id: str, metric_key: str) -> List[Metric]:
        pass

    def log_batch(self, run_id: str, metrics: List[Metric],
                  params: List[Param], tags: List[RunTag]) -> None:
        """Log several entities at once; stores may override this to do it in one pass."""
        for param in params:
            self.log_param(run_id, param)
        for metric in metrics:
            self.log_metric(run_id, metric)
        for tag in tags:
            self.set_tag(run_id, tag)

    @abstractmethod
    def search_runs(self, experiment_ids: List[str],
                    filter_string: Optional[str] = None,
                    run_view_type: ViewType = ViewType.ACTIVE_ONLY,
                    max_results: int = SEARCH_MAX_RESULTS_DEFAULT,
                    order_by: Optional[List[str]] = None,
                    page_token: Optional[str] = None) -> PagedList:
        pass

    def list_run_infos(self, experiment_id: str,
                       run_view_type: ViewType = ViewType.ACTIVE_ONLY) -> List[RunInfo]:
        runs, token = [], None
        while True:
            page = self.search_runs([experiment_id], None, run_view_type,
                                    page_token=token)
            runs.extend(page)
            token = page.token
            if not token:
                break
        return [run.info for run in runs]
