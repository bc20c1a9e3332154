"""Tracking store backed by a local directory tree.

Layout::

    <root>/
        <experiment_id>/
            meta.yaml
            <run_id>/
                meta.yaml
                metrics/<key>     one "<timestamp> <value> <step>" line per logged value
                params/<key>      the param value
                tags/<key>        the tag value
        .trash/<experiment_id>/   deleted experiments
"""
import logging
import os
import shutil
import threading
import uuid
from typing import List, Optional

from mltrack.common.common import (DEFAULT_EXPERIMENT_ID, DEFAULT_EXPERIMENT_NAME,
                                   LifecycleStage, RunStatus, SourceType, ViewType,
                                   TAG_RUN_NAME)
from mltrack.common.yaml_utils import read_yaml, write_yaml
from mltrack.entities import Experiment, Metric, Param, Run, RunData, RunInfo, RunTag
from mltrack.exceptions import TrackingError, ErrorCode
from mltrack.store.abstract_store import AbstractStore
from mltrack.utils import validation
from mltrack.utils.search_utils import PagedList, SEARCH_MAX_RESULTS_DEFAULT, search
from mltrack.utils.uri import append_to_uri_path, local_path_from_uri

logger = logging.getLogger(__name__)


class FileStore(AbstractStore):
    TRASH_FOLDER_NAME = ".trash"
    ARTIFACTS_FOLDER_NAME = "artifacts"
    METRICS_FOLDER_NAME = "metrics"
    PARAMS_FOLDER_NAME = "params"
    TAGS_FOLDER_NAME = "tags"
    META_DATA_FILE_NAME = "meta.yaml"

    def __init__(self, root_directory: str, artifact_root_uri: Optional[str] = None):
        """
        Args:
            root_directory: Local path or ``file://`` URI holding the metadata
            artifact_root_uri: Default artifact root for new experiments,
                defaults to the root directory itself
        """
        self.root_directory = local_path_from_uri(root_directory)
        self.artifact_root_uri = artifact_root_uri or self.root_directory
        self.trash_folder = os.path.join(self.root_directory, FileStore.TRASH_FOLDER_NAME)
        self._lock = threading.RLock()

        os.makedirs(self.root_directory, exist_ok=True)
        os.makedirs(self.trash_folder, exist_ok=True)
        if not self._has_experiment(DEFAULT_EXPERIMENT_ID):
            self._create_experiment_with_id(DEFAULT_EXPERIMENT_NAME, DEFAULT_EXPERIMENT_ID,
                                            self._default_artifact_location(DEFAULT_EXPERIMENT_ID))
        logger.debug(f"FileStore ready at {self.root_directory}")

    # ========================
    # Paths
    # ========================

    def _default_artifact_location(self, experiment_id: str) -> str:
        return append_to_uri_path(self.artifact_root_uri, str(experiment_id))

    def _experiment_ids(self, folder: str) -> List[str]:
        if not os.path.isdir(folder):
            return []
        return [d for d in os.listdir(folder)
                if d.isdigit() and os.path.isdir(os.path.join(folder, d))]

    def _get_active_experiment_ids(self) -> List[str]:
        return self._experiment_ids(self.root_directory)

    def _get_deleted_experiment_ids(self) -> List[str]:
        return self._experiment_ids(self.trash_folder)

    def _has_experiment(self, experiment_id: str) -> bool:
        return self._get_experiment_path(experiment_id) is not None

    def _get_experiment_path(self, experiment_id: str, view_type: ViewType = ViewType.ALL) -> Optional[str]:
        experiment_id = str(experiment_id)
        if not experiment_id.isdigit():
            return None
        parents = []
        if view_type in (ViewType.ACTIVE_ONLY, ViewType.ALL):
            parents.append(self.root_directory)
        if view_type in (ViewType.DELETED_ONLY, ViewType.ALL):
            parents.append(self.trash_folder)
        for parent in parents:
            path = os.path.join(parent, experiment_id)
            if os.path.exists(os.path.join(path, FileStore.META_DATA_FILE_NAME)):
                return path
        return None

    def _get_run_dir(self, experiment_id: str, run_id: str) -> Optional[str]:
        experiment_path = self._get_experiment_path(experiment_id)
        if experiment_path is None:
            return None
        return os.path.join(experiment_path, run_id)

    def _find_run_root(self, run_id: str):
        """Locate a run across all experiments, returns ``(experiment_id, run_dir)``."""
        validation.validate_run_id(run_id)
        for parent in (self.root_directory, self.trash_folder):
            for experiment_id in self._experiment_ids(parent):
                run_dir = os.path.join(parent, experiment_id, run_id)
                if os.path.exists(os.path.join(run_dir, FileStore.META_DATA_FILE_NAME)):
                    return experiment_id, run_dir
        return None, None

    def _get_run_dir_or_raise(self, run_id: str) -> str:
        _, run_dir = self._find_run_root(run_id)
        if run_dir is None:
            raise TrackingError(f"Run '{run_id}' not found", ErrorCode.RESOURCE_DOES_NOT_EXIST)
        return run_dir

    # ========================
    # Experiments
    # ========================

    def list_experiments(self, view_type: ViewType = ViewType.ACTIVE_ONLY) -> List[Experiment]:
        view_type = ViewType.from_string(view_type)
        ids = []
        if view_type in (ViewType.ACTIVE_ONLY, ViewType.ALL):
            ids.extend(self._get_active_experiment_ids())
        if view_type in (ViewType.DELETED_ONLY, ViewType.ALL):
            ids.extend(self._get_deleted_experiment_ids())

        experiments = []
        for experiment_id in sorted(set(ids), key=int):
            try:
                experiments.append(self.get_experiment(experiment_id))
            except TrackingError as e:
                logger.warning(f"Malformed experiment '{experiment_id}': {e}")
        return experiments

    def _create_experiment_with_id(self, name: str, experiment_id: str, artifact_location: str) -> str:
        meta_dir = os.path.join(self.root_directory, str(experiment_id))
        os.makedirs(meta_dir, exist_ok=True)
        experiment = Experiment(experiment_id=str(experiment_id),
                                name=name,
                                artifact_location=artifact_location,
                                lifecycle_stage=LifecycleStage.ACTIVE.value)
        write_yaml(os.path.join(meta_dir, FileStore.META_DATA_FILE_NAME), experiment.to_dict())
        return str(experiment_id)

    def create_experiment(self, name: str, artifact_location: Optional[str] = None) -> str:
        validation.validate_experiment_name(name)
        with self._lock:
            existing = self.get_experiment_by_name(name)
            if existing is not None:
                if existing.lifecycle_stage == LifecycleStage.DELETED.value:
                    raise TrackingError(
                        f"Experiment '{name}' already exists in deleted state. You can restore "
                        f"the experiment, or permanently delete it from the "
                        f"'{FileStore.TRASH_FOLDER_NAME}' folder under the root directory.",
                        ErrorCode.RESOURCE_ALREADY_EXISTS)
                raise TrackingError(f"Experiment '{name}' already exists.",
                                    ErrorCode.RESOURCE_ALREADY_EXISTS)

            all_ids = [int(e) for e in self._get_active_experiment_ids() + self._get_deleted_experiment_ids()]
            experiment_id = str(max(all_ids) + 1 if all_ids else 0)
            location = artifact_location or self._default_artifact_location(experiment_id)
            self._create_experiment_with_id(name, experiment_id, location)
        logger.info(f"Created experiment '{name}' with id {experiment_id}")
        return experiment_id

    def get_experiment(self, experiment_id: str) -> Experiment:
        experiment_path = self._get_experiment_path(experiment_id)
        if experiment_path is None:
            raise TrackingError(f"Could not find experiment with ID {experiment_id}",
                                ErrorCode.RESOURCE_DOES_NOT_EXIST)
        meta = read_yaml(os.path.join(experiment_path, FileStore.META_DATA_FILE_NAME))
        if str(meta.get("experiment_id")) != str(experiment_id):
            raise TrackingError(f"Experiment ID mismatch for '{experiment_path}'. "
                                f"Directory is {experiment_id}, metadata says {meta.get('experiment_id')}",
                                ErrorCode.INTERNAL_ERROR)
        experiment = Experiment.from_dict(meta)
        in_trash = os.path.dirname(experiment_path) == self.trash_folder
        experiment.lifecycle_stage = LifecycleStage.DELETED.value if in_trash \
            else LifecycleStage.ACTIVE.value
        return experiment

    def delete_experiment(self, experiment_id: str) -> None:
        with self._lock:
            experiment_path = self._get_experiment_path(experiment_id, ViewType.ACTIVE_ONLY)
            if experiment_path is None:
                if self._get_experiment_path(experiment_id, ViewType.DELETED_ONLY) is not None:
                    raise TrackingError(f"Cannot delete experiment {experiment_id}, it is already deleted",
                                        ErrorCode.INVALID_STATE)
                raise TrackingError(f"Could not find experiment with ID {experiment_id}",
                                    ErrorCode.RESOURCE_DOES_NOT_EXIST)
            self._update_experiment_meta(experiment_path, lifecycle_stage=LifecycleStage.DELETED.value)
            shutil.move(experiment_path, os.path.join(self.trash_folder, str(experiment_id)))
        logger.info(f"Deleted experiment {experiment_id}")

    def restore_experiment(self, experiment_id: str) -> None:
        with self._lock:
            experiment_path = self._get_experiment_path(experiment_id, ViewType.DELETED_ONLY)
            if experiment_path is None:
                if self._get_experiment_path(experiment_id, ViewType.ACTIVE_ONLY) is not None:
                    raise TrackingError(f"Cannot restore experiment {experiment_id}, it is active",
                                        ErrorCode.INVALID_STATE)
                raise TrackingError(f"Could not find deleted experiment with ID {experiment_id}",
                                    ErrorCode.RESOURCE_DOES_NOT_EXIST)
            self._update_experiment_meta(experiment_path, lifecycle_stage=LifecycleStage.ACTIVE.value)
            shutil.move(experiment_path, os.path.join(self.root_directory, str(experiment_id)))
        logger.info(f"Restored experiment {experiment_id}")

    def rename_experiment(self, experiment_id: str, new_name: str) -> None:
        validation.validate_experiment_name(new_name)
        with self._lock:
            experiment = self.get_experiment(experiment_id)
            if experiment.lifecycle_stage != LifecycleStage.ACTIVE.value:
                raise TrackingError(f"Cannot rename experiment {experiment_id}, it is not active",
                                    ErrorCode.INVALID_STATE)
            other = self.get_experiment_by_name(new_name)
            if other is not None and other.experiment_id != experiment.experiment_id:
                raise TrackingError(f"Experiment '{new_name}' already exists.",
                                    ErrorCode.RESOURCE_ALREADY_EXISTS)
            self._update_experiment_meta(self._get_experiment_path(experiment_id), name=new_name)

    def _update_experiment_meta(self, experiment_path: str, **updates) -> None:
        meta_path = os.path.join(experiment_path, FileStore.META_DATA_FILE_NAME)
        meta = read_yaml(meta_path)
        meta.update(updates)
        write_yaml(meta_path, meta)

    # ========================
    # Runs
    # ========================

    def create_run(self, experiment_id: str, user_id: str, start_time: int,
                   tags: List[RunTag], run_name: Optional[str] = None,
                   source_type: str = "UNKNOWN", source_name: str = "",
                   entry_point_name: str = "", source_version: str = "") -> Run:
        validation.validate_experiment_id(experiment_id)
        experiment = self.get_experiment(experiment_id)
        if experiment.lifecycle_stage != LifecycleStage.ACTIVE.value:
            raise TrackingError(f"Could not create run under non-active experiment with ID {experiment_id}.",
                                ErrorCode.INVALID_STATE)
        tags = list(tags or [])
        for tag in tags:
            validation.validate_tag(tag.key, tag.value)
        run_name = run_name or next((t.value for t in tags if t.key == TAG_RUN_NAME), "")

        run_id = uuid.uuid4().hex
        run_info = RunInfo(run_id=run_id,
                           experiment_id=experiment.experiment_id,
                           user_id=user_id or "",
                           status=RunStatus.RUNNING.name,
                           start_time=start_time,
                           end_time=None,
                           artifact_uri=append_to_uri_path(experiment.artifact_location, run_id,
                                                           FileStore.ARTIFACTS_FOLDER_NAME),
                           lifecycle_stage=LifecycleStage.ACTIVE.value,
                           run_name=run_name,
                           source_type=SourceType.from_string(source_type).name,
                           source_name=source_name or "",
                           entry_point_name=entry_point_name or "",
                           source_version=source_version or "")

        with self._lock:
            run_dir = self._get_run_dir(experiment.experiment_id, run_id)
            for folder in (FileStore.METRICS_FOLDER_NAME, FileStore.PARAMS_FOLDER_NAME,
                           FileStore.TAGS_FOLDER_NAME):
                os.makedirs(os.path.join(run_dir, folder), exist_ok=True)
            write_yaml(os.path.join(run_dir, FileStore.META_DATA_FILE_NAME), run_info.to_dict())
            for tag in tags:
                if tag.key != TAG_RUN_NAME:
                    self._write_tag(run_dir, tag)
            if run_name:
                self._write_tag(run_dir, RunTag(TAG_RUN_NAME, run_name))
        logger.debug(f"Created run {run_id} in experiment {experiment.experiment_id}")
        return self.get_run(run_id)

    def _get_run_info_from_dir(self, run_dir: str) -> RunInfo:
        meta = read_yaml(os.path.join(run_dir, FileStore.META_DATA_FILE_NAME))
        return RunInfo.from_dict(meta)

    def _check_run_is_active(self, run_dir: str) -> RunInfo:
        run_info = self._get_run_info_from_dir(run_dir)
        if run_info.lifecycle_stage != LifecycleStage.ACTIVE.value:
            raise TrackingError(f"The run {run_info.run_id} must be in the 'active' state. "
                                f"Current state is {run_info.lifecycle_stage}.",
                                ErrorCode.INVALID_STATE)
        return run_info

    def get_run(self, run_id: str) -> Run:
        run_dir = self._get_run_dir_or_raise(run_id)
        return self._get_run_from_dir(run_dir)

    def _get_run_from_dir(self, run_dir: str) -> Run:
        run_info = self._get_run_info_from_dir(run_dir)
        metrics = []
        for key in self._list_keys(run_dir, FileStore.METRICS_FOLDER_NAME):
            metrics.extend(self._read_metric_history(run_dir, key))
        params = [Param(key, self._read_value(run_dir, FileStore.PARAMS_FOLDER_NAME, key))
                  for key in self._list_keys(run_dir, FileStore.PARAMS_FOLDER_NAME)]
        tags = [RunTag(key, self._read_value(run_dir, FileStore.TAGS_FOLDER_NAME, key))
                for key in self._list_keys(run_dir, FileStore.TAGS_FOLDER_NAME)]
        return Run(info=run_info, data=RunData.from_entities(metrics, params, tags))

    def update_run_info(self, run_id: str, run_status: str, end_time: Optional[int]) -> RunInfo:
        status = RunStatus.from_string(run_status).name
        with self._lock:
            run_dir = self._get_run_dir_or_raise(run_id)
            run_info = self._check_run_is_active(run_dir)
            run_info.status = status
            run_info.end_time = end_time
            write_yaml(os.path.join(run_dir, FileStore.META_DATA_FILE_NAME), run_info.to_dict())
        return run_info

    def _set_run_lifecycle(self, run_id: str, stage: LifecycleStage) -> None:
        with self._lock:
            run_dir = self._get_run_dir_or_raise(run_id)
            run_info = self._get_run_info_from_dir(run_dir)
            run_info.lifecycle_stage = stage.value
            write_yaml(os.path.join(run_dir, FileStore.META_DATA_FILE_NAME), run_info.to_dict())

    def delete_run(self, run_id: str) -> None:
        self._set_run_lifecycle(run_id, LifecycleStage.DELETED)

    def restore_run(self, run_id: str) -> None:
        self._set_run_lifecycle(run_id, LifecycleStage.ACTIVE)

    # ========================
    # Metrics, params and tags
    # ========================

    @staticmethod
    def _list_keys(run_dir: str, folder: str) -> List[str]:
        root = os.path.join(run_dir, folder)
        keys = []
        for dirpath, _, filenames in os.walk(root):
            for filename in filenames:
                full = os.path.join(dirpath, filename)
                keys.append(os.path.relpath(full, root).replace(os.sep, "/"))
        return sorted(keys)

    @staticmethod
    def _read_value(run_dir: str, folder: str, key: str) -> str:
        with open(os.path.join(run_dir, folder, key), "r", encoding="utf-8") as f:
            return f.read()

    @staticmethod
    def _key_conflict(folder: str, key: str, error: OSError) -> TrackingError:
        # "a" and "a/b" cannot both exist on disk
        return TrackingError(f"Cannot write {folder[:-1]} '{key}', it conflicts with an existing "
                             f"{folder[:-1]} key: {error}", ErrorCode.INVALID_PARAMETER_VALUE)

    @staticmethod
    def _write_value(run_dir: str, folder: str, key: str, value: str) -> None:
        path = os.path.join(run_dir, folder, key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(value)
        except (FileExistsError, NotADirectoryError, IsADirectoryError) as e:
            raise FileStore._key_conflict(folder, key, e) from e

    def _write_tag(self, run_dir: str, tag: RunTag) -> None:
        self._write_value(run_dir, FileStore.TAGS_FOLDER_NAME, tag.key, str(tag.value))

    def _set_tag_locked(self, run_dir: str, tag: RunTag) -> None:
        """Write a tag, keeping ``run_name`` in meta.yaml equal to the run name tag."""
        self._write_tag(run_dir, tag)
        if tag.key == TAG_RUN_NAME:
            run_info = self._get_run_info_from_dir(run_dir)
            run_info.run_name = str(tag.value)
            write_yaml(os.path.join(run_dir, FileStore.META_DATA_FILE_NAME), run_info.to_dict())

    @staticmethod
    def _parse_metric_line(key: str, line: str) -> Metric:
        parts = line.strip().split(" ")
        if len(parts) not in (2, 3):
            raise TrackingError(f"Metric '{key}' is malformed; persisted metric data contained "
                                f"{len(parts)} fields. Expected 2 or 3 fields.",
                                ErrorCode.INTERNAL_ERROR)
        step = int(parts[2]) if len(parts) == 3 else 0
        return Metric(key=key, value=float(parts[1]), timestamp=int(parts[0]), step=step)

    def _read_metric_history(self, run_dir: str, key: str) -> List[Metric]:
        path = os.path.join(run_dir, FileStore.METRICS_FOLDER_NAME, key)
        if not os.path.isfile(path):
            return []
        with open(path, "r", encoding="utf-8") as f:
            return [self._parse_metric_line(key, line) for line in f if line.strip()]

    def log_metric(self, run_id: str, metric: Metric) -> None:
        validation.validate_metric(metric.key, metric.value, metric.timestamp, metric.step)
        run_dir = self._get_run_dir_or_raise(run_id)
        self._check_run_is_active(run_dir)
        self._append_metric(run_dir, metric)

    def _append_metric(self, run_dir: str, metric: Metric) -> None:
        path = os.path.join(run_dir, FileStore.METRICS_FOLDER_NAME, metric.key)
        # one write call per line so concurrent appenders never interleave within a line
        line = f"{metric.timestamp} {float(metric.value)!r} {metric.step}\n"
        with self._lock:
            try:
                os.makedirs(os.path.dirname(path), exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line)
            except (FileExistsError, NotADirectoryError, IsADirectoryError) as e:
                raise self._key_conflict(FileStore.METRICS_FOLDER_NAME, metric.key, e) from e

    def log_param(self, run_id: str, param: Param) -> None:
        validation.validate_param(param.key, param.value)
        run_dir = self._get_run_dir_or_raise(run_id)
        with self._lock:
            self._check_run_is_active(run_dir)
            self._log_param_locked(run_id, run_dir, param)

    def _log_param_locked(self, run_id: str, run_dir: str, param: Param) -> None:
        path = os.path.join(run_dir, FileStore.PARAMS_FOLDER_NAME, param.key)
        old_value = self._read_value(run_dir, FileStore.PARAMS_FOLDER_NAME, param.key) \
            if os.path.isfile(path) else None
        validation.validate_param_unchanged(param.key, old_value, param.value, run_id)
        if old_value is None:
            self._write_value(run_dir, FileStore.PARAMS_FOLDER_NAME, param.key, str(param.value))

    def set_tag(self, run_id: str, tag: RunTag) -> None:
        validation.validate_tag(tag.key, tag.value)
        run_dir = self._get_run_dir_or_raise(run_id)
        with self._lock:
            self._check_run_is_active(run_dir)
            self._set_tag_locked(run_dir, tag)

    def delete_tag(self, run_id: str, key: str) -> None:
        validation.validate_key_name(key, "tag")
        run_dir = self._get_run_dir_or_raise(run_id)
        self._check_run_is_active(run_dir)
        path = os.path.join(run_dir, FileStore.TAGS_FOLDER_NAME, key)
        with self._lock:
            if not os.path.isfile(path):
                raise TrackingError(f"No tag with name: {key} in run with id {run_id}",
                                    ErrorCode.RESOURCE_DOES_NOT_EXIST)
            os.remove(path)

    def log_batch(self, run_id: str, metrics: List[Metric],
                  params: List[Param], tags: List[RunTag]) -> None:
        validation.validate_batch(metrics, params, tags)
        run_dir = self._get_run_dir_or_raise(run_id)
        with self._lock:
            self._check_run_is_active(run_dir)
            # check every param before writing anything
            for param in params:
                path = os.path.join(run_dir, FileStore.PARAMS_FOLDER_NAME, param.key)
                if os.path.isfile(path):
                    old_value = self._read_value(run_dir, FileStore.PARAMS_FOLDER_NAME, param.key)
                    validation.validate_param_unchanged(param.key, old_value, param.value, run_id)
            for param in params:
                self._log_param_locked(run_id, run_dir, param)
            for metric in metrics:
                self._append_metric(run_dir, metric)
            for tag in tags:
                self._set_tag_locked(run_dir, tag)

    def get_metric_history(self, run_id: str, metric_key: str) -> List[Metric]:
        validation.validate_key_name(metric_key, "metric")
        run_dir = self._get_run_dir_or_raise(run_id)
        return self._read_metric_history(run_dir, metric_key)

    # ========================
    # Search
    # ========================

    def _list_runs(self, experiment_id: str, view_type: ViewType) -> List[Run]:
        experiment_path = self._get_experiment_path(experiment_id)
        if experiment_path is None:
            return []
        runs = []
        for name in os.listdir(experiment_path):
            run_dir = os.path.join(experiment_path, name)
            if not os.path.isfile(os.path.join(run_dir, FileStore.META_DATA_FILE_NAME)):
                continue
            try:
                run = self._get_run_from_dir(run_dir)
            except (TrackingError, OSError, ValueError, KeyError) as e:
                logger.warning(f"Malformed run '{run_dir}': {e}")
                continue
            if LifecycleStage.matches_view_type(view_type, run.info.lifecycle_stage):
                runs.append(run)
        return runs

    def search_runs(self, experiment_ids: List[str],
                    filter_string: Optional[str] = None,
                    run_view_type: ViewType = ViewType.ACTIVE_ONLY,
                    max_results: int = SEARCH_MAX_RESULTS_DEFAULT,
                    order_by: Optional[List[str]] = None,
                    page_token: Optional[str] = None) -> PagedList:
        run_view_type = ViewType.from_string(run_view_type)
        runs = []
        for experiment_id in experiment_ids:
            runs.extend(self._list_runs(str(experiment_id), run_view_type))
        return search(runs, filter_string, order_by, max_results, page_token)
