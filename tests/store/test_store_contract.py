"""Behaviour shared by every tracking store: file, SQLite and REST (over a test server)."""
import math

import pytest
from fastapi.testclient import TestClient

from mltrack.common.common import (DEFAULT_EXPERIMENT_ID, DEFAULT_EXPERIMENT_NAME, LifecycleStage,
                                   RunStatus, ViewType, TAG_RUN_NAME)
from mltrack.entities import Metric, Param, RunTag
from mltrack.exceptions import TrackingError, ErrorCode
from mltrack.server.app import create_app
from mltrack.store.db_store import DatabaseStore
from mltrack.store.file_store import FileStore
from mltrack.store.rest_store import HostCreds, RestStore


@pytest.fixture(params=["file", "sqlite", "rest"])
def store(request, tmp_path):
    """Each contract test runs against every backend."""
    artifact_root = str(tmp_path / "artifacts")
    if request.param == "file":
        yield FileStore(str(tmp_path / "mlruns"), artifact_root)
    elif request.param == "sqlite":
        db_store = DatabaseStore(f"sqlite:///{tmp_path / 'mltrack.db'}", artifact_root)
        yield db_store
        db_store.db_manager.close()
    else:
        backend = FileStore(str(tmp_path / "server-mlruns"), artifact_root)
        with TestClient(create_app(store=backend)) as client:
            yield RestStore(HostCreds("http://testserver"), client=client, max_retries=0)


def _create_run(store, experiment_id=DEFAULT_EXPERIMENT_ID, start_time=1000, tags=None, run_name=None):
    return store.create_run(experiment_id=experiment_id, user_id="tester", start_time=start_time,
                            tags=tags or [], run_name=run_name)


class TestExperiments:
    def test_default_experiment_exists(self, store):
        experiment = store.get_experiment(DEFAULT_EXPERIMENT_ID)
        assert experiment.name == DEFAULT_EXPERIMENT_NAME
        assert experiment.lifecycle_stage == LifecycleStage.ACTIVE.value

    def test_create_and_get(self, store, tmp_path):
        experiment_id = store.create_experiment("exp-a")
        experiment = store.get_experiment(experiment_id)
        assert experiment.name == "exp-a"
        assert experiment.artifact_location.endswith(experiment_id)
        assert store.get_experiment_by_name("exp-a").experiment_id == experiment_id

    def test_explicit_artifact_location(self, store, tmp_path):
        location = str(tmp_path / "custom")
        experiment_id = store.create_experiment("exp-b", artifact_location=location)
        assert store.get_experiment(experiment_id).artifact_location == location

    def test_ids_are_distinct(self, store):
        ids = {store.create_experiment(f"exp-{i}") for i in range(3)}
        assert len(ids) == 3
        assert DEFAULT_EXPERIMENT_ID not in ids

    def test_duplicate_name_rejected(self, store):
        store.create_experiment("dup")
        with pytest.raises(TrackingError) as exc_info:
            store.create_experiment("dup")
        assert exc_info.value.error_code == ErrorCode.RESOURCE_ALREADY_EXISTS

    def test_duplicate_of_deleted_name_rejected(self, store):
        experiment_id = store.create_experiment("gone")
        store.delete_experiment(experiment_id)
        with pytest.raises(TrackingError) as exc_info:
            store.create_experiment("gone")
        assert exc_info.value.error_code == ErrorCode.RESOURCE_ALREADY_EXISTS

    def test_missing_experiment(self, store):
        with pytest.raises(TrackingError) as exc_info:
            store.get_experiment("424242")
        assert exc_info.value.error_code == ErrorCode.RESOURCE_DOES_NOT_EXIST
        assert store.get_experiment_by_name("nope") is None

    def test_delete_and_restore(self, store):
        experiment_id = store.create_experiment("cycle")
        store.delete_experiment(experiment_id)
        assert store.get_experiment(experiment_id).lifecycle_stage == LifecycleStage.DELETED.value
        active_ids = [e.experiment_id for e in store.list_experiments(ViewType.ACTIVE_ONLY)]
        deleted_ids = [e.experiment_id for e in store.list_experiments(ViewType.DELETED_ONLY)]
        all_ids = [e.experiment_id for e in store.list_experiments(ViewType.ALL)]
        assert experiment_id not in active_ids
        assert experiment_id in deleted_ids
        assert experiment_id in all_ids

        store.restore_experiment(experiment_id)
        assert store.get_experiment(experiment_id).lifecycle_stage == LifecycleStage.ACTIVE.value

    def test_delete_deleted_experiment(self, store):
        experiment_id = store.create_experiment("gone")
        store.delete_experiment(experiment_id)
        with pytest.raises(TrackingError) as exc_info:
            store.delete_experiment(experiment_id)
        assert exc_info.value.error_code == ErrorCode.INVALID_STATE

    def test_default_experiment_can_be_deleted(self, store):
        store.delete_experiment(DEFAULT_EXPERIMENT_ID)
        assert store.get_experiment(DEFAULT_EXPERIMENT_ID).lifecycle_stage == LifecycleStage.DELETED.value

    def test_restore_active_experiment_is_invalid(self, store):
        experiment_id = store.create_experiment("alive")
        with pytest.raises(TrackingError) as exc_info:
            store.restore_experiment(experiment_id)
        assert exc_info.value.error_code == ErrorCode.INVALID_STATE

    def test_rename(self, store):
        experiment_id = store.create_experiment("old-name")
        store.rename_experiment(experiment_id, "new-name")
        assert store.get_experiment(experiment_id).name == "new-name"
        assert store.get_experiment_by_name("old-name") is None

    def test_rename_to_taken_name(self, store):
        store.create_experiment("taken")
        experiment_id = store.create_experiment("other")
        with pytest.raises(TrackingError) as exc_info:
            store.rename_experiment(experiment_id, "taken")
        assert exc_info.value.error_code == ErrorCode.RESOURCE_ALREADY_EXISTS

    def test_rename_deleted_experiment(self, store):
        experiment_id = store.create_experiment("to-delete")
        store.delete_experiment(experiment_id)
        with pytest.raises(TrackingError) as exc_info:
            store.rename_experiment(experiment_id, "whatever")
        assert exc_info.value.error_code == ErrorCode.INVALID_STATE


class TestRuns:
    def test_create_run(self, store):
        experiment_id = store.create_experiment("runs")
        run = _create_run(store, experiment_id, tags=[RunTag("team", "vision")], run_name="first")
        assert len(run.info.run_id) == 32
        assert run.info.status == RunStatus.RUNNING.name
        assert run.info.end_time is None
        assert run.info.run_name == "first"
        assert run.info.experiment_id == experiment_id
        assert run.info.artifact_uri.endswith(f"{run.info.run_id}/artifacts")
        assert run.data.tags["team"] == "vision"
        assert run.data.tags[TAG_RUN_NAME] == "first"

        fetched = store.get_run(run.info.run_id)
        assert fetched.info == run.info

    def test_run_in_missing_experiment(self, store):
        with pytest.raises(TrackingError) as exc_info:
            _create_run(store, "987654")
        assert exc_info.value.error_code == ErrorCode.RESOURCE_DOES_NOT_EXIST

    def test_run_in_deleted_experiment(self, store):
        experiment_id = store.create_experiment("deleted-home")
        store.delete_experiment(experiment_id)
        with pytest.raises(TrackingError) as exc_info:
            _create_run(store, experiment_id)
        assert exc_info.value.error_code == ErrorCode.INVALID_STATE

    def test_missing_run(self, store):
        with pytest.raises(TrackingError) as exc_info:
            store.get_run("0123456789abcdef0123456789abcdef")
        assert exc_info.value.error_code == ErrorCode.RESOURCE_DOES_NOT_EXIST

    def test_terminate(self, store):
        run = _create_run(store)
        info = store.update_run_info(run.info.run_id, RunStatus.FINISHED.name, 2000)
        assert info.status == RunStatus.FINISHED.name
        assert info.end_time == 2000
        assert store.get_run(run.info.run_id).info.status == RunStatus.FINISHED.name

    def test_invalid_status(self, store):
        run = _create_run(store)
        with pytest.raises(TrackingError) as exc_info:
            store.update_run_info(run.info.run_id, "EXPLODED", 2000)
        assert exc_info.value.error_code == ErrorCode.INVALID_PARAMETER_VALUE

    def test_delete_and_restore_run(self, store):
        run = _create_run(store)
        run_id = run.info.run_id
        store.delete_run(run_id)
        assert store.get_run(run_id).info.lifecycle_stage == LifecycleStage.DELETED.value
        with pytest.raises(TrackingError) as exc_info:
            store.log_metric(run_id, Metric("loss", 1.0, 1000))
        assert exc_info.value.error_code == ErrorCode.INVALID_STATE

        store.restore_run(run_id)
        store.log_metric(run_id, Metric("loss", 1.0, 1000))
        assert store.get_run(run_id).info.lifecycle_stage == LifecycleStage.ACTIVE.value


class TestRunData:
    def test_metric_history_is_append_only(self, store):
        run_id = _create_run(store).info.run_id
        store.log_metric(run_id, Metric("loss", 0.9, 1000, 0))
        store.log_metric(run_id, Metric("loss", 0.5, 1001, 1))
        store.log_metric(run_id, Metric("loss", 0.5, 1001, 1))
        history = store.get_metric_history(run_id, "loss")
        assert [(m.value, m.step) for m in history] == [(0.9, 0), (0.5, 1), (0.5, 1)]
        assert store.get_run(run_id).data.metrics["loss"] == 0.5

    def test_latest_metric_uses_step_then_timestamp(self, store):
        run_id = _create_run(store).info.run_id
        store.log_metric(run_id, Metric("acc", 0.7, 3000, 5))
        store.log_metric(run_id, Metric("acc", 0.1, 4000, 1))
        assert store.get_run(run_id).data.metrics["acc"] == 0.7

    def test_unknown_metric_history_is_empty(self, store):
        run_id = _create_run(store).info.run_id
        assert store.get_metric_history(run_id, "never-logged") == []

    def test_non_finite_metric_values(self, store):
        run_id = _create_run(store).info.run_id
        store.log_metric(run_id, Metric("weird", float("nan"), 1000, 0))
        store.log_metric(run_id, Metric("weird", float("inf"), 1001, 1))
        history = store.get_metric_history(run_id, "weird")
        assert math.isnan(history[0].value)
        assert history[1].value == float("inf")

    def test_params_are_immutable(self, store):
        run_id = _create_run(store).info.run_id
        store.log_param(run_id, Param("lr", "0.01"))
        store.log_param(run_id, Param("lr", "0.01"))
        with pytest.raises(TrackingError) as exc_info:
            store.log_param(run_id, Param("lr", "0.1"))
        assert exc_info.value.error_code == ErrorCode.INVALID_PARAMETER_VALUE
        assert store.get_run(run_id).data.params == {"lr": "0.01"}

    def test_tags_are_mutable(self, store):
        run_id = _create_run(store).info.run_id
        store.set_tag(run_id, RunTag("stage", "train"))
        store.set_tag(run_id, RunTag("stage", "eval"))
        assert store.get_run(run_id).data.tags["stage"] == "eval"
        store.delete_tag(run_id, "stage")
        assert "stage" not in store.get_run(run_id).data.tags

    def test_delete_missing_tag(self, store):
        run_id = _create_run(store).info.run_id
        with pytest.raises(TrackingError) as exc_info:
            store.delete_tag(run_id, "absent")
        assert exc_info.value.error_code == ErrorCode.RESOURCE_DOES_NOT_EXIST

    def test_run_name_tag_renames_run(self, store):
        run_id = _create_run(store, run_name="before").info.run_id
        store.set_tag(run_id, RunTag(TAG_RUN_NAME, "after"))
        assert store.get_run(run_id).info.run_name == "after"

    def test_run_name_wins_over_conflicting_tag(self, store):
        run = _create_run(store, tags=[RunTag(TAG_RUN_NAME, "from-tag")], run_name="from-arg")
        for fetched in (run, store.get_run(run.info.run_id)):
            assert fetched.info.run_name == "from-arg"
            assert fetched.data.tags[TAG_RUN_NAME] == "from-arg"

    def test_run_name_tag_in_batch_renames_run(self, store):
        run_id = _create_run(store, run_name="before").info.run_id
        store.log_batch(run_id, metrics=[], params=[], tags=[RunTag(TAG_RUN_NAME, "after")])
        run = store.get_run(run_id)
        assert run.info.run_name == "after"
        assert run.data.tags[TAG_RUN_NAME] == "after"

    def test_invalid_key(self, store):
        run_id = _create_run(store).info.run_id
        with pytest.raises(TrackingError) as exc_info:
            store.log_param(run_id, Param("../escape", "x"))
        assert exc_info.value.error_code == ErrorCode.INVALID_PARAMETER_VALUE

    def test_log_batch(self, store):
        run_id = _create_run(store).info.run_id
        store.log_batch(run_id,
                        metrics=[Metric("m", 1.0, 1000, 0), Metric("m", 2.0, 1001, 1)],
                        params=[Param("p", "v")],
                        tags=[RunTag("t", "x")])
        run = store.get_run(run_id)
        assert run.data.metrics == {"m": 2.0}
        assert run.data.params == {"p": "v"}
        assert run.data.tags["t"] == "x"

    def test_log_batch_is_validated_up_front(self, store):
        run_id = _create_run(store).info.run_id
        store.log_param(run_id, Param("p", "v"))
        with pytest.raises(TrackingError):
            store.log_batch(run_id,
                            metrics=[Metric("m", 1.0, 1000, 0)],
                            params=[Param("p", "changed")],
                            tags=[])
        assert store.get_metric_history(run_id, "m") == []

    def test_log_batch_limits(self, store):
        run_id = _create_run(store).info.run_id
        params = [Param(f"p{i}", "v") for i in range(101)]
        with pytest.raises(TrackingError) as exc_info:
            store.log_batch(run_id, metrics=[], params=params, tags=[])
        assert exc_info.value.error_code == ErrorCode.INVALID_PARAMETER_VALUE


class TestSearch:
    @pytest.fixture
    def populated(self, store):
        experiment_id = store.create_experiment("search")
        run_ids = []
        for i, (acc, model) in enumerate([(0.5, "cnn"), (0.9, "cnn"), (0.7, "mlp")]):
            run_id = _create_run(store, experiment_id, start_time=1000 + i, run_name=f"run-{i}").info.run_id
            store.log_metric(run_id, Metric("acc", acc, 2000))
            store.log_param(run_id, Param("model", model))
            run_ids.append(run_id)
        return store, experiment_id, run_ids

    def test_default_order_is_newest_first(self, populated):
        store, experiment_id, run_ids = populated
        runs = store.search_runs([experiment_id])
        assert [r.info.run_id for r in runs] == list(reversed(run_ids))
        assert runs.token is None

    def test_filter(self, populated):
        store, experiment_id, run_ids = populated
        runs = store.search_runs([experiment_id], "metrics.acc > 0.6 and params.model = 'cnn'")
        assert [r.info.run_id for r in runs] == [run_ids[1]]

    def test_order_by_metric(self, populated):
        store, experiment_id, run_ids = populated
        runs = store.search_runs([experiment_id], order_by=["metrics.acc ASC"])
        assert [r.info.run_id for r in runs] == [run_ids[0], run_ids[2], run_ids[1]]

    def test_paging(self, populated):
        store, experiment_id, run_ids = populated
        first = store.search_runs([experiment_id], max_results=2)
        assert len(first) == 2
        assert first.token is not None
        second = store.search_runs([experiment_id], max_results=2, page_token=first.token)
        assert [r.info.run_id for r in first] + [r.info.run_id for r in second] == list(reversed(run_ids))
        assert second.token is None

    def test_view_type(self, populated):
        store, experiment_id, run_ids = populated
        store.delete_run(run_ids[0])
        active = store.search_runs([experiment_id])
        deleted = store.search_runs([experiment_id], run_view_type=ViewType.DELETED_ONLY)
        assert run_ids[0] not in [r.info.run_id for r in active]
        assert [r.info.run_id for r in deleted] == [run_ids[0]]

    def test_malformed_filter(self, populated):
        store, experiment_id, _ = populated
        with pytest.raises(TrackingError) as exc_info:
            store.search_runs([experiment_id], "metrics.acc >>> 3")
        assert exc_info.value.error_code == ErrorCode.INVALID_PARAMETER_VALUE

    def test_list_run_infos(self, populated):
        store, experiment_id, run_ids = populated
        infos = store.list_run_infos(experiment_id)
        assert sorted(i.run_id for i in infos) == sorted(run_ids)
