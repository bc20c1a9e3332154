"""On-disk layout of the file store."""
import os
import threading

import pytest

from mltrack.common.common import TAG_RUN_NAME
from mltrack.common.yaml_utils import read_yaml, write_yaml
from mltrack.entities import Metric, Param, RunTag
from mltrack.exceptions import TrackingError, ErrorCode
from mltrack.store.file_store import FileStore


@pytest.fixture
def run_dir(file_store, store_root):
    """Directory of a fresh run in the default experiment."""
    run = file_store.create_run("0", "tester", 1000, [], run_name="layout")
    return run.info.run_id, os.path.join(store_root, "0", run.info.run_id)


def test_new_store_has_default_experiment(store_root, file_store):
    meta = read_yaml(os.path.join(store_root, "0", "meta.yaml"))
    assert meta["name"] == "Default"
    assert meta["experiment_id"] == "0"
    assert os.path.isdir(os.path.join(store_root, ".trash"))


def test_reopening_keeps_data(store_root, file_store):
    experiment_id = file_store.create_experiment("persisted")
    reopened = FileStore(store_root)
    assert reopened.get_experiment(experiment_id).name == "persisted"


def test_run_layout(file_store, run_dir):
    run_id, path = run_dir
    file_store.log_metric(run_id, Metric("train/loss", 0.5, 1001, 3))
    file_store.log_param(run_id, Param("lr", "0.1"))
    file_store.set_tag(run_id, RunTag("team", "vision"))

    assert read_yaml(os.path.join(path, "meta.yaml"))["run_name"] == "layout"
    with open(os.path.join(path, "metrics", "train", "loss")) as f:
        assert f.read() == "1001 0.5 3\n"
    with open(os.path.join(path, "params", "lr")) as f:
        assert f.read() == "0.1"
    with open(os.path.join(path, "tags", "team")) as f:
        assert f.read() == "vision"
    with open(os.path.join(path, "tags", TAG_RUN_NAME)) as f:
        assert f.read() == "layout"
    assert file_store.get_run(run_id).data.metrics == {"train/loss": 0.5}


def test_legacy_metric_lines_without_step(file_store, run_dir):
    run_id, path = run_dir
    with open(os.path.join(path, "metrics", "old"), "w") as f:
        f.write("100 1.5\n200 2.5\n")
    assert [(m.timestamp, m.value, m.step) for m in file_store.get_metric_history(run_id, "old")] == \
        [(100, 1.5, 0), (200, 2.5, 0)]


def test_malformed_metric_line(file_store, run_dir):
    run_id, path = run_dir
    with open(os.path.join(path, "metrics", "broken"), "w") as f:
        f.write("only-one-field\n")
    with pytest.raises(TrackingError) as exc_info:
        file_store.get_metric_history(run_id, "broken")
    assert exc_info.value.error_code == ErrorCode.INTERNAL_ERROR


def test_deleted_experiment_moves_to_trash(file_store, store_root):
    experiment_id = file_store.create_experiment("trash-me")
    file_store.delete_experiment(experiment_id)
    assert not os.path.exists(os.path.join(store_root, experiment_id))
    assert os.path.isfile(os.path.join(store_root, ".trash", experiment_id, "meta.yaml"))

    file_store.restore_experiment(experiment_id)
    assert os.path.isfile(os.path.join(store_root, experiment_id, "meta.yaml"))


def test_ids_count_trashed_experiments(file_store):
    first = file_store.create_experiment("first")
    file_store.delete_experiment(first)
    assert file_store.create_experiment("second") == str(int(first) + 1)


def test_runs_of_deleted_experiment_stay_readable(file_store):
    experiment_id = file_store.create_experiment("holder")
    run_id = file_store.create_run(experiment_id, "tester", 1, []).info.run_id
    file_store.delete_experiment(experiment_id)
    assert file_store.get_run(run_id).info.experiment_id == experiment_id


def test_mismatched_experiment_meta(file_store, store_root):
    experiment_id = file_store.create_experiment("tampered")
    meta_path = os.path.join(store_root, experiment_id, "meta.yaml")
    meta = read_yaml(meta_path)
    meta["experiment_id"] = "777"
    write_yaml(meta_path, meta)
    with pytest.raises(TrackingError) as exc_info:
        file_store.get_experiment(experiment_id)
    assert exc_info.value.error_code == ErrorCode.INTERNAL_ERROR
    # malformed experiments are skipped when listing
    assert experiment_id not in [e.experiment_id for e in file_store.list_experiments()]


def test_stray_directories_are_ignored(file_store, store_root):
    os.makedirs(os.path.join(store_root, "notes"))
    os.makedirs(os.path.join(store_root, "0", "not-a-run"))
    assert [e.experiment_id for e in file_store.list_experiments()] == ["0"]
    assert file_store.search_runs(["0"]) == []


def test_concurrent_metric_appends(file_store, run_dir):
    run_id, path = run_dir

    def log_many(offset):
        for step in range(50):
            file_store.log_metric(run_id, Metric("shared", float(step), 1000 + step, offset + step))

    threads = [threading.Thread(target=log_many, args=(i * 100,)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    history = file_store.get_metric_history(run_id, "shared")
    assert len(history) == 200
    assert sorted(m.step for m in history) == sorted(i * 100 + s for i in range(4) for s in range(50))


@pytest.mark.parametrize("first, second", [("a", "a/b"), ("a/b", "a")])
def test_param_key_conflicts_with_nested_key(file_store, run_dir, first, second):
    run_id, _ = run_dir
    file_store.log_param(run_id, Param(first, "1"))
    with pytest.raises(TrackingError) as exc_info:
        file_store.log_param(run_id, Param(second, "2"))
    assert exc_info.value.error_code == ErrorCode.INVALID_PARAMETER_VALUE
    assert f"'{second}'" in exc_info.value.message
    assert file_store.get_run(run_id).data.params == {first: "1"}


def test_metric_and_tag_key_conflicts(file_store, run_dir):
    run_id, _ = run_dir
    file_store.log_metric(run_id, Metric("loss", 1.0, 1000, 0))
    with pytest.raises(TrackingError) as exc_info:
        file_store.log_metric(run_id, Metric("loss/train", 1.0, 1000, 0))
    assert exc_info.value.error_code == ErrorCode.INVALID_PARAMETER_VALUE

    file_store.set_tag(run_id, RunTag("stage/name", "x"))
    with pytest.raises(TrackingError) as exc_info:
        file_store.set_tag(run_id, RunTag("stage", "y"))
    assert exc_info.value.error_code == ErrorCode.INVALID_PARAMETER_VALUE


def test_shared_store_sets_param_once_across_threads(file_store, run_dir):
    run_id, _ = run_dir
    accepted, rejected = [], []
    barrier = threading.Barrier(8)

    def log_value(i):
        barrier.wait()
        try:
            file_store.log_param(run_id, Param("lr", str(i)))
            accepted.append(i)
        except TrackingError as e:
            rejected.append(e.error_code)

    threads = [threading.Thread(target=log_value, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(accepted) == 1
    assert rejected == [ErrorCode.INVALID_PARAMETER_VALUE] * 7
    assert file_store.get_run(run_id).data.params == {"lr": str(accepted[0])}
