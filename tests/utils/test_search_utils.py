import pytest

from mltrack.common.common import SearchEntity
from mltrack.entities import Run, RunData, RunInfo
from mltrack.exceptions import TrackingError
from mltrack.utils.search_utils import (PagedList, create_page_token, filter_runs, parse_filter,
                                        parse_order_by, parse_start_offset_from_page_token, search,
                                        sort_runs)


def make_run(run_id, start_time, metrics=None, params=None, tags=None, status="RUNNING", run_name=""):
    info = RunInfo(run_id=run_id, experiment_id="0", user_id="u", status=status,
                   start_time=start_time, end_time=None, artifact_uri=f"/a/{run_id}",
                   run_name=run_name)
    return Run(info=info, data=RunData(metrics=metrics or {}, params=params or {}, tags=tags or {}))


@pytest.fixture
def runs():
    """Four runs with overlapping metrics, params and tags."""
    return [
        make_run("a", 1, metrics={"acc": 0.5, "loss": 2.0}, params={"model": "cnn"},
                 tags={"data set": "mnist-small"}, run_name="baseline"),
        make_run("b", 2, metrics={"acc": 0.9}, params={"model": "cnn"}, tags={"data set": "mnist"},
                 status="FINISHED"),
        make_run("c", 3, metrics={"acc": float("nan")}, params={"model": "mlp"}),
        make_run("d", 4, params={"model": "MLP"}, tags={"data set": "cifar"}),
    ]


def ids(runs):
    return [r.info.run_id for r in runs]


def test_parse_filter():
    clauses = parse_filter("metrics.acc >= 0.5 and params.model = 'cnn' AND tags.`data set` LIKE 'mnist%'")
    assert clauses == [
        {"type": SearchEntity.METRIC, "key": "acc", "comparator": ">=", "value": 0.5},
        {"type": SearchEntity.PARAM, "key": "model", "comparator": "=", "value": "cnn"},
        {"type": SearchEntity.TAG, "key": "data set", "comparator": "LIKE", "value": "mnist%"},
    ]


def test_empty_filter_matches_everything(runs):
    assert parse_filter(None) == []
    assert parse_filter("   ") == []
    assert ids(filter_runs(runs, "")) == ["a", "b", "c", "d"]


@pytest.mark.parametrize("filter_string", [
    "metrics.acc",
    "metrics.acc LIKE '0.5'",
    "metrics.acc > high",
    "params.model > 'cnn'",
    "params.model = cnn",
    "attributes.color = 'red'",
    "things.x = 'y'",
    "params.model = 'unterminated",
])
def test_invalid_filters(filter_string):
    with pytest.raises(TrackingError):
        parse_filter(filter_string)


@pytest.mark.parametrize("filter_string, expected", [
    ("metrics.acc > 0.6", ["b"]),
    ("metrics.acc != 0.9", ["a"]),
    ("metrics.loss < 3", ["a"]),
    ("params.model = 'cnn'", ["a", "b"]),
    ("params.model != 'cnn'", ["c", "d"]),
    ("params.model ILIKE 'mlp'", ["c", "d"]),
    ("params.model LIKE 'm%'", ["c"]),
    ("tags.`data set` LIKE 'mnist%'", ["a", "b"]),
    ("tags.\"data set\" NOT LIKE 'mnist%'", ["d"]),
    ("tags.`data set` LIKE 'mnis_'", ["b"]),
    ("attributes.status = 'FINISHED'", ["b"]),
    ("attributes.run_name = 'baseline'", ["a"]),
    ("attributes.start_time >= 3", ["c", "d"]),
    ("params.model = 'cnn' and metrics.acc < 0.6", ["a"]),
    ("params.model = 'and'", []),
])
def test_filter_runs(runs, filter_string, expected):
    assert ids(filter_runs(runs, filter_string)) == expected


def test_default_order_is_start_time_desc(runs):
    assert ids(sort_runs(runs, None)) == ["d", "c", "b", "a"]


def test_order_by_puts_missing_values_last(runs):
    # NaN counts as missing, ties keep the default order
    assert ids(sort_runs(runs, ["metrics.acc"])) == ["a", "b", "d", "c"]
    descending = ids(sort_runs(runs, ["metrics.acc DESC"]))
    assert descending[:2] == ["b", "a"]
    assert set(descending[2:]) == {"c", "d"}


def test_order_by_multiple_clauses(runs):
    assert ids(sort_runs(runs, ["params.model ASC", "start_time DESC"])) == ["d", "b", "a", "c"]


def test_parse_order_by():
    assert parse_order_by("metrics.acc DESC") == (SearchEntity.METRIC, "acc", False)
    assert parse_order_by("start_time") == (SearchEntity.ATTRIBUTE, "start_time", True)
    assert parse_order_by("tags.`data set` asc") == (SearchEntity.TAG, "data set", True)
    with pytest.raises(TrackingError):
        parse_order_by("attributes.color")
    with pytest.raises(TrackingError):
        parse_order_by("")


def test_page_tokens():
    assert parse_start_offset_from_page_token(None) == 0
    assert parse_start_offset_from_page_token(create_page_token(7)) == 7
    with pytest.raises(TrackingError):
        parse_start_offset_from_page_token("not-a-token")


def test_search_pages(runs):
    first = search(runs, max_results=3)
    assert isinstance(first, PagedList)
    assert ids(first) == ["d", "c", "b"]
    second = search(runs, max_results=3, page_token=first.token)
    assert ids(second) == ["a"]
    assert second.token is None


@pytest.mark.parametrize("max_results", [0, -1, 50001, True, 2.5])
def test_search_rejects_bad_max_results(runs, max_results):
    with pytest.raises(TrackingError):
        search(runs, max_results=max_results)
