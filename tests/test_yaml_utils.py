import os

import pytest
from omegaconf import DictConfig, OmegaConf

from mltrack.common.yaml_utils import merge_configs, read_yaml, write_yaml


def test_write_then_read(tmp_path):
    path = str(tmp_path / "nested" / "meta.yaml")
    write_yaml(path, {"experiment_id": "3", "name": "exp", "end_time": None})
    assert read_yaml(path) == {"experiment_id": "3", "name": "exp", "end_time": None}
    # no temporary files left behind
    assert os.listdir(tmp_path / "nested") == ["meta.yaml"]


def test_write_dictconfig(tmp_path):
    path = str(tmp_path / "meta.yaml")
    write_yaml(path, OmegaConf.create({"a": {"b": 1}}))
    assert read_yaml(path) == {"a": {"b": 1}}


def test_refuse_overwrite(tmp_path):
    path = str(tmp_path / "meta.yaml")
    write_yaml(path, {"a": 1})
    with pytest.raises(FileExistsError):
        write_yaml(path, {"a": 2}, overwrite=False)
    assert read_yaml(path) == {"a": 1}


def test_read_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_yaml(str(tmp_path / "missing.yaml"))


class TestMergeConfigs:
    def test_later_layers_win(self):
        result = merge_configs({"server": {"host": "127.0.0.1", "port": 5000}},
                               {"server": {"port": 8080}},
                               {"tracking_uri": "http://x"})
        assert isinstance(result, DictConfig)
        assert result.server.host == "127.0.0.1"
        assert result.server.port == 8080
        assert result.tracking_uri == "http://x"

    def test_empty_layers_are_skipped(self):
        result = merge_configs({"a": 1}, None, {}, OmegaConf.create({"b": 2}))
        assert OmegaConf.to_container(result) == {"a": 1, "b": 2}
