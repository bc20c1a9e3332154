import json
import os

import pytest
from click.testing import CliRunner

from mltrack.cli import cli
from mltrack.common.common import EnvVars
from mltrack.tracking.client import TrackingClient


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def uri(tmp_path):
    """Tracking URI handed to every command."""
    return str(tmp_path / "cli-runs")


@pytest.fixture
def client(uri):
    return TrackingClient(uri)


def invoke(runner, uri, *args):
    return runner.invoke(cli, ["--tracking-uri", uri, *args])


class TestExperimentCommands:
    def test_create_and_list(self, runner, uri):
        result = invoke(runner, uri, "experiments", "create", "cli-exp")
        assert result.exit_code == 0, result.output
        assert "Created experiment 'cli-exp' with id 1" in result.output

        result = invoke(runner, uri, "experiments", "list")
        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert lines[0].startswith("0\tDefault\t")
        assert lines[1].startswith("1\tcli-exp\t")

    def test_delete_restore_rename(self, runner, uri, client):
        experiment_id = client.create_experiment("to-change")

        assert invoke(runner, uri, "experiments", "delete", experiment_id).exit_code == 0
        result = invoke(runner, uri, "experiments", "list", "--view", "deleted_only")
        assert "to-change" in result.output

        assert invoke(runner, uri, "experiments", "restore", experiment_id).exit_code == 0
        assert invoke(runner, uri, "experiments", "rename", experiment_id, "changed").exit_code == 0
        assert client.get_experiment(experiment_id).name == "changed"

    def test_errors_exit_non_zero(self, runner, uri, client):
        client.create_experiment("dup")
        result = invoke(runner, uri, "experiments", "create", "dup")
        assert result.exit_code == 1
        assert "❌" in result.output
        assert "RESOURCE_ALREADY_EXISTS" in result.output

    def test_tracking_uri_from_environment(self, runner, uri, client):
        result = runner.invoke(cli, ["experiments", "create", "from-env"],
                               env={EnvVars.TRACKING_URI.value: uri})
        assert result.exit_code == 0, result.output
        assert client.get_experiment_by_name("from-env") is not None


class TestRunCommands:
    def test_list_and_describe(self, runner, uri, client):
        run_id = client.create_run("0", start_time=1000, tags={"team": "vision"}).info.run_id
        client.log_param(run_id, "lr", "0.1")

        result = invoke(runner, uri, "runs", "list", "-e", "0")
        assert result.exit_code == 0, result.output
        assert run_id in result.output
        assert "RUNNING" in result.output

        result = invoke(runner, uri, "runs", "describe", run_id)
        assert result.exit_code == 0
        described = json.loads(result.output)
        assert described["info"]["run_id"] == run_id
        assert described["data"]["params"] == {"lr": "0.1"}

    def test_list_empty_experiment(self, runner, uri):
        result = invoke(runner, uri, "runs", "list", "-e", "0")
        assert result.exit_code == 0
        assert "No runs in experiment 0" in result.output

    def test_delete_and_restore(self, runner, uri, client):
        run_id = client.create_run("0").info.run_id
        assert invoke(runner, uri, "runs", "delete", run_id).exit_code == 0
        assert run_id in invoke(runner, uri, "runs", "list", "-e", "0", "--view", "deleted_only").output
        assert invoke(runner, uri, "runs", "restore", run_id).exit_code == 0
        assert client.get_run(run_id).info.lifecycle_stage == "active"

    def test_describe_missing_run(self, runner, uri):
        result = invoke(runner, uri, "runs", "describe", "0123456789abcdef0123456789abcdef")
        assert result.exit_code == 1
        assert "RESOURCE_DOES_NOT_EXIST" in result.output


class TestArtifactCommands:
    def test_log_list_download(self, runner, uri, client, local_file, tmp_path):
        run_id = client.create_run("0").info.run_id

        result = invoke(runner, uri, "artifacts", "log-artifact", "-l", local_file, "-r", run_id, "-a", "docs")
        assert result.exit_code == 0, result.output
        result = invoke(runner, uri, "artifacts", "log-artifacts", "-l", os.path.dirname(local_file),
                        "-r", run_id)
        assert result.exit_code == 0, result.output

        result = invoke(runner, uri, "artifacts", "list", "-r", run_id)
        assert result.output.splitlines() == ["docs/", f"notes.txt\t{len('hello artifacts')}"]

        dst = tmp_path / "dst"
        dst.mkdir()
        result = invoke(runner, uri, "artifacts", "download", "-r", run_id, "-a", "docs", "-d", str(dst))
        assert result.exit_code == 0, result.output
        assert result.output.strip() == os.path.join(str(dst), "docs")
        assert os.path.isfile(dst / "docs" / "notes.txt")

    def test_download_to_missing_directory(self, runner, uri, client, tmp_path):
        run_id = client.create_run("0").info.run_id
        result = invoke(runner, uri, "artifacts", "download", "-r", run_id, "-d", str(tmp_path / "nope"))
        assert result.exit_code == 1
        assert "does not exist" in result.output


class TestServerCommand:
    def test_single_worker(self, runner, tmp_path, monkeypatch):
        calls = []
        monkeypatch.setattr("mltrack.cli.uvicorn.run", lambda app, **kwargs: calls.append((app, kwargs)))
        result = runner.invoke(cli, ["server", "--backend-store-uri", str(tmp_path / "server-runs"),
                                     "--port", "5055", "--log-dir", str(tmp_path / "logs")])
        assert result.exit_code == 0, result.output

        app, kwargs = calls[0]
        assert app.state.store.root_directory == str(tmp_path / "server-runs")
        assert kwargs == {"host": "127.0.0.1", "port": 5055, "log_level": "info"}
        assert os.path.isfile(tmp_path / "logs" / "server.log")

    def test_multiple_workers_use_factory(self, runner, tmp_path, monkeypatch):
        calls = []
        monkeypatch.setattr("mltrack.cli.uvicorn.run", lambda app, **kwargs: calls.append((app, kwargs)))
        # registered so the values written by the command are removed afterwards
        monkeypatch.setenv(EnvVars.SERVER_BACKEND_STORE_URI.value, "")
        monkeypatch.setenv(EnvVars.SERVER_DEFAULT_ARTIFACT_ROOT.value, "")
        store_uri = f"sqlite:///{tmp_path / 'server.db'}"
        result = runner.invoke(cli, ["server", "--backend-store-uri", store_uri,
                                     "--default-artifact-root", str(tmp_path / "artifacts"),
                                     "-h", "0.0.0.0", "-w", "4", "--debug"])
        assert result.exit_code == 0, result.output

        app, kwargs = calls[0]
        assert app == "mltrack.server.app:create_app_from_env"
        assert kwargs["factory"] is True
        assert kwargs["workers"] == 4
        assert kwargs["host"] == "0.0.0.0"
        assert kwargs["log_level"] == "debug"
        assert os.environ[EnvVars.SERVER_BACKEND_STORE_URI.value] == store_uri

    def test_config_file_settings(self, runner, tmp_path, monkeypatch):
        calls = []
        monkeypatch.setattr("mltrack.cli.uvicorn.run", lambda app, **kwargs: calls.append((app, kwargs)))
        config = tmp_path / "server.yaml"
        config.write_text("server:\n  host: 10.0.0.1\n  port: 6000\n")
        result = runner.invoke(cli, ["server", "--backend-store-uri", str(tmp_path / "runs"),
                                     "--config", str(config)])
        assert result.exit_code == 0, result.output
        assert calls[0][1]["host"] == "10.0.0.1"
        assert calls[0][1]["port"] == 6000

    def test_missing_config_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["server", "--config", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1
        assert "does not exist" in result.output
