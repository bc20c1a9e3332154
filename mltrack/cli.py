import functools
import json
import os
import sys

import click
import uvicorn

from mltrack.common.common import DEFAULT_TRACKING_DIR, LOG_NAME, EnvVars, ViewType
from mltrack.config import load_config
from mltrack.exceptions import TrackingError
from mltrack.logger import CompositeLogger, ConsoleLogger, EmptyLogger
from mltrack.server.app import create_app
from mltrack.tracking.client import TrackingClient
from mltrack.tracking.fluent import runs_to_dataframe

VIEW_CHOICES = click.Choice([v.name.lower() for v in ViewType], case_sensitive=False)


def _exit_on_error(func):
    """Print tracking and file errors and exit non-zero instead of dumping a traceback."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (TrackingError, FileNotFoundError) as e:
            click.echo(f"❌ {e}", err=True)
            sys.exit(1)
    return wrapper


def _client(ctx: click.Context) -> TrackingClient:
    return TrackingClient(ctx.obj["tracking_uri"])


@click.group()
@click.option('--tracking-uri', envvar=EnvVars.TRACKING_URI.value, default=None,
              help='Tracking store or server (default: $MLTRACK_TRACKING_URI, the config file, ./mlruns)')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def cli(ctx, tracking_uri, verbose):
    """📈 mltrack: track machine learning experiments, runs, metrics and artifacts."""
    ctx.ensure_object(dict)
    ctx.obj["tracking_uri"] = tracking_uri
    ctx.obj["logger"] = ConsoleLogger(LOG_NAME, debug=True) if verbose else EmptyLogger()


# ========================
# Server
# ========================

@cli.command()
@click.option('--backend-store-uri', '--file-store', 'backend_store_uri', default=None,
              help='Metadata store: a directory, file://, sqlite:/// or mysql:// URI (default: ./mlruns)')
@click.option('--default-artifact-root', default=None,
              help='Artifact root of new experiments (default: the config file, then a store specific location)')
@click.option('--host', '-h', default=None, help='Interface to bind (default: 127.0.0.1)')
@click.option('--port', '-p', type=int, default=None, help='Port to listen on (default: 5000)')
@click.option('--workers', '-w', type=int, default=None, help='Number of worker processes (default: 1)')
@click.option('--config', 'config_path', default=None, help='YAML configuration file')
@click.option('--log-dir', default=None, help='Directory for the server log file')
@click.option('--debug', is_flag=True, help='Log debug messages to the console')
@_exit_on_error
def server(backend_store_uri, default_artifact_root, host, port, workers, config_path, log_dir, debug):
    """🚀 Run the tracking server."""
    config = load_config(config_path)
    backend_store_uri = backend_store_uri or os.path.abspath(DEFAULT_TRACKING_DIR)
    default_artifact_root = default_artifact_root or config.get("default_artifact_root")
    host = host or config.server.host
    port = port or int(config.server.port)
    workers = workers or int(config.server.workers)

    logger = CompositeLogger(LOG_NAME, log_dir=log_dir, filename="server.log", debug=debug)
    logger.info(f"Starting tracking server on {host}:{port} with {workers} worker(s)")
    logger.info(f"Backend store: {backend_store_uri}")
    if default_artifact_root:
        logger.info(f"Default artifact root: {default_artifact_root}")

    log_level = "debug" if debug else "info"
    if workers > 1:
        # worker processes rebuild the app from the environment
        os.environ[EnvVars.SERVER_BACKEND_STORE_URI.value] = backend_store_uri
        os.environ[EnvVars.SERVER_DEFAULT_ARTIFACT_ROOT.value] = default_artifact_root or ""
        uvicorn.run("mltrack.server.app:create_app_from_env", factory=True,
                    host=host, port=port, workers=workers, log_level=log_level)
    else:
        app = create_app(backend_store_uri, default_artifact_root)
        uvicorn.run(app, host=host, port=port, log_level=log_level)
    logger.close()


# ========================
# Experiments
# ========================

@cli.group()
def experiments():
    """🧪 Manage experiments."""
    pass


@experiments.command("create")
@click.argument('name')
@click.option('--artifact-location', '-l', default=None, help='Artifact root of the experiment')
@click.pass_context
@_exit_on_error
def create_experiment(ctx, name, artifact_location):
    """Create an experiment named NAME."""
    experiment_id = _client(ctx).create_experiment(name, artifact_location)
    ctx.obj["logger"].info(f"Created experiment '{name}' with id {experiment_id}")
    click.echo(f"✅ Created experiment '{name}' with id {experiment_id}")


@experiments.command("list")
@click.option('--view', type=VIEW_CHOICES, default='active_only', help='Which experiments to show')
@click.pass_context
@_exit_on_error
def list_experiments(ctx, view):
    """List experiments."""
    for experiment in _client(ctx).list_experiments(ViewType.from_string(view)):
        click.echo(f"{experiment.experiment_id}\t{experiment.name}\t"
                   f"{experiment.artifact_location}\t{experiment.lifecycle_stage}")


@experiments.command("delete")
@click.argument('experiment_id')
@click.pass_context
@_exit_on_error
def delete_experiment(ctx, experiment_id):
    """Mark experiment EXPERIMENT_ID as deleted."""
    _client(ctx).delete_experiment(experiment_id)
    click.echo(f"🗑️  Experiment {experiment_id} deleted")


@experiments.command("restore")
@click.argument('experiment_id')
@click.pass_context
@_exit_on_error
def restore_experiment(ctx, experiment_id):
    """Restore deleted experiment EXPERIMENT_ID."""
    _client(ctx).restore_experiment(experiment_id)
    click.echo(f"♻️  Experiment {experiment_id} restored")


@experiments.command("rename")
@click.argument('experiment_id')
@click.argument('new_name')
@click.pass_context
@_exit_on_error
def rename_experiment(ctx, experiment_id, new_name):
    """Rename experiment EXPERIMENT_ID to NEW_NAME."""
    _client(ctx).rename_experiment(experiment_id, new_name)
    click.echo(f"✏️  Experiment {experiment_id} renamed to '{new_name}'")


# ========================
# Runs
# ========================

@cli.group()
def runs():
    """🏃 Manage runs."""
    pass


@runs.command("list")
@click.option('--experiment-id', '-e', required=True, help='Experiment to list runs of')
@click.option('--view', type=VIEW_CHOICES, default='active_only', help='Which runs to show')
@click.pass_context
@_exit_on_error
def list_runs(ctx, experiment_id, view):
    """List the runs of an experiment."""
    page = _client(ctx).search_runs([experiment_id], run_view_type=ViewType.from_string(view))
    if not page:
        click.echo(f"No runs in experiment {experiment_id}")
        return
    table = runs_to_dataframe(page)[["run_id", "status", "start_time", "end_time"]]
    click.echo(table.to_string(index=False))


@runs.command("describe")
@click.argument('run_id')
@click.pass_context
@_exit_on_error
def describe_run(ctx, run_id):
    """Print run RUN_ID as JSON."""
    run = _client(ctx).get_run(run_id)
    click.echo(json.dumps(run.to_dict(), indent=2, sort_keys=True))


@runs.command("delete")
@click.argument('run_id')
@click.pass_context
@_exit_on_error
def delete_run(ctx, run_id):
    """Mark run RUN_ID as deleted."""
    _client(ctx).delete_run(run_id)
    click.echo(f"🗑️  Run {run_id} deleted")


@runs.command("restore")
@click.argument('run_id')
@click.pass_context
@_exit_on_error
def restore_run(ctx, run_id):
    """Restore deleted run RUN_ID."""
    _client(ctx).restore_run(run_id)
    click.echo(f"♻️  Run {run_id} restored")


# ========================
# Artifacts
# ========================

@cli.group()
def artifacts():
    """📦 Upload, list and download run artifacts."""
    pass


@artifacts.command("list")
@click.option('--run-id', '-r', required=True, help='Run owning the artifacts')
@click.option('--artifact-path', '-a', default=None, help='Directory to list, relative to the run root')
@click.pass_context
@_exit_on_error
def list_artifacts(ctx, run_id, artifact_path):
    """List a run's artifacts."""
    for file_info in _client(ctx).list_artifacts(run_id, artifact_path):
        if file_info.is_dir:
            click.echo(f"{file_info.path}/")
        else:
            click.echo(f"{file_info.path}\t{file_info.file_size}")


@artifacts.command("download")
@click.option('--run-id', '-r', required=True, help='Run owning the artifacts')
@click.option('--artifact-path', '-a', default="", help='File or directory to download (default: everything)')
@click.option('--dst-path', '-d', default=None, help='Local destination directory')
@click.pass_context
@_exit_on_error
def download_artifacts(ctx, run_id, artifact_path, dst_path):
    """Download artifacts and print their local path."""
    local_path = _client(ctx).download_artifacts(run_id, artifact_path, dst_path)
    ctx.obj["logger"].info(f"Downloaded artifacts of run {run_id} to {local_path}")
    click.echo(local_path)


@artifacts.command("log-artifact")
@click.option('--local-file', '-l', required=True, type=click.Path(exists=True, dir_okay=False),
              help='File to upload')
@click.option('--run-id', '-r', required=True, help='Run to attach the file to')
@click.option('--artifact-path', '-a', default=None, help='Directory to place the file in')
@click.pass_context
@_exit_on_error
def log_artifact(ctx, local_file, run_id, artifact_path):
    """Upload a local file as a run artifact."""
    _client(ctx).log_artifact(run_id, local_file, artifact_path)
    click.echo(f"✅ Logged {local_file} to run {run_id}")


@artifacts.command("log-artifacts")
@click.option('--local-dir', '-l', required=True, type=click.Path(exists=True, file_okay=False),
              help='Directory to upload')
@click.option('--run-id', '-r', required=True, help='Run to attach the files to')
@click.option('--artifact-path', '-a', default=None, help='Directory to place the files in')
@click.pass_context
@_exit_on_error
def log_artifacts(ctx, local_dir, run_id, artifact_path):
    """Upload the contents of a local directory as run artifacts."""
    _client(ctx).log_artifacts(run_id, local_dir, artifact_path)
    click.echo(f"✅ Logged {local_dir} to run {run_id}")


if __name__ == '__main__':
    cli()
