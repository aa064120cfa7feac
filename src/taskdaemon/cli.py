"""CLI commands for taskdaemon."""

import os
from pathlib import Path

import click

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/taskdaemon/config.toml)",
)


def _load_config(config_path: Path | None):
    from taskdaemon.config import Config
    from taskdaemon.errors import ConfigurationError

    try:
        return Config.load(config_path)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def _pidfile(config_path: Path | None):
    from taskdaemon.pidfile import PidFileGuard

    cfg = _load_config(config_path)
    if cfg.daemon.pid_file is None:
        raise click.ClickException("No pid_file configured")
    return PidFileGuard(cfg.daemon.pid_file)


def load_job(job_path: str) -> type:
    """Import a Daemon subclass from a 'package.module:ClassName' string."""
    import importlib

    from taskdaemon.daemon import Daemon

    module_name, sep, class_name = job_path.partition(":")
    if not sep or not module_name or not class_name:
        raise click.BadParameter(
            f"expected 'module:ClassName', got {job_path!r}", param_hint="JOB"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"cannot import {module_name!r}: {e}", param_hint="JOB") from e
    job = getattr(module, class_name, None)
    if not isinstance(job, type) or not issubclass(job, Daemon):
        raise click.BadParameter(
            f"{job_path!r} is not a taskdaemon.Daemon subclass", param_hint="JOB"
        )
    return job


@click.group()
@click.version_option(package_name="taskdaemon")
def main() -> None:
    """Run polling jobs as background daemons."""
    pass


@main.command()
@click.argument("job")
@config_option
@click.option("--foreground", is_flag=True, help="Stay attached to the terminal")
def run(job: str, config_path: Path | None, foreground: bool) -> None:
    """Run JOB (module:ClassName) as a daemon."""
    job_class = load_job(job)
    cfg = _load_config(config_path)
    job_class(cfg.daemon, cfg.database).run(detach=not foreground)


@main.command()
@config_option
def status(config_path: Path | None) -> None:
    """Show whether the daemon is running."""
    pid = _pidfile(config_path).running_pid()
    if pid is None:
        click.echo("Daemon: stopped")
    else:
        click.echo(f"Daemon: running (PID {pid})")


@main.command()
@config_option
def stop(config_path: Path | None) -> None:
    """Ask the running daemon to shut down."""
    import signal

    from taskdaemon import logging as tlog

    pid = _pidfile(config_path).running_pid()
    if pid is None:
        click.echo("Daemon is not running")
        raise SystemExit(1)
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        click.echo("Daemon is not running")
        raise SystemExit(1)
    except PermissionError as e:
        raise click.ClickException(f"Cannot signal PID {pid}: {e}") from e
    tlog.stop_requested(pid)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@config_option
def config_show(config_path: Path | None) -> None:
    """Display current configuration."""
    from taskdaemon.config import Config

    cfg = _load_config(config_path)
    path = config_path or Config.default_path()

    click.echo(f"Config file: {path}")
    click.echo(f"Exists: {path.exists()}")
    click.echo()
    click.echo("[daemon]")
    click.echo(f"  pid_file = {cfg.daemon.pid_file}")
    click.echo(f"  log_path = {cfg.daemon.log_path}")
    click.echo(f"  max_worker_count = {cfg.daemon.max_worker_count}")
    click.echo(f"  scan_interval = {cfg.daemon.scan_interval}")
    click.echo(f"  max_log_size = {cfg.daemon.max_log_size}")
    click.echo()
    click.echo("[database]")
    click.echo(f"  path = {cfg.database.path}")
    click.echo(f"  timeout = {cfg.database.timeout}")


@config.command("init")
@config_option
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def config_init(config_path: Path | None, force: bool) -> None:
    """Write a config file with default values."""
    from taskdaemon.config import Config

    path = config_path or Config.default_path()
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    Config().save(path)
    click.echo(f"Wrote default config to {path}")
