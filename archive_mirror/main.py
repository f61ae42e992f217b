"""
Archive Mirror — CLI Entry Point

Usage:
    python -m archive_mirror run
    python -m archive_mirror sync NAME
    python -m archive_mirror check-config
    python -m archive_mirror --config path/to/mirror.yml run
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from . import __version__
from .config.loader import default_config_path, load_registry
from .config.registry import Registry
from .errors import ConfigError, MirrorNotFound, SyncInProgress
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


def _load_registry(ctx: click.Context) -> Registry:
    """Load the registry or exit 1 with the config error."""
    config_path: Optional[Path] = ctx.obj["config_path"]
    try:
        return load_registry(config_path)
    except ConfigError as e:
        click.secho(f"✗ Configuration error: {e}", fg="red", err=True)
        raise SystemExit(1)


@click.group()
@click.version_option(__version__, prog_name="archive-mirror")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to mirror.yml (default: $MIRROR_CONFIG or ./mirror.yml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path]) -> None:
    """Archive Mirror — self-hosted, periodically refreshed archive mirrors."""
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file)
    setup_logging()

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Serve mirrors, run the scheduler and the admin endpoint."""
    from .service import MirrorService

    logger.info(f"archive-mirror v{__version__}")

    registry = _load_registry(ctx)
    service = MirrorService(registry)
    try:
        service.run_forever()
    except OSError as e:
        # Typically a listen address that cannot be bound
        logger.error(f"{e}")
        raise SystemExit(1)


@cli.command()
@click.argument("name")
@click.pass_context
def sync(ctx: click.Context, name: str) -> None:
    """Sync one mirror now and wait for the result."""
    from .mirror.pipeline import MirrorSyncer

    registry = _load_registry(ctx)
    syncer = MirrorSyncer(registry)
    try:
        outcome = syncer.sync(name)
    except MirrorNotFound as e:
        click.secho(f"✗ {e}", fg="red", err=True)
        raise SystemExit(1)
    except SyncInProgress as e:
        click.secho(f"⚠ {e}", fg="yellow", err=True)
        raise SystemExit(1)
    finally:
        syncer.shutdown(wait=False)

    if not outcome.ok:
        click.secho(f"✗ {name}: {outcome.error}", fg="red", err=True)
        raise SystemExit(1)

    report = outcome.report
    click.secho(
        f"✓ {name}: {outcome.bytes_fetched} bytes, {report.written} file(s) "
        f"-> {report.serving_dir}",
        fg="green",
    )


@cli.command("check-config")
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Validate mirror.yml and print a summary."""
    registry = _load_registry(ctx)
    settings = registry.settings

    click.echo(f"Config:       {ctx.obj['config_path'] or default_config_path()}")
    click.echo(f"Data dir:     {settings.data_dir}")
    click.echo(f"Scratch dir:  {settings.tmp_dir}")
    click.echo(f"Startup sync: {'yes' if settings.sync_on_startup else 'no'}")
    click.echo(f"Install mode: {'swap' if settings.atomic_swap else 'overlay'}")
    click.echo("")
    for mirror in registry:
        click.echo(f"  📦 {mirror.name}")
        click.echo(f"     source: {mirror.source}")
        click.echo(f"     sync:   {mirror.schedule or '-'}")
        click.echo(f"     serve:  {mirror.listen or '-'}")
    click.echo("")
    if registry.admin_server:
        click.echo(f"Admin:        {registry.admin_server.listen}")
    else:
        click.echo("Admin:        disabled")
    click.secho(f"✓ {len(registry)} mirror(s) configured", fg="green")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
