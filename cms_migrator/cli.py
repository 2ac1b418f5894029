"""``cms-migrate`` command line."""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cms_migrator import __version__
from cms_migrator.config import Config, load_config
from cms_migrator.logging import logger
from cms_migrator.utils.progress import MigrationReporter

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

console = Console()


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="cms-migrate")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Settings file (YAML, JSON or appsettings.json)",
)
@click.option(
    "--env-file",
    "-e",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Extra .env file with connection strings",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], env_file: Optional[Path]) -> None:
    """Copy CMS content from live into UAT.

    Customer content folders are uploaded into per-customer UAT containers,
    then every live blob container is copied into UAT.
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    ctx.obj = {"config_path": config_path, "env_file": env_file}


@cli.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("cms-migrate.yaml"),
    show_default=True,
    help="Where to write the settings file",
)
def init(output: Path) -> None:
    """Write a settings file for the given content folders."""
    content_folder = click.prompt("Content folder")
    alternative_folder = click.prompt(
        "Alternative content folder (empty for none)",
        default="",
        show_default=False,
    )

    try:
        Config(
            storage={
                "content_folder_path": content_folder,
                "alternative_content_folder_path": alternative_folder or None,
                "uat_connection_string": "",
                "live_connection_string": "",
                "uat_file_storage_db_connection_string": "",
            }
        ).to_file(output)
    except (OSError, ValueError) as e:
        console.print(f"[red]Could not write {escape(str(output))}:[/red] {escape(str(e))}")
        sys.exit(EXIT_FAILURE)

    console.print(f"[green]✓[/green] Wrote {escape(str(output))}")
    console.print(
        "Put the connection strings into .env as STORAGE__UAT_CONNECTION_STRING,\n"
        "STORAGE__LIVE_CONNECTION_STRING and STORAGE__UAT_FILE_STORAGE_DB_CONNECTION_STRING,\n"
        f"then run 'cms-migrate -c {output} validate'."
    )


@cli.command()
@click.pass_obj
def validate(obj: Dict[str, Any]) -> None:
    """Check the settings and that the content folders exist."""
    config = _load(obj)
    console.print("[green]✓[/green] Configuration loaded, content folders found")
    console.print(_settings_table(config))


@cli.command()
@click.option(
    "--reset/--no-reset",
    default=None,
    help="Clear UAT before copying [default: from settings]",
)
@click.option("--page-size", type=click.IntRange(1, 5000), help="Listing page size")
@click.option(
    "--max-concurrency",
    type=click.IntRange(1, 32),
    help="Transfer units per customer running at once",
)
@click.option(
    "--parallel-phases",
    is_flag=True,
    default=False,
    help="Copy content folders and live containers at the same time",
)
@click.option("--yes", "-y", is_flag=True, help="Skip the reset confirmation")
@click.pass_obj
def migrate(
    obj: Dict[str, Any],
    reset: Optional[bool],
    page_size: Optional[int],
    max_concurrency: Optional[int],
    parallel_phases: bool,
    yes: bool,
) -> None:
    """Reset UAT (optional), then copy folders and live containers."""
    config = _load(obj)
    settings = config.migration

    if reset is not None:
        settings.perform_reset = reset
    if page_size is not None:
        settings.page_size = page_size
    if max_concurrency is not None:
        settings.max_concurrency = max_concurrency
    if parallel_phases:
        settings.parallel_phases = True

    logger.configure(config.logging)
    console.print(_settings_table(config))

    if settings.perform_reset and not yes:
        if not click.confirm("Every non-platform UAT container will be deleted. Continue?"):
            console.print("[yellow]Migration cancelled[/yellow]")
            return

    _run(config, reset_only=False)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation")
@click.pass_obj
def reset(obj: Dict[str, Any], yes: bool) -> None:
    """Only delete non-platform UAT containers and ContainerInfo rows."""
    config = _load(obj)
    logger.configure(config.logging)

    if not yes and not click.confirm("Every non-platform UAT container will be deleted. Continue?"):
        console.print("[yellow]Reset cancelled[/yellow]")
        return

    _run(config, reset_only=True)


def _load(obj: Dict[str, Any]) -> Config:
    try:
        return load_config(obj.get("config_path"), obj.get("env_file"))
    except Exception as e:
        console.print(f"[bold red]Error loading configuration:[/bold red] {escape(str(e))}")
        sys.exit(EXIT_FAILURE)


def _run(config: Config, reset_only: bool) -> None:
    """Drive the orchestrator to completion and turn its outcome into an exit code."""
    from cms_migrator.core.orchestrator import MigrationOrchestrator

    reporter = MigrationReporter(console)
    orchestrator = MigrationOrchestrator(config, reporter=reporter)
    work = orchestrator.reset if reset_only else orchestrator.run

    try:
        asyncio.run(work())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        logger.get_logger("cli").warning("migration_interrupted")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        reporter.print_summary(orchestrator.summary)
        reporter.error(f"Migration failed: {e}")
        sys.exit(EXIT_FAILURE)

    reporter.print_summary(orchestrator.summary)
    console.print("Processed.")


def _settings_table(config: Config) -> Table:
    storage = config.storage
    settings = config.migration

    table = Table(title="Settings", show_header=True)
    table.add_column("Section", style="cyan")
    table.add_column("Option", style="yellow")
    table.add_column("Value", style="green")

    for index, root in enumerate(storage.content_roots):
        option = "content root" if index == 0 else "alternative root"
        table.add_row("storage", option, escape(str(root)))
    table.add_row("storage", "live account", _account(storage.live_connection_string.get_secret_value()))
    table.add_row("storage", "uat account", _account(storage.uat_connection_string.get_secret_value()))
    table.add_row("migration", "reset first", str(settings.perform_reset))
    table.add_row("migration", "page size", str(settings.page_size))
    table.add_row("migration", "max concurrency", str(settings.max_concurrency))
    table.add_row("migration", "parallel phases", str(settings.parallel_phases))
    table.add_row(
        "migration",
        "object timeout",
        f"{settings.object_timeout_seconds}s" if settings.object_timeout_seconds else "none",
    )
    table.add_row("logging", "level", config.logging.level.value)
    return table


def _account(connection_string: str) -> str:
    """Account name of a storage connection string, never the key."""
    for part in connection_string.split(";"):
        key, _, value = part.partition("=")
        if key.strip().lower() == "accountname":
            return value
    return "***" if connection_string else "(not set)"


def main() -> None:
    """Console script entry point."""
    try:
        cli(obj={})
    except Exception as e:
        console.print(f"[bold red]Unexpected error:[/bold red] {e}")
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
