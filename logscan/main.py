import logging
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from logscan.config.loader import load_config
from logscan.config.registry import LocationRegistry, PatternRegistry
from logscan.domain.errors import LogScanError
from logscan.domain.models import JobParameters
from logscan.infrastructure.event_bus import EventBus
from logscan.infrastructure.filesystem import FileSystemSelector
from logscan.infrastructure.housekeeping import HousekeepingService
from logscan.infrastructure.local_fs import LocalFileSystem
from logscan.infrastructure.logging import setup_logging
from logscan.infrastructure.sftp_fs import SftpFileSystem
from logscan.pipeline.orchestrator import Pipeline
from logscan.pipeline.results import ResultAggregator, format_duration
from logscan.ui.dashboard import Dashboard, shorten

app = typer.Typer(help="logscan - collect and package log files from many locations")

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%d %H:%M", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S"]
DEFAULT_CONFIG = Path("conf/logscan.yaml")


def _print_results(console: Console, results: ResultAggregator):
    events = results.events()
    if events:
        table = Table(title=f"Events ({len(events)})")
        table.add_column("Time", style="cyan", no_wrap=True)
        table.add_column("Location", style="magenta")
        table.add_column("File")
        table.add_column("Line", justify="right")
        table.add_column("Text")
        for event in events:
            table.add_row(
                event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                event.location,
                event.file,
                str(event.line_number),
                shorten(event.text, 120),
            )
        console.print(table)
    console.print(
        f"Files to process: {results.files_to_process}, processed: {results.processed_files}, "
        f"selected: {results.selected_files}, events: {len(events)}, "
        f"time: {format_duration(results.start_time, results.end_time)}"
    )


@app.command()
def scan(
    pattern: str = typer.Argument(..., help="Log pattern code"),
    locations: str = typer.Argument(..., help="Comma-separated location or group codes"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    date_from: Optional[datetime] = typer.Option(None, "--from", formats=DATE_FORMATS, help="Window start (inclusive)"),
    date_to: Optional[datetime] = typer.Option(None, "--to", formats=DATE_FORMATS, help="Window end (inclusive)"),
    search_text: Optional[str] = typer.Option(None, "--search", "-s", help="Only records containing this text"),
    archive: Optional[Path] = typer.Option(None, "--archive", "-a", help="Package selected files into this ZIP archive"),
    copy_to: Optional[Path] = typer.Option(None, "--copy-to", help="Copy selected files below this folder"),
    always_package: Optional[bool] = typer.Option(None, "--always-package/--matched-only", help="Package every listed file, matched or not"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Override number of threads"),
    resume: Optional[Path] = typer.Option(None, "--resume", help="Skip discovery and process a saved checkpoint"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    plain: bool = typer.Option(False, "--plain", help="No live dashboard; print results at the end"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Scan locations for log files matching a pattern and package the selected ones."""
    console = Console()
    try:
        config = load_config(config_path)
        # Apply CLI overrides
        if threads: config.general.threads = threads
        if log_path is not None: config.general.log_path = str(log_path)
        if always_package is not None: config.general.always_package = always_package
        if debug: config.general.debug = True

        setup_logging(Path(config.general.log_path), debug=config.general.debug)
        logger = logging.getLogger(__name__)
        logger.info(f"Config loaded from {config_path}, threads={config.general.threads}")

        params = JobParameters(
            pattern_code=pattern,
            locations=locations,
            date_from=date_from,
            date_to=date_to,
            search_text=search_text,
            save_to_archive=archive is not None,
            archive_path=archive,
            copy_path=copy_to,
            always_package=config.general.always_package,
        )

        if copy_to is not None and copy_to.exists():
            HousekeepingService().cleanup_temp_files(copy_to)

        results = ResultAggregator(max_results=config.general.max_results, event_bus=EventBus())
        selector = FileSystemSelector([
            LocalFileSystem(),
            SftpFileSystem(timeout=config.general.io_timeout_s),
        ])
        pipeline = Pipeline(
            config=config,
            locations=LocationRegistry.from_config(config),
            patterns=PatternRegistry.from_config(config),
            results=results,
            selector=selector,
        )

        if plain:
            pipeline.run(params, resume_from=resume)
            _print_results(console, results)
        else:
            dashboard = Dashboard(
                results,
                refresh_per_second=config.ui.refresh_per_second,
                recent_events=config.ui.recent_events,
                console=console,
            )
            with dashboard:
                pipeline.run(params, resume_from=resume)

        if results.stop_requested:
            typer.secho("Scan stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
            raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except LogScanError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    except Exception as e:
        logging.getLogger(__name__).error(traceback.format_exc())
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def patterns(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """List configured log patterns."""
    config = load_config(config_path)
    table = Table(title="Log patterns")
    table.add_column("Code", style="cyan")
    table.add_column("Description")
    table.add_column("Includes")
    table.add_column("Regex")
    for item in PatternRegistry.from_config(config).get_all():
        table.add_row(item.code, item.description, ", ".join(item.includes), item.regex or "")
    Console().print(table)


@app.command()
def locations(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """List configured locations and groups."""
    config = load_config(config_path)
    registry = LocationRegistry.from_config(config)
    table = Table(title="Locations")
    table.add_column("Code", style="cyan")
    table.add_column("Type")
    table.add_column("Host")
    table.add_column("Path")
    table.add_column("Description")
    for item in registry.get_all():
        table.add_row(item.code, item.type.value, item.host, item.path, item.description)
    console = Console()
    console.print(table)
    for group in registry.group_codes():
        members = ", ".join(loc.code for loc in registry.get_group(group))
        console.print(f"[bold]{group}[/bold]: {members}")


if __name__ == "__main__":
    app()
