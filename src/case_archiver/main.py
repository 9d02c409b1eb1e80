"""Main entry point for the case archiver CLI."""

import asyncio
import sys
import uuid
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

import click

from case_archiver.config import load_config
from case_archiver.exceptions import (
    ArchiverError,
    ConfigurationError,
    ConflictError,
    LockError,
    NotFoundError,
)
from case_archiver.models import ArchiveStatus, BatchTrigger
from case_archiver.service import ArchiverService
from utils.logging import configure_logging
from utils.output import (
    print_error,
    print_header,
    print_run_summary,
    print_success,
    print_table,
    print_warning,
)

STATUS_CHOICE = click.Choice([s.value for s in ArchiveStatus], case_sensitive=False)


def _parse_date(ctx: click.Context, param: click.Parameter, value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise click.BadParameter("expected a date in YYYY-MM-DD format") from None


def _execute(
    ctx: click.Context,
    action: Callable[[ArchiverService], Awaitable[Any]],
    serve_metrics: bool = False,
) -> Any:
    """Build the service, run ``action`` against it and map errors to exit codes."""
    logger = ctx.obj["logger"]

    try:
        archiver_config = load_config(ctx.obj["config_path"])
    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e), correlation_id=e.correlation_id)
        print_error(str(e))
        sys.exit(1)

    async def run() -> Any:
        service = ArchiverService(archiver_config, logger=logger)
        try:
            await service.initialize()
            if serve_metrics:
                service.start_metrics_server()
            return await action(service)
        finally:
            await service.close()

    try:
        return asyncio.run(run())
    except (NotFoundError, ConflictError) as e:
        logger.warning("Rerun rejected", error=str(e))
        print_error(e.message)
        sys.exit(2)
    except LockError as e:
        logger.error("Another run is in progress", error=str(e))
        print_error(e.message)
        sys.exit(1)
    except ArchiverError as e:
        logger.error("Archival failed", error=str(e), correlation_id=e.correlation_id)
        print_error(e.message)
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error", error=str(e))
        sys.exit(1)


def _report(stats: Optional[dict[str, Any]]) -> None:
    if stats is None:
        print_warning("Requested window is already covered by a completed run, nothing to do")
        return
    print_run_summary(stats, title="Archival Summary")
    if stats["status"] == ArchiveStatus.COMPLETED.value:
        print_success(f"Batch run {stats['batch_run_id']} completed")
    else:
        print_warning(
            f"Batch run {stats['batch_run_id']} is NOT_COMPLETED; "
            f"rerun it with 'case-archiver rerun {stats['batch_run_id']}'"
        )


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"]),
    help="Log level",
)
@click.option(
    "--log-format",
    default="console",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Log format: 'console' for human-readable output, 'json' for structured logs (default: console)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path,
    verbose: bool,
    log_level: str,
    log_format: str,
) -> None:
    """Archive documents of closed building-permit cases to the long-term archive."""
    effective_log_level = "DEBUG" if verbose else log_level
    logger = configure_logging(
        log_level=effective_log_level,
        log_format=log_format,
        correlation_id=str(uuid.uuid4()),
    )

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["logger"] = logger.bind(component="main")


@cli.command()
@click.pass_context
def scheduled(ctx: click.Context) -> None:
    """Run the scheduled batch (the last lookback_days days up to yesterday)."""
    stats = _execute(ctx, lambda service: service.run_scheduled(), serve_metrics=True)
    _report(stats)


@cli.command()
@click.option("--start", required=True, callback=_parse_date, help="First day (YYYY-MM-DD)")
@click.option("--end", required=True, callback=_parse_date, help="Last day (YYYY-MM-DD)")
@click.pass_context
def manual(ctx: click.Context, start: date, end: date) -> None:
    """Run a manual batch over an explicit window."""
    if start > end:
        raise click.BadParameter("--start must not be after --end", param_hint="--start")

    stats = _execute(
        ctx,
        lambda service: service.run_batch(start, end, BatchTrigger.MANUAL),
        serve_metrics=True,
    )
    _report(stats)


@cli.command()
@click.argument("batch_run_id", type=int)
@click.pass_context
def rerun(ctx: click.Context, batch_run_id: int) -> None:
    """Rerun a NOT_COMPLETED batch run over its stored window."""
    stats = _execute(ctx, lambda service: service.rerun_batch(batch_run_id), serve_metrics=True)
    _report(stats)


@cli.command()
@click.option("--status", type=STATUS_CHOICE, default=None, help="Only runs with this status")
@click.pass_context
def runs(ctx: click.Context, status: Optional[str]) -> None:
    """List batch runs."""
    status_filter = ArchiveStatus(status.upper()) if status else None
    batch_runs = _execute(ctx, lambda service: service.list_batch_runs(status_filter))

    print_header("Batch Runs")
    if not batch_runs:
        print_warning("No batch runs found")
        return
    print_table(
        ["ID", "Start", "End", "Trigger", "Status", "Created"],
        [
            [
                run.id,
                run.start.isoformat(),
                run.end.isoformat(),
                run.trigger.value,
                run.status.value,
                run.created_at.isoformat(timespec="seconds") if run.created_at else "",
            ]
            for run in batch_runs
        ],
    )


@cli.command()
@click.option("--batch-id", "batch_run_id", type=int, default=None, help="Only this batch run")
@click.option("--status", type=STATUS_CHOICE, default=None, help="Only attempts with this status")
@click.pass_context
def attempts(ctx: click.Context, batch_run_id: Optional[int], status: Optional[str]) -> None:
    """List archive attempts."""
    status_filter = ArchiveStatus(status.upper()) if status else None
    archive_attempts = _execute(
        ctx, lambda service: service.list_attempts(batch_run_id=batch_run_id, status=status_filter)
    )

    print_header("Archive Attempts")
    if not archive_attempts:
        print_warning("No archive attempts found")
        return
    print_table(
        ["Batch", "Case", "Document", "Name", "Type", "Status", "Archive ID"],
        [
            [
                attempt.batch_run_id,
                attempt.case_id,
                attempt.document_id,
                attempt.document_name or "",
                attempt.document_type or "",
                attempt.status.value,
                attempt.archive_id or "",
            ]
            for attempt in archive_attempts
        ],
    )


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
