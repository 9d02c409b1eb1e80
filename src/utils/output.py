"""Utility functions for formatted CLI output."""

from typing import Any

import click


def print_header(title: str, width: int = 70, color: str = "cyan") -> None:
    """Print a formatted header.

    Args:
        title: Header title
        width: Header width
        color: Header color
    """
    click.echo()
    click.echo(click.style("=" * width, fg=color))
    click.echo(click.style(title, fg=color, bold=True))
    click.echo(click.style("=" * width, fg=color))
    click.echo()


def print_section(title: str, color: str = "yellow") -> None:
    """Print a section title."""
    click.echo(click.style(f"\n{title}:", fg=color, bold=True))


def print_key_value(
    key: str, value: Any, key_color: str = "white", value_color: str = "cyan"
) -> None:
    """Print a key-value pair."""
    click.echo(
        click.style(f"  {key}: ", fg=key_color) + click.style(str(value), fg=value_color, bold=True)
    )


def print_success(message: str) -> None:
    """Print a success message."""
    click.echo(click.style(f"✓ {message}", fg="green", bold=True))


def print_error(message: str) -> None:
    """Print an error message."""
    click.echo(click.style(f"✗ {message}", fg="red", bold=True), err=True)


def print_warning(message: str) -> None:
    """Print a warning message."""
    click.echo(click.style(f"⚠ {message}", fg="yellow", bold=True))


def print_table(headers: list[str], rows: list[list[Any]], header_color: str = "cyan") -> None:
    """Print a formatted table.

    Args:
        headers: Table headers
        rows: Table rows
        header_color: Header color
    """
    if not rows:
        return

    col_widths = [len(str(h)) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            col_widths[i] = max(col_widths[i], len(str(cell)))

    header_row = " | ".join(str(h).ljust(col_widths[i]) for i, h in enumerate(headers))
    click.echo(click.style(header_row, fg=header_color, bold=True))
    click.echo(click.style("-" * len(header_row), dim=True))

    for row in rows:
        click.echo(" | ".join(str(cell).ljust(col_widths[i]) for i, cell in enumerate(row)))


def print_run_summary(stats: dict[str, Any], title: str = "Archival Summary") -> None:
    """Print a formatted summary of one batch run.

    Args:
        stats: Run statistics as returned by ArchiverService
        title: Summary title
    """
    print_header(title)

    print_section("Batch Run")
    print_key_value("ID", stats.get("batch_run_id"))
    print_key_value("Window", f"{stats.get('start')} .. {stats.get('end')}")
    print_key_value("Trigger", stats.get("trigger"))
    print_key_value("Status", stats.get("status"))

    print_section("Documents")
    print_key_value("Archived", stats.get("documents_archived", 0))
    print_key_value("Failed", stats.get("documents_failed", 0))
    print_key_value("Skipped (already handled)", stats.get("documents_skipped", 0))

    print_section("Source")
    print_key_value("Pages fetched", stats.get("pages_fetched", 0))
    print_key_value("Closed cases", stats.get("cases_processed", 0))

    reconciled = stats.get("reconciled_runs") or []
    if reconciled:
        print_section("Reconciliation")
        print_key_value("Older runs completed", ", ".join(str(r) for r in reconciled))

    click.echo()
