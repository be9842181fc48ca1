"""Utility functions for formatted CLI output."""

from datetime import datetime
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
    click.echo(click.style(f"✗ {message}", fg="red", bold=True))


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


def format_duration(start_time: str, end_time: str) -> str:
    """Format the time between two ISO timestamps as HH:MM:SS."""
    start = datetime.fromisoformat(start_time.replace("Z", "+00:00"))
    end = datetime.fromisoformat(end_time.replace("Z", "+00:00"))
    duration = (end - start).total_seconds()
    hours = int(duration // 3600)
    minutes = int((duration % 3600) // 60)
    seconds = int(duration % 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def print_summary(stats: dict[str, Any], title: str = "Archival Summary") -> None:
    """Print a formatted summary of an archival run.

    Args:
        stats: Statistics dictionary returned by ManifestArchiver.run()
        title: Summary title
    """
    print_header(title)

    if stats.get("dry_run"):
        print_key_value("Mode", "dry run (no uploads, no deletes)", value_color="yellow")

    print_section("Manifest")
    print_key_value("Parts", stats.get("manifest_parts", 0))
    print_key_value("Rows classified", f"{stats.get('rows_classified', 0):,}")

    print_section("Patterns")
    print_key_value("Configured", stats.get("patterns_total", 0))
    print_key_value("Keys matched", f"{stats.get('keys_matched', 0):,}")
    print_key_value("Archives uploaded", stats.get("archives_uploaded", 0))
    print_key_value("Objects deleted", f"{stats.get('objects_deleted', 0):,}")

    pattern_stats = stats.get("pattern_stats", [])
    if pattern_stats:
        click.echo()
        print_table(
            ["Pattern", "Matched", "Archived", "State"],
            [
                [p["pattern"], p["matched"], p["processed"], p["state"]]
                for p in pattern_stats
            ],
        )

    if stats.get("start_time") and stats.get("end_time"):
        print_section("Duration")
        print_key_value("Total Time", format_duration(stats["start_time"], stats["end_time"]))

    click.echo()
    if stats.get("status") == "success":
        print_success("Archival completed")
    else:
        print_error(f"Archival {stats.get('status', 'failed')}: {stats.get('error', 'unknown error')}")
