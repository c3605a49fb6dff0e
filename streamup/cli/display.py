"""Shared display helpers for the streamup CLI."""

from __future__ import annotations

from datetime import datetime

from rich import box
from rich.console import Console
from rich.table import Table

from streamup.models import MultipartSessionInfo, ObjectInfo

SIZE_UNITS = "KMGTPE"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_size(num_bytes: int) -> str:
    """Format a byte count with binary units, e.g. ``1.50 MB``."""
    unit = 1024
    if num_bytes < unit:
        return f"{num_bytes} B"
    divisor, exponent = unit, 0
    remaining = num_bytes // unit
    while remaining >= unit:
        divisor *= unit
        exponent += 1
        remaining //= unit
    return f"{num_bytes / divisor:.2f} {SIZE_UNITS[exponent]}B"


def format_timestamp(moment: datetime | None) -> str:
    """Format a listing timestamp, ``-`` when unknown."""
    if moment is None:
        return "-"
    return moment.strftime(DATE_FORMAT)


def print_object_table(console: Console, objects: list[ObjectInfo]) -> None:
    """Render an object listing followed by a total line."""
    table = Table(box=box.MINIMAL, show_header=True, header_style="bold")
    table.add_column("Key", overflow="fold")
    table.add_column("Size", justify="right", no_wrap=True)
    table.add_column("Last Modified", no_wrap=True)

    total_size = 0
    for info in objects:
        total_size += info.size
        table.add_row(
            info.key, format_size(info.size), format_timestamp(info.last_modified)
        )

    console.print(table)
    console.print(f"Total: {len(objects)} objects, {format_size(total_size)}")


def print_session_table(
    console: Console, sessions: list[MultipartSessionInfo]
) -> None:
    """Render incomplete multipart uploads."""
    table = Table(box=box.MINIMAL, show_header=True, header_style="bold")
    table.add_column("Key", overflow="fold")
    table.add_column("Upload ID", overflow="fold")
    table.add_column("Initiated", no_wrap=True)

    for session in sessions:
        table.add_row(
            session.key, session.upload_id, format_timestamp(session.initiated)
        )

    console.print(table)
