"""
Console and logging helpers shared by the dvschema commands.

Log records carry `stage` / `event` (and optionally `table`, `field`,
`metadata`) extras; the JSON formatter copies whichever are present.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from dvschema.models import SchemaRecord

console = Console()

LOG_EXTRAS = ("stage", "event", "table", "field", "metadata")
PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class StructuredFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in LOG_EXTRAS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _console_handler(log_format: str) -> logging.Handler:
    if log_format == "structured":
        handler = logging.StreamHandler()
        handler.setFormatter(StructuredFormatter())
        return handler
    return RichHandler(console=console, show_time=False, show_path=False, markup=False)


def _file_handler(log_file: Path, log_format: str) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(StructuredFormatter() if log_format == "structured" else logging.Formatter(PLAIN_FORMAT))
    return handler


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    log_format: str = "pretty",
    console_output: bool = True,
) -> logging.Logger:
    """
    Configure the "dvschema" logger for one CLI invocation.

    Args:
        log_file: Also append log lines to this file
        log_level: DEBUG, INFO, WARNING or ERROR
        log_format: "pretty" (rich console) or "structured" (JSON lines)
        console_output: Attach a console handler

    Returns:
        The "dvschema" logger; handlers from a previous call are replaced
    """
    logger = logging.getLogger("dvschema")
    logger.setLevel(log_level.upper())
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_file is not None:
        logger.addHandler(_file_handler(Path(log_file).expanduser(), log_format))
    if console_output:
        logger.addHandler(_console_handler(log_format))
    return logger


def format_duration_ms(duration_ms: int) -> str:
    """Render a run duration, e.g. "850ms", "12.4s", "1m 23s"."""
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    seconds = duration_ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}m {rest}s"


def record_status(record: SchemaRecord) -> str:
    """Rich markup describing where a record stands after probing."""
    if record.error_message:
        return f"[red]error: {record.error_message}[/red]"
    if record.field_exists:
        return "[green]exists[/green]"
    if not record.table_exists:
        return "[yellow]new (table)[/yellow]"
    return "[yellow]new[/yellow]"


def records_table(title: str, records: Iterable[SchemaRecord]) -> Table:
    table = Table(title=title)
    for heading in ("Table", "Column", "Type", "Status"):
        table.add_column(heading)
    for record in records:
        table.add_row(
            record.table_logical_name,
            record.field_logical_name,
            record.type_token or "",
            record_status(record),
        )
    return table


def print_banner(title: str) -> None:
    console.rule(f"[bold blue]dvschema {title.lower()}[/bold blue]")


def _mark(style: str, symbol: str, message: str) -> None:
    console.print(f"[bold {style}]{symbol}[/bold {style}] {message}", highlight=False)


def print_success(message: str) -> None:
    _mark("green", "✓", message)


def print_error(message: str) -> None:
    _mark("red", "✗", message)


def print_warning(message: str) -> None:
    _mark("yellow", "!", message)


def print_info(message: str) -> None:
    _mark("cyan", "-", message)
