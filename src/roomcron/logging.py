"""Centralized logging configuration for roomcron.

Entry points (the CLI, or the bot process embedding roomcron) should call
configure_logging() early.

Logging Levels:
- DEBUG: Timer re-arm details, store writes
- INFO: Job lifecycle (created, armed, fired, canceled, retired)
- WARNING: Skipped records, metadata that could not be persisted
- ERROR: Delivery and store failures
"""

import logging
import os

# Extra record attributes set by roomcron loggers, shown by the console format
_EXTRA_PREFIXES = ("schedule.", "messaging.", "store.", "sync.", "error.")


class ComponentFormatter(logging.Formatter):
    """Formatter that extracts component name from logger path.

    Converts full module paths to short component names:
    - roomcron.scheduling.engine -> scheduling
    - roomcron.cli.app -> cli

    Structured ``extra`` fields are appended as ``key=value`` pairs.
    """

    def format(self, record: logging.LogRecord) -> str:
        parts = record.name.split(".")
        if len(parts) >= 2 and parts[0] == "roomcron":
            record.component = parts[1]
        else:
            record.component = parts[0]
        message = super().format(record)
        fields = [
            f"{key}={value}"
            for key, value in sorted(record.__dict__.items())
            if key.startswith(_EXTRA_PREFIXES) and value is not None
        ]
        if fields:
            message = f"{message} [{' '.join(fields)}]"
        return message


def configure_logging(level: str | None = None, use_rich: bool = False) -> None:
    """Configure logging for roomcron.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
            If None, uses ROOMCRON_LOG_LEVEL env var or INFO.
        use_rich: Use Rich handler for colorful output.
    """
    if level is None:
        level = os.environ.get("ROOMCRON_LOG_LEVEL", "INFO").upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            level = "INFO"

    log_level = getattr(logging, level)

    if use_rich:
        from rich.logging import RichHandler

        handler: logging.Handler = RichHandler(
            rich_tracebacks=False,
            show_path=False,
            show_time=True,
            markup=False,
        )
        handler.setFormatter(ComponentFormatter("%(component)s | %(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(
            ComponentFormatter(
                "%(asctime)s | %(levelname)-8s | %(component)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        )

    logging.basicConfig(level=log_level, handlers=[handler], force=True)
