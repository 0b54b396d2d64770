from __future__ import annotations

import logging
import sys


class _ExtraDefaultFilter(logging.Filter):
    """Make sure every record carries the structured `crq_extra` field."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "crq_extra"):
            record.crq_extra = "{}"
        return True


def configure_logging(json: bool, level: int | str = logging.INFO) -> None:
    """Configure application-wide logging.

    Args:
        json: Whether to emit JSON-formatted logs.
        level: Root log level, as a number or a name such as "DEBUG".
    """

    root = logging.getLogger()
    root.setLevel(level)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler: logging.Handler
    if json:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt='{"level":"%(levelname)s","time":"%(asctime)s","name":"%(name)s",'
            '"message":"%(message)s","extra":%(crq_extra)s}',
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s %(crq_extra)s",
        )

    handler.setFormatter(formatter)
    handler.addFilter(_ExtraDefaultFilter())
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
