"""Structured event emission on top of the standard logging module.

Events are logged as ``event key=value ...`` lines. The event name and fields
are also attached to the record (``record.event``, ``record.fields``) so a
JSON formatter or log shipper can pick them up without parsing the message.
"""

import logging
from typing import Any


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.6g}"
    return str(value)


def emit_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Log a structured event.

    :param logger: Logger to emit on.
    :param event: Event name (e.g., "cycle_completed").
    :param level: Logging level (default: INFO).
    :param fields: Event fields.
    """
    if not logger.isEnabledFor(level):
        return
    parts = [event] + [f"{k}={_format_value(v)}" for k, v in fields.items()]
    logger.log(level, " ".join(parts), extra={"event": event, "fields": fields})
