"""
Structured logging for the banking core.

Service modules log through `logging.getLogger(__name__)` with a dotted event
name as the message and structured fields passed via `extra=`:

    logger.info(
        "movement.completed",
        extra={"movement_id": str(movement.id), "amount_cents": 4000},
    )

`setup_logging()` is called once from the application factory. It attaches a
JSON formatter to the `bankcore` logger so every record is emitted as one
line of JSON containing the standard fields plus whatever was passed in
`extra`.
"""

import json
import logging
from datetime import datetime, timezone


# Attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """Render a log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True) -> logging.Logger:
    """
    Configure the `bankcore` logger.

    Existing handlers are replaced so repeated calls (tests, reloads) do not
    duplicate output.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: Emit JSON lines; plain text otherwise.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("bankcore")

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger
