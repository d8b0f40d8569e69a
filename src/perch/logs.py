"""Logging setup for the perch server process.

Library modules only ever call ``logging.getLogger("perch.<area>")``;
``configure_logging`` is invoked by ``App.run()`` and the CLI so that an
embedding application keeps control of its own logging tree.
"""

import json
import logging
import sys
import time
from typing import IO

LOGGER_NAME = "perch"


class JSONFormatter(logging.Formatter):
    """One JSON object per line: time, level, logger, message, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "time": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
            + f".{int(record.msecs):03d}Z",
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(
    level: str = "info",
    fmt: str = "text",
    *,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Attach a single stream handler to the ``perch`` logger.

    Calling it again replaces the previous handler instead of stacking.
    """
    logger = logging.getLogger(LOGGER_NAME)
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        msg = f"Unknown log level {level!r}"
        raise ValueError(msg)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    handler.set_name("perch")

    for existing in list(logger.handlers):
        if existing.get_name() == "perch":
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(numeric)
    logger.propagate = False
    return logger
