"""Diagnostic logger capability injected into the query plan builder."""

import logging
from typing import Any, Mapping, Optional, Protocol

LOGGER_NAME = "fastapi_listquery"


class ListLogger(Protocol):
    """Anything exposing ``log(message, context)``."""

    def log(self, message: str, context: Mapping[str, Any]) -> None: ...


class LoggingListLogger:
    """
    ListLogger backed by a stdlib logger.

    The context mapping is rendered into the message and also attached to the
    record as ``record.context`` for structured handlers.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.logger = logger if logger is not None else logging.getLogger(LOGGER_NAME)
        self.level = level

    def log(self, message: str, context: Mapping[str, Any]) -> None:
        self.logger.log(self.level, "%s %s", message, dict(context), extra={"context": context})
