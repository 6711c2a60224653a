"""
MongoDB logging handler.

Persists log records as ``ServerLog`` documents so worker logs can be read
without shell access to the host. Records expire through the TTL index on
the collection.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from db.models import ServerLog

logger = logging.getLogger(__name__)

_SKIPPED_LOGGERS = ("pymongo", "motor", "beanie", __name__)


class MongoDBHandler(logging.Handler):
    """Logging handler that writes records to the server_logs collection."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._pending: set[asyncio.Task] = set()

    def build_document(self, record: logging.LogRecord) -> ServerLog:
        exc_text = None
        if record.exc_info:
            formatter = self.formatter or logging.Formatter()
            exc_text = formatter.formatException(record.exc_info)
        return ServerLog(
            timestamp=datetime.fromtimestamp(record.created, tz=UTC),
            level=record.levelname,
            logger_name=record.name,
            message=record.getMessage(),
            pathname=record.pathname,
            lineno=record.lineno,
            funcName=record.funcName,
            exc_info=exc_text,
        )

    def emit(self, record: logging.LogRecord) -> None:
        # Records from the driver or from this module would recurse
        if record.name.startswith(_SKIPPED_LOGGERS):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        try:
            document = self.build_document(record)
            task = loop.create_task(self._insert(document))
        except Exception:
            self.handleError(record)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _insert(document: ServerLog) -> None:
        try:
            await document.insert()
        except Exception as exc:
            logger.debug("Dropped log record: %s", exc)

    async def flush_pending(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def close(self) -> None:
        self._pending.clear()
        super().close()
