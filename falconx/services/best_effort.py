"""Log-and-continue wrapper for non-critical store writes.

Clone records, detection logs and lookup-table backfills must never stop a
response from reaching the reporting client. A failed write is rolled back to
its savepoint, logged at error level and counted; the caller gets ``None``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from falconx.metrics import record_best_effort_failure

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class BestEffort:
    """Runs writes in a savepoint and swallows store errors."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def run(
        self,
        operation: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **context: Any,
    ) -> T | None:
        """Await ``fn(db, *args)`` inside a savepoint.

        ``context`` is only used for the failure log.
        """
        try:
            async with self.db.begin_nested():
                return await fn(self.db, *args)
        except SQLAlchemyError as e:
            logger.error(
                "best_effort_write_failed",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
                **context,
            )
            record_best_effort_failure(operation)
            return None

    async def commit(self, operation: str = "commit", **context: Any) -> bool:
        """Commit the session; on failure roll back and report False."""
        try:
            await self.db.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(
                "best_effort_write_failed",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
                **context,
            )
            record_best_effort_failure(operation)
            await self.db.rollback()
            return False
