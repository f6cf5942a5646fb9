"""
SuperClip Backend — Usage Stores
==================================

What:  Storage for metered usage counters, keyed by `(user_id, usage_type)`.
How:   `UsageStore` is the interface the entitlement engine depends on.
       Two implementations ship:
         - InMemoryUsageStore:  process-local dict under a lock
         - DatabaseUsageStore:  `usage_records` table via async SQLAlchemy
Who:   Injected into EntitlementService; selected by USAGE_STORE_BACKEND.

Contract (every implementation):
    get(user_id, usage_type)                → int, 0 if never incremented
    increment(user_id, usage_type, amount)  → int, the new total
        One atomic step: concurrent increments to the same key never lose
        updates. Reads racing an increment may see the old total.
    reset(user_id, usage_type=None)         → None
        Zeroes one counter, or every counter of the user when usage_type is None.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from app.exceptions import AppError, ErrorKind
from app.models.usage import UsageRecord

logger = logging.getLogger(__name__)


class UsageStore(ABC):
    """Abstract usage counter storage."""

    @abstractmethod
    async def get(self, user_id: str, usage_type: str) -> int:
        ...

    @abstractmethod
    async def increment(self, user_id: str, usage_type: str, amount: int) -> int:
        ...

    @abstractmethod
    async def reset(self, user_id: str, usage_type: Optional[str] = None) -> None:
        ...


class InMemoryUsageStore(UsageStore):
    """
    Process-local counters.

    Counters live for the lifetime of the process and are not shared between
    workers. The lock makes each increment a single critical section, so the
    store stays correct when called from threadpool workers as well as from
    the event loop.
    """

    def __init__(self):
        self._counters: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    async def get(self, user_id: str, usage_type: str) -> int:
        return self._counters.get((user_id, usage_type), 0)

    async def increment(self, user_id: str, usage_type: str, amount: int) -> int:
        key = (user_id, usage_type)
        with self._lock:
            total = self._counters.get(key, 0) + amount
            self._counters[key] = total
        return total

    async def reset(self, user_id: str, usage_type: Optional[str] = None) -> None:
        with self._lock:
            if usage_type is not None:
                self._counters.pop((user_id, usage_type), None)
                return
            for key in [k for k in self._counters if k[0] == user_id]:
                del self._counters[key]


class DatabaseUsageStore(UsageStore):
    """
    Counters persisted in the `usage_records` table.

    Increment algorithm:
        1. UPDATE usage_records SET amount = amount + :n WHERE key matches
        2. If no row was updated, INSERT the row with amount = :n
        3. If the INSERT loses a race with another worker's first increment,
           the unique constraint raises IntegrityError and the whole step is
           retried, this time hitting the UPDATE branch

    Each call opens its own short transaction, independent of any request
    session, so a counter update is committed even if the handler later fails.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from app.database import async_session_factory
            session_factory = async_session_factory
        self._session_factory = session_factory

    async def get(self, user_id: str, usage_type: str) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UsageRecord.amount).where(
                        UsageRecord.user_id == user_id,
                        UsageRecord.usage_type == usage_type,
                    )
                )
                amount = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._database_error("read", user_id, usage_type, e) from e
        return amount or 0

    async def increment(self, user_id: str, usage_type: str, amount: int) -> int:
        try:
            return await self._increment_with_retry(user_id, usage_type, amount)
        except SQLAlchemyError as e:
            raise self._database_error("increment", user_id, usage_type, e) from e

    @retry(
        retry=retry_if_exception_type(IntegrityError),
        stop=stop_after_attempt(3),
        wait=wait_random(min=0, max=0.05),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    )
    async def _increment_with_retry(self, user_id: str, usage_type: str, amount: int) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                total = await self._apply_increment(session, user_id, usage_type, amount)
        return total

    async def _apply_increment(
        self, session: AsyncSession, user_id: str, usage_type: str, amount: int
    ) -> int:
        now = datetime.now(timezone.utc)
        result = await session.execute(
            update(UsageRecord)
            .where(
                UsageRecord.user_id == user_id,
                UsageRecord.usage_type == usage_type,
            )
            .values(amount=UsageRecord.amount + amount, updated_at=now)
            .returning(UsageRecord.amount)
            .execution_options(synchronize_session=False)
        )
        total = result.scalar_one_or_none()
        if total is not None:
            return total

        session.add(
            UsageRecord(user_id=user_id, usage_type=usage_type, amount=amount, updated_at=now)
        )
        await session.flush()
        return amount

    async def reset(self, user_id: str, usage_type: Optional[str] = None) -> None:
        statement = delete(UsageRecord).where(UsageRecord.user_id == user_id)
        if usage_type is not None:
            statement = statement.where(UsageRecord.usage_type == usage_type)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(statement.execution_options(synchronize_session=False))
        except SQLAlchemyError as e:
            raise self._database_error("reset", user_id, usage_type, e) from e

    @staticmethod
    def _database_error(
        operation: str, user_id: str, usage_type: Optional[str], error: Exception
    ) -> AppError:
        logger.error(
            "Usage store %s failed for user=%s type=%s: %s",
            operation,
            user_id,
            usage_type,
            error,
        )
        return AppError(
            ErrorKind.DATABASE,
            f"Usage store {operation} failed",
            details={"user_id": user_id, "usage_type": usage_type},
        )


def create_usage_store(backend: str) -> UsageStore:
    """Build the store named by the USAGE_STORE_BACKEND setting."""
    if backend == "database":
        return DatabaseUsageStore()
    if backend == "memory":
        return InMemoryUsageStore()
    raise AppError(
        ErrorKind.CONFIGURATION,
        f"Unknown usage store backend '{backend}'",
    )
