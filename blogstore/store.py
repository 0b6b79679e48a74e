"""
Store Port: the transactional store the facade talks to.

The facade only depends on ``StorePort``. ``PostgresStore`` implements it over
an asyncpg connection pool; tests may pass any other implementation.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from contextlib import AbstractAsyncContextManager
from typing import Any, Self

import asyncpg
from pydantic import BaseModel

from blogstore.config import StoreSettings
from blogstore.database_operations import DatabaseOperations
from blogstore.db_context import DatabaseContext, QueryTracker
from blogstore.errors import translate_errors
from blogstore.repository import Repository

logger = logging.getLogger(__name__)


class StorePort(ABC):
    """Abstract transactional data store"""

    @abstractmethod
    def repository[T: BaseModel](self, entity_class: type[T]) -> Repository[T]:
        """CRUD, count and filtered reads for one entity kind"""

    @abstractmethod
    def transaction(
        self, track_queries: bool = False
    ) -> AbstractAsyncContextManager[Any]:
        """Atomic unit: every statement inside commits or rolls back together"""

    @abstractmethod
    def in_transaction(self) -> bool:
        """Whether the current context is inside an atomic unit"""

    @abstractmethod
    def track_queries(self) -> AbstractAsyncContextManager[QueryTracker]:
        """Record the statements executed inside the block"""

    @abstractmethod
    async def raw_query(self, text: str, params: Sequence[Any] = ()) -> list[Any]:
        """Run caller-supplied SQL with positional parameters, untranslated"""

    @abstractmethod
    async def raw_execute(self, text: str, params: Sequence[Any] = ()) -> str:
        """Run caller-supplied SQL for its effect and return the status string.

        Without parameters the text may hold several statements.
        """

    @abstractmethod
    async def ping(self) -> None:
        """Raise StoreUnavailable when the store cannot be reached"""

    @abstractmethod
    async def close(self) -> None:
        """Release every resource held by the store"""

    async def run_in_transaction[R](self, steps: Callable[[Self], Awaitable[R]]) -> R:
        """Run ``steps(store)`` inside one atomic unit and return its result.

        Any exception raised by ``steps`` rolls back all of its writes and
        propagates to the caller.
        """
        async with self.transaction():
            return await steps(self)


class PostgresStore(StorePort):
    """Store Port over an asyncpg connection pool"""

    def __init__(self, pool: asyncpg.Pool, name: str = "default"):
        self.pool = pool
        self.context = DatabaseContext(pool, name)
        self.db_ops = DatabaseOperations(self.context)

    @classmethod
    async def connect(
        cls, settings: StoreSettings | None = None, name: str = "default"
    ) -> "PostgresStore":
        """Create the connection pool described by ``settings``"""
        settings = settings or StoreSettings()
        with translate_errors(acquiring=True):
            pool = await asyncpg.create_pool(**settings.pool_kwargs())
        logger.info(
            "Connected store %r (pool size %d..%d)",
            name,
            settings.min_pool_size,
            settings.max_pool_size,
        )
        return cls(pool, name)

    def repository[T: BaseModel](self, entity_class: type[T]) -> Repository[T]:
        return Repository(entity_class, self.db_ops)

    def transaction(self, track_queries: bool = False):
        return self.context.transaction(track_queries=track_queries)

    def in_transaction(self) -> bool:
        return self.context.get_current_connection() is not None

    def track_queries(self) -> AbstractAsyncContextManager[QueryTracker]:
        return self.context.track_queries()

    @staticmethod
    def get_query_tracker() -> QueryTracker | None:
        """The tracker of the current context, when tracking is enabled"""
        return DatabaseContext.get_query_tracker()

    async def raw_query(self, text: str, params: Sequence[Any] = ()) -> list[asyncpg.Record]:
        return await self.db_ops.fetch_raw(text, list(params))

    async def raw_execute(self, text: str, params: Sequence[Any] = ()) -> str:
        return await self.db_ops.execute_raw(text, list(params))

    async def ping(self) -> None:
        await self.db_ops.fetch_value("SELECT 1", [])

    async def close(self) -> None:
        await self.pool.close()
        logger.info("Closed store %r", self.context.name)

    async def __aenter__(self) -> "PostgresStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

