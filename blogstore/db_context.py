import traceback
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import wraps
from typing import Any

import asyncpg

from blogstore.errors import translate_errors


@dataclass
class QueryLog:
    """Represents a logged query"""

    query: str
    params: list[Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    stack_trace: str | None = None


class QueryTracker:
    """Collects the statements executed while tracking is enabled"""

    def __init__(self):
        self.queries: list[QueryLog] = []
        self._enabled: bool = False

    def enable(self):
        self._enabled = True

    def disable(self):
        self._enabled = False

    def is_enabled(self) -> bool:
        return self._enabled

    def log_query(self, query: str, params: list[Any], stack_trace: str | None = None):
        if self._enabled:
            self.queries.append(
                QueryLog(query=query, params=list(params), stack_trace=stack_trace)
            )

    def get_queries(self) -> list[QueryLog]:
        """Get a copy of all logged queries"""
        return self.queries.copy()

    def clear(self):
        self.queries.clear()

    def count(self) -> int:
        return len(self.queries)

    def to_dict(self) -> list[dict[str, Any]]:
        """Convert logged queries to a list of dictionaries"""
        return [
            {
                "query": log.query,
                "params": log.params,
                "timestamp": log.timestamp.isoformat(),
                "stack_trace": log.stack_trace,
            }
            for log in self.queries
        ]


# Trackers are shared by every store used in the same context
_query_tracker: ContextVar[QueryTracker | None] = ContextVar(
    "query_tracker", default=None
)


class DatabaseContext:
    """Transaction context for one connection pool.

    The connection of the active transaction is kept in a context variable
    owned by this instance, so each asyncio task sees its own transaction and
    two stores never see each other's connections.
    """

    def __init__(self, pool: asyncpg.Pool, name: str = "default"):
        self.pool = pool
        self.name = name
        self._current_connection: ContextVar[asyncpg.Connection | None] = ContextVar(
            f"{name}_connection", default=None
        )

    def get_current_connection(self) -> asyncpg.Connection | None:
        """Get the connection of the active transaction, if any"""
        return self._current_connection.get()

    @staticmethod
    def get_query_tracker() -> QueryTracker | None:
        return _query_tracker.get()

    @staticmethod
    def log_query(query: str, params: list[Any]):
        """Log a query to the current query tracker if available"""
        tracker = _query_tracker.get()
        if tracker and tracker.is_enabled():
            # Skip this frame and the DatabaseOperations frame
            relevant_stack = traceback.extract_stack()[:-2]
            tracker.log_query(query, params, "".join(traceback.format_list(relevant_stack)))

    @asynccontextmanager
    async def transaction(self, track_queries: bool = False):
        """Context manager for database transactions.

        Behavior:
        - Inside an active transaction it opens a savepoint on the same connection.
        - Otherwise it acquires a connection from the pool and starts a transaction.
          The connection is released back to the pool when the context exits,
          whether it exits normally or with an exception.
        - Any exception leaving the block rolls the transaction (or savepoint) back.

        Args:
            track_queries: Whether to enable query tracking for this transaction
        """
        current_conn = self._current_connection.get()

        if current_conn is not None:
            async with current_conn.transaction():
                yield current_conn
            return

        with translate_errors(acquiring=True):
            conn = await self.pool.acquire()
        try:
            async with conn.transaction():
                conn_token = self._current_connection.set(conn)

                tracker_token = None
                if track_queries and not _query_tracker.get():
                    tracker = QueryTracker()
                    tracker.enable()
                    tracker_token = _query_tracker.set(tracker)

                try:
                    yield conn
                finally:
                    self._current_connection.reset(conn_token)
                    if tracker_token:
                        _query_tracker.reset(tracker_token)
        finally:
            await self.pool.release(conn)

    @staticmethod
    @asynccontextmanager
    async def track_queries():
        """Context manager specifically for query tracking.

        async with store.track_queries() as tracker:
            await facade.get_user(user_id)
            queries = tracker.get_queries()
        """
        current_tracker = _query_tracker.get()

        if current_tracker:
            was_enabled = current_tracker.is_enabled()
            current_tracker.enable()
            try:
                yield current_tracker
            finally:
                if not was_enabled:
                    current_tracker.disable()
        else:
            tracker = QueryTracker()
            tracker.enable()
            token = _query_tracker.set(tracker)
            try:
                yield tracker
            finally:
                _query_tracker.reset(token)


def transactional(track_queries: bool = False):
    """Decorator running a method inside one atomic unit of ``self.store``.

    Any exception raised by the method rolls back every write it issued.

    Example:
        class Facade:
            def __init__(self, store):
                self.store = store

            @transactional()
            async def create_user_with_profile(self, user_data, bio):
                ...
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            async with self.store.transaction(track_queries=track_queries):
                return await func(self, *args, **kwargs)

        return wrapper

    return decorator
