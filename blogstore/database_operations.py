import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from blogstore.db_context import DatabaseContext
from blogstore.errors import translate_errors

logger = logging.getLogger(__name__)


class DatabaseOperations:
    """Composition class for statement execution"""

    def __init__(self, context: DatabaseContext):
        self.context = context

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield the transaction connection, or a pooled one for a single statement"""
        conn = self.context.get_current_connection()
        if conn is not None:
            yield conn
            return
        with translate_errors(acquiring=True):
            conn = await self.context.pool.acquire()
        try:
            yield conn
        finally:
            await self.context.pool.release(conn)

    def _log(self, query: str, params: list[Any]):
        logger.debug("query=%s params=%r", query, params)
        self.context.log_query(query, params)

    async def fetch_all(self, query: str, params: list[Any]) -> list[asyncpg.Record]:
        """Execute query and fetch all rows"""
        self._log(query, params)
        async with self.connection() as conn:
            with translate_errors():
                return await conn.fetch(query, *params)

    async def fetch_one(self, query: str, params: list[Any]) -> asyncpg.Record | None:
        """Execute a query and fetch one row"""
        self._log(query, params)
        async with self.connection() as conn:
            with translate_errors():
                return await conn.fetchrow(query, *params)

    async def fetch_value(self, query: str, params: list[Any]) -> Any:
        """Execute query and fetch single value"""
        self._log(query, params)
        async with self.connection() as conn:
            with translate_errors():
                return await conn.fetchval(query, *params)

    async def execute_query(self, query: str, params: list[Any]) -> str:
        """Execute query and return the status string, e.g. ``INSERT 0 3``"""
        self._log(query, params)
        async with self.connection() as conn:
            with translate_errors():
                return await conn.execute(query, *params)

    async def fetch_raw(self, query: str, params: list[Any]) -> list[asyncpg.Record]:
        """Execute caller-supplied SQL; driver errors propagate untranslated"""
        self._log(query, params)
        async with self.connection() as conn:
            return await conn.fetch(query, *params)

    async def execute_raw(self, query: str, params: list[Any]) -> str:
        """Execute caller-supplied SQL for its effect; errors propagate untranslated"""
        self._log(query, params)
        async with self.connection() as conn:
            return await conn.execute(query, *params)

    @staticmethod
    def affected_rows(status: str) -> int:
        """Extract the row count from a status string such as ``DELETE 4``"""
        return int(status.split()[-1])
