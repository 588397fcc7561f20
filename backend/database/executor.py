"""
Statement executors for raw parameterized SQL.

The repository only needs three capabilities: fetch one row, fetch all
rows, and execute a write returning the affected row count. Two executors
provide them:

- EngineExecutor: each statement runs in its own short transaction on a
  pooled connection (autocommit per statement)
- ConnectionExecutor: every statement runs on one open connection inside
  the caller's transaction (unit of work)
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

logger = logging.getLogger(__name__)


class StatementExecutor(Protocol):
    """Capability to run parameterized statements."""

    async def fetch_one(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Row]:
        ...

    async def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Row]:
        ...

    async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        ...


class ConnectionExecutor:
    """Runs statements on one connection that is already inside a transaction."""

    in_transaction = True

    def __init__(self, connection: AsyncConnection):
        self.connection = connection

    async def fetch_one(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Row]:
        result = await self.connection.execute(text(sql), params or {})
        return result.fetchone()

    async def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Row]:
        result = await self.connection.execute(text(sql), params or {})
        return list(result.fetchall())

    async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        result = await self.connection.execute(text(sql), params or {})
        return result.rowcount


class EngineExecutor:
    """
    Runs each statement in its own transaction on a pooled connection.

    `statement_timeout` (seconds) bounds every call so a hung backend
    cannot hold a request forever.
    """

    in_transaction = False

    def __init__(self, engine: AsyncEngine, statement_timeout: Optional[float] = None):
        self.engine = engine
        self.statement_timeout = statement_timeout

    async def _run(self, method: str, sql: str, params: Optional[Dict[str, Any]]):
        async def run():
            async with self.engine.begin() as connection:
                return await getattr(ConnectionExecutor(connection), method)(sql, params)

        if self.statement_timeout:
            return await asyncio.wait_for(run(), timeout=self.statement_timeout)
        return await run()

    async def fetch_one(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Row]:
        return await self._run("fetch_one", sql, params)

    async def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Row]:
        return await self._run("fetch_all", sql, params)

    async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        return await self._run("execute", sql, params)
