from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import aiomysql
import pymysql

from app.config import Settings
from app.services.proc_database import CallResult, CallStatus, Procedure
from app.services.proc_errors import DatabaseCallError
from app.services.safe_sql import render_call

logger = logging.getLogger(__name__)

# MySQL reports an unhandled user SIGNAL with errno 1644 (ER_SIGNAL_EXCEPTION)
SIGNAL_ERRNO = 1644
SIGNAL_STATE = "45000"
GENERAL_STATE = "HY000"

CATALOG_QUERY = """
SELECT
    r.ROUTINE_NAME AS routine_name,
    r.ROUTINE_DEFINITION AS routine_definition,
    p.PARAMETER_NAME AS parameter_name
FROM INFORMATION_SCHEMA.ROUTINES AS r
LEFT JOIN INFORMATION_SCHEMA.PARAMETERS AS p
    ON p.SPECIFIC_SCHEMA = r.ROUTINE_SCHEMA
    AND p.SPECIFIC_NAME = r.SPECIFIC_NAME
    AND p.PARAMETER_NAME IS NOT NULL
WHERE r.ROUTINE_SCHEMA = %s
    AND r.ROUTINE_TYPE = 'PROCEDURE'
    AND r.ROUTINE_NAME LIKE %s
ORDER BY r.ROUTINE_NAME, p.ORDINAL_POSITION
"""


class MySQLProcedureDatabase:
    def __init__(self, pool: Any, schema: str, prefix: str = "api_") -> None:
        self._pool = pool
        self._schema = schema
        self._prefix = prefix

    @classmethod
    async def connect(cls, settings: Settings) -> MySQLProcedureDatabase:
        pool = await aiomysql.create_pool(
            host=settings.db_host,
            port=settings.db_port,
            user=settings.db_user,
            password=settings.db_password,
            db=settings.db_name,
            minsize=1,
            maxsize=settings.db_pool_size,
            autocommit=True,
            charset="utf8mb4",
        )
        logger.info(
            "MySQLProcedureDatabase.connect: host=%s port=%s db=%s pool=%s",
            settings.db_host,
            settings.db_port,
            settings.db_name,
            settings.db_pool_size,
        )
        return cls(pool, settings.db_name, settings.procedure_prefix)

    async def fetch_catalog(self) -> list[Procedure]:
        rows = await self._fetch_all(CATALOG_QUERY, (self._schema, like_prefix(self._prefix)))
        return group_catalog_rows(rows)

    async def call(self, procedure: str, args: Sequence[Any]) -> CallResult:
        statement = render_call(procedure, len(args))
        try:
            async with self._pool.acquire() as conn:
                async with conn.cursor(aiomysql.DictCursor) as cur:
                    await cur.execute(statement, list(args))
                    results: CallResult = []
                    while True:
                        if cur.description is not None:
                            results.append([dict(row) for row in await cur.fetchall()])
                        if not await cur.nextset():
                            break
                    results.append(
                        CallStatus(affected_rows=cur.rowcount, last_insert_id=cur.lastrowid)
                    )
        except pymysql.err.MySQLError as exc:
            raise to_database_error(exc) from exc
        return results

    async def close(self) -> None:
        self._pool.close()
        await self._pool.wait_closed()
        logger.info("MySQLProcedureDatabase.close: pool closed")

    async def _fetch_all(self, query: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        try:
            async with self._pool.acquire() as conn:
                async with conn.cursor(aiomysql.DictCursor) as cur:
                    await cur.execute(query, params)
                    return [dict(row) for row in await cur.fetchall()]
        except pymysql.err.MySQLError as exc:
            raise to_database_error(exc) from exc


def like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}%"


def group_catalog_rows(rows: Sequence[dict[str, Any]]) -> list[Procedure]:
    names: list[str] = []
    definitions: dict[str, str | None] = {}
    parameters: dict[str, list[str]] = {}
    for row in rows:
        name = row["routine_name"]
        if name not in definitions:
            names.append(name)
            definitions[name] = row["routine_definition"]
            parameters[name] = []
        if row["parameter_name"]:
            parameters[name].append(row["parameter_name"])

    logger.info("group_catalog_rows: procedures=%s", len(names))
    return [Procedure(name, definitions[name], tuple(parameters[name])) for name in names]


def to_database_error(exc: pymysql.err.MySQLError) -> DatabaseCallError:
    code = exc.args[0] if exc.args and isinstance(exc.args[0], int) else None
    message = str(exc.args[1]) if len(exc.args) > 1 else str(exc)
    state = SIGNAL_STATE if code == SIGNAL_ERRNO else GENERAL_STATE
    return DatabaseCallError(state, message, code)
