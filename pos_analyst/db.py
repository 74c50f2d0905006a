import asyncio
import contextlib
import json
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import psycopg
from psycopg import sql as pgsql
from psycopg.rows import dict_row

from .models import Row, Scalar, TenantContext

MAX_ROWS = 1000


class AnalyticsStore(Protocol):
    async def execute_read_only(self, query: str, tenant: Optional[TenantContext] = None) -> List[Row]:
        ...


def to_scalar(value: Any) -> Scalar:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, memoryview)):
        return bytes(value).hex()
    return str(value)


def to_row(record: Dict[str, Any]) -> Row:
    return {key: to_scalar(value) for key, value in record.items()}


def rls_claims(tenant: TenantContext) -> str:
    return json.dumps({
        "role": "authenticated",
        "org_id": tenant.org_id,
        "user_id": tenant.user_id,
        "location_access": list(tenant.location_access),
    })


@contextlib.asynccontextmanager
async def get_connection(dsn: str) -> AsyncIterator[psycopg.AsyncConnection]:
    conn = await psycopg.AsyncConnection.connect(dsn)
    try:
        await conn.set_read_only(True)
        async with conn.cursor() as cur:
            await cur.execute("SET client_encoding TO 'UTF8'")
        await conn.commit()
        yield conn
    finally:
        await conn.close()


class PostgresAnalyticsStore:
    """Runs hardened SELECTs in a read-only transaction scoped to one tenant.

    Tenant scoping relies on row-level-security policies that read
    ``request.jwt.claims``; the claims are set transaction-locally so they never
    outlive the statement.
    """

    def __init__(self, dsn: str, readonly_role: Optional[str] = None, statement_timeout_ms: int = 2000) -> None:
        self.dsn = dsn
        self.readonly_role = readonly_role
        self.statement_timeout_ms = statement_timeout_ms

    async def execute_read_only(self, query: str, tenant: Optional[TenantContext] = None) -> List[Row]:
        async with get_connection(self.dsn) as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        "SELECT set_config('statement_timeout', %s, true)",
                        (str(self.statement_timeout_ms),),
                    )
                    if self.readonly_role:
                        await cur.execute(pgsql.SQL("SET LOCAL ROLE {}").format(pgsql.Identifier(self.readonly_role)))
                    if tenant is not None:
                        await cur.execute(
                            "SELECT set_config('request.jwt.claims', %s, true)",
                            (rls_claims(tenant),),
                        )
                    try:
                        await cur.execute(query)
                        records = await cur.fetchmany(MAX_ROWS)
                    except asyncio.CancelledError:
                        conn.cancel()
                        raise
        return [to_row(r) for r in records]
