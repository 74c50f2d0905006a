import asyncio
import logging
import re
from typing import List, Optional

from .db import MAX_ROWS, AnalyticsStore
from .errors import AnalystError, ExecutionFailedError, ExecutionTimeoutError, NotReadOnlyError
from .models import Row, TenantContext

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 2000

_DSN_RE = re.compile(r"\b(postgres(?:ql)?|mysql)://\S+", flags=re.IGNORECASE)
_SECRET_RE = re.compile(r"\b(password|passwd|pwd|user)\s*=\s*\S+", flags=re.IGNORECASE)


def scrub_error(message: str) -> str:
    """Strip connection strings and credentials from a driver error message."""
    message = _DSN_RE.sub(r"\1://***", message)
    message = _SECRET_RE.sub(r"\1=***", message)
    first_line = message.strip().splitlines()[0] if message.strip() else "Unknown error"
    return first_line[:300]


class QueryExecutor:
    def __init__(self, store: AnalyticsStore, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        self.store = store
        self.timeout_ms = timeout_ms

    async def execute(self, sql: str, tenant: Optional[TenantContext] = None) -> List[Row]:
        if not sql.strip().upper().startswith("SELECT"):
            raise NotReadOnlyError()

        org_id = tenant.org_id if tenant else None
        try:
            rows = await asyncio.wait_for(
                self.store.execute_read_only(sql, tenant),
                timeout=self.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            logger.error("[AI][exec-timeout] org=%s timeout_ms=%s sql=%r", org_id, self.timeout_ms, sql)
            raise ExecutionTimeoutError(self.timeout_ms) from e
        except AnalystError:
            raise
        except Exception as e:
            logger.exception("[AI][exec-failed] org=%s sql=%r", org_id, sql)
            raise ExecutionFailedError(f"Query execution failed: {scrub_error(str(e))}") from e

        return list(rows)[:MAX_ROWS]
