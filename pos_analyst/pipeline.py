import logging
import time
from typing import Callable, Optional

from .cache import ResponseCache, make_cache_key
from .composer import ResponseComposer, redact_emails
from .config import Settings
from .db import AnalyticsStore, PostgresAnalyticsStore
from .errors import EmptyQueryError, ExecutionError, ExecutionTimeoutError, LocationAccessError
from .executor import QueryExecutor
from .llm import TextGenerationService, build_text_service
from .models import AIQueryRequest, AIQueryResponse, SQLGenerationRequest, TenantContext
from .schema_catalog import SCHEMA_CATALOG
from .sql_generator import SQLGenerator

logger = logging.getLogger(__name__)

EMPTY_QUERY_ANSWER = "Please type a question about your sales data."
REJECTED_ANSWER = "Unable to process your query. Please try rephrasing your question."
FAILED_ANSWER = "The generated query could not be executed. Please try a different question."
INTERNAL_ANSWER = "Sorry, there was an error processing your request. Please try again."
LOCATION_DENIED_ANSWER = "You don't have access to the selected locations. Please adjust the location filter."


def scope_to_tenant(tenant: TenantContext, request: AIQueryRequest) -> AIQueryRequest:
    """Narrow the requested locations to the ones the user may see.

    An empty ``location_access`` means the user is not restricted.
    """
    if not tenant.location_access:
        return request
    allowed = set(tenant.location_access)
    if request.location_ids:
        location_ids = [loc for loc in request.location_ids if loc in allowed]
        if not location_ids:
            raise LocationAccessError()
    else:
        location_ids = list(tenant.location_access)
    return request.model_copy(update={"location_ids": location_ids})


class AIQueryPipeline:
    """
    Request handler for one natural-language analytics question.

    Steps run strictly in order: cache lookup, SQL generation (hardened inside
    the generator), read-only execution, composition, cache write. Nothing is
    retried; every expected failure becomes an ``AIQueryResponse`` with
    ``error`` set and an apologetic ``answer``.
    """

    def __init__(
        self,
        generator: SQLGenerator,
        executor: QueryExecutor,
        composer: ResponseComposer,
        cache: ResponseCache,
        schema: Optional[str] = None,
        cache_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.generator = generator
        self.executor = executor
        self.composer = composer
        self.cache = cache
        self.schema = schema if schema is not None else SCHEMA_CATALOG.to_text()
        self.cache_ttl = cache_ttl
        self._clock = clock

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    async def handle(self, tenant: TenantContext, request: AIQueryRequest) -> AIQueryResponse:
        started = self._clock()
        try:
            return await self._handle(tenant, request, started)
        except EmptyQueryError as e:
            return AIQueryResponse(answer=EMPTY_QUERY_ANSWER, sql="", error=str(e))
        except LocationAccessError as e:
            logger.warning("[AI][rejected] org=%s user=%s error=%s", tenant.org_id, tenant.user_id, e)
            return AIQueryResponse(answer=LOCATION_DENIED_ANSWER, sql="", error=str(e))
        except Exception:
            logger.exception("[AI][internal-error] org=%s user=%s", tenant.org_id, tenant.user_id)
            return AIQueryResponse(
                answer=INTERNAL_ANSWER,
                sql="",
                error="Internal server error while processing AI query",
            )

    async def _handle(self, tenant: TenantContext, request: AIQueryRequest, started: float) -> AIQueryResponse:
        query = (request.query or "").strip()
        if not query:
            raise EmptyQueryError()

        request = scope_to_tenant(tenant, request)
        key = make_cache_key(tenant, request)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(
                "[AI][cache-hit] org=%s user=%s latency_ms=%s qlen=%s",
                tenant.org_id, tenant.user_id, self._elapsed_ms(started), len(query),
            )
            return cached

        generated = await self.generator.generate(SQLGenerationRequest.from_query_request(request, self.schema))
        if not generated.is_valid:
            logger.warning(
                "[AI][rejected] org=%s user=%s latency_ms=%s error=%s",
                tenant.org_id, tenant.user_id, self._elapsed_ms(started), generated.error,
            )
            return AIQueryResponse(
                answer=REJECTED_ANSWER,
                sql="",
                error=generated.error or "Failed to generate valid SQL",
            )

        try:
            rows = await self.executor.execute(generated.sql, tenant)
        except ExecutionError as e:
            kind = "timeout" if isinstance(e, ExecutionTimeoutError) else "error"
            logger.warning(
                "[AI][failed] org=%s user=%s latency_ms=%s kind=%s error=%s",
                tenant.org_id, tenant.user_id, self._elapsed_ms(started), kind, e.message,
            )
            return AIQueryResponse(answer=FAILED_ANSWER, sql=redact_emails(generated.sql), error=e.message)

        response = await self.composer.compose(query, rows, generated.sql)
        self.cache.set(key, response, self.cache_ttl)

        logger.info(
            "[AI][answer] org=%s user=%s latency_ms=%s rows=%s sql_len=%s",
            tenant.org_id, tenant.user_id, self._elapsed_ms(started), len(rows), len(response.sql),
        )
        return response


def build_pipeline(
    settings: Settings,
    cache: ResponseCache,
    service: Optional[TextGenerationService] = None,
    store: Optional[AnalyticsStore] = None,
) -> AIQueryPipeline:
    service = service or build_text_service(settings)
    store = store or PostgresAnalyticsStore(
        settings.postgres_dsn,
        readonly_role=settings.readonly_role,
        statement_timeout_ms=settings.db_timeout_ms,
    )
    return AIQueryPipeline(
        generator=SQLGenerator(service, timeout=settings.llm_timeout_seconds, log_prompts=settings.log_prompts),
        executor=QueryExecutor(store, timeout_ms=settings.db_timeout_ms),
        composer=ResponseComposer(service, timeout=settings.llm_timeout_seconds, log_prompts=settings.log_prompts),
        cache=cache,
        cache_ttl=settings.cache_ttl_seconds,
    )
