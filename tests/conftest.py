import asyncio
import json

import pytest

from pos_analyst.cache import ResponseCache
from pos_analyst.composer import ResponseComposer
from pos_analyst.errors import UpstreamGenerationError
from pos_analyst.executor import QueryExecutor
from pos_analyst.models import TenantContext
from pos_analyst.pipeline import AIQueryPipeline
from pos_analyst.sql_generator import SQLGenerator


class StubTextService:
    """Answers JSON-mode calls with a canned SQL payload and free-text calls with an insight."""

    def __init__(self, sql="SELECT 1", explanation="stub", insight="Sales look healthy.", fail=False, raw=None):
        self.sql = sql
        self.explanation = explanation
        self.insight = insight
        self.fail = fail
        self.raw = raw
        self.calls = []

    async def complete(self, system_prompt, user_prompt, *, json_mode=False, temperature=0.1, max_tokens=None):
        self.calls.append({
            "system": system_prompt,
            "user": user_prompt,
            "json_mode": json_mode,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.fail:
            raise UpstreamGenerationError("service unavailable")
        if json_mode:
            if self.raw is not None:
                return self.raw
            return json.dumps({"sql": self.sql, "explanation": self.explanation, "isValid": True})
        return self.insight

    @property
    def sql_calls(self):
        return [c for c in self.calls if c["json_mode"]]

    @property
    def insight_calls(self):
        return [c for c in self.calls if not c["json_mode"]]


class SlowTextService(StubTextService):
    async def complete(self, *args, **kwargs):
        await asyncio.sleep(1)
        return await super().complete(*args, **kwargs)


class StubStore:
    def __init__(self, rows=None, error=None, delay=0.0):
        self.rows = rows if rows is not None else []
        self.error = error
        self.delay = delay
        self.calls = []

    async def execute_read_only(self, query, tenant=None):
        self.calls.append((query, tenant))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [dict(r) for r in self.rows]


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


TOP_ITEMS_ROWS = [
    {"product_name": "Flat White", "total_sales": 1520.5},
    {"product_name": "Croissant", "total_sales": 830.0},
    {"product_name": "Iced Latte", "total_sales": 610.25},
]


def make_pipeline(service, store, cache=None, timeout_ms=2000, llm_timeout=5.0):
    return AIQueryPipeline(
        generator=SQLGenerator(service, timeout=llm_timeout),
        executor=QueryExecutor(store, timeout_ms=timeout_ms),
        composer=ResponseComposer(service, timeout=llm_timeout),
        cache=cache if cache is not None else ResponseCache(),
        schema="Tables: orders, order_items",
    )


@pytest.fixture
def tenant_a():
    return TenantContext(org_id="org-a", user_id="alice@example.com", role="manager")


@pytest.fixture
def tenant_b():
    return TenantContext(org_id="org-b", user_id="bob@example.com", role="manager")


@pytest.fixture
def fake_clock():
    return FakeClock()
