import pytest

from pos_analyst import api
from pos_analyst.cache import ResponseCache
from pos_analyst.rate_limit import FixedWindowRateLimiter
from pos_analyst.safety import ALLOWLISTED_TABLES

from conftest import StubStore, StubTextService, TOP_ITEMS_ROWS, make_pipeline


HEADERS = {"X-Org-Id": "org-a", "X-User-Id": "alice", "X-User-Role": "manager", "X-Location-Access": "loc-1, loc-2"}


@pytest.fixture
def store():
    return StubStore(rows=TOP_ITEMS_ROWS)


@pytest.fixture
def client(monkeypatch, store):
    service = StubTextService(sql="SELECT product_name, SUM(total_price) AS total_sales FROM order_items GROUP BY 1")
    cache = ResponseCache()
    pipeline = make_pipeline(service, store, cache=cache)
    monkeypatch.setattr(api, "response_cache", cache)
    monkeypatch.setattr(api, "rate_limiter", FixedWindowRateLimiter(limit=api.settings.rate_limit_requests))
    monkeypatch.setattr(api, "get_pipeline", lambda: pipeline)
    api.app.config["TESTING"] = True
    with api.app.test_client() as c:
        yield c


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_debug_schema(client):
    body = client.get("/debug/schema").get_json()
    assert body["tables"] == sorted(ALLOWLISTED_TABLES)
    assert body["tables_count"] == len(ALLOWLISTED_TABLES)
    assert body["fks_count"] == 3
    assert any(s.startswith("table orders(") for s in body["snippets"])


def test_query_returns_camel_case_payload(client, store):
    resp = client.post("/api/ai/query", json={"query": "Top items", "locationIds": ["loc-1"]}, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.headers["Content-Type"] == "application/json; charset=utf-8"
    body = resp.get_json()
    assert body["sql"].endswith("LIMIT 100")
    assert body["chartData"]["type"] == "bar"
    assert body["kpis"]["netSales"] == 0
    assert "error" not in body

    tenant = store.calls[0][1]
    assert tenant.org_id == "org-a"
    assert tenant.location_access == ["loc-1", "loc-2"]


def test_missing_org_is_unauthorized(client, store):
    resp = client.post("/api/ai/query", json={"query": "Top items"})
    assert resp.status_code == 401
    assert store.calls == []


@pytest.mark.parametrize("body", [["not", "an", "object"], {"query": "x", "locationIds": "loc-1"}])
def test_bad_body(client, body):
    resp = client.post("/api/ai/query", json=body, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.get_json()["detail"].startswith("Invalid request")


def test_empty_query_is_a_normal_response(client, store):
    resp = client.post("/api/ai/query", json={"query": "  "}, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.get_json()["error"] == "Query is required"
    assert store.calls == []


def test_rate_limit(client):
    for _ in range(api.settings.rate_limit_requests):
        assert client.post("/api/ai/query", json={"query": "Top items"}, headers=HEADERS).status_code == 200
    resp = client.post("/api/ai/query", json={"query": "Top items"}, headers=HEADERS)
    assert resp.status_code == 429
    assert int(resp.headers["Retry-After"]) >= 1

    other_user = dict(HEADERS, **{"X-User-Id": "bob"})
    assert client.post("/api/ai/query", json={"query": "Top items"}, headers=other_user).status_code == 200


def test_locations_outside_access_are_refused(client, store):
    resp = client.post("/api/ai/query", json={"query": "Top items", "locationIds": ["loc-9"]}, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.get_json()["error"] == "No access to the requested locations"
    assert store.calls == []
