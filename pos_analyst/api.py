from flask import Flask, request, make_response
import json
import logging
from datetime import datetime, date
from decimal import Decimal

from pydantic import ValidationError

from .cache import ResponseCache
from .config import configure_logging, get_settings
from .models import AIQueryRequest, TenantContext
from .pipeline import AIQueryPipeline, build_pipeline
from .rate_limit import FixedWindowRateLimiter, rate_limit_key
from .safety import ALLOWLISTED_TABLES
from .schema_catalog import SCHEMA_CATALOG

logger = logging.getLogger(__name__)

configure_logging()
settings = get_settings()

app = Flask(__name__)
app.config["JSON_AS_ASCII"] = False
app.json.ensure_ascii = False
# Force JSON responses to declare UTF-8
app.config["JSONIFY_MIMETYPE"] = "application/json; charset=utf-8"

# Process-wide shared state; everything else is built per request.
response_cache = ResponseCache(default_ttl=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries)
rate_limiter = FixedWindowRateLimiter(
    limit=settings.rate_limit_requests,
    window_seconds=settings.rate_limit_window_seconds,
)


def _json_default(obj):
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    return str(obj)


def json_utf8(data, status: int = 200, headers=None):
    body = json.dumps(data, ensure_ascii=False, default=_json_default)
    resp = make_response(body, status)
    resp.headers["Content-Type"] = "application/json; charset=utf-8"
    for name, value in (headers or {}).items():
        resp.headers[name] = value
    return resp


def get_pipeline() -> AIQueryPipeline:
    return build_pipeline(settings, response_cache)


def resolve_tenant() -> TenantContext:
    """Read the tenant the upstream auth layer attached to the request."""
    location_access = request.headers.get("X-Location-Access", "")
    return TenantContext(
        org_id=request.headers.get("X-Org-Id", "").strip(),
        user_id=request.headers.get("X-User-Id") or None,
        role=request.headers.get("X-User-Role") or None,
        location_access=[loc.strip() for loc in location_access.split(",") if loc.strip()],
    )


@app.route("/health", methods=["GET"])
def health():
    return json_utf8({"status": "ok"})


@app.route("/debug/schema", methods=["GET"])
def debug_schema():
    return json_utf8({
        "tables_count": len(SCHEMA_CATALOG.tables),
        "tables": sorted(ALLOWLISTED_TABLES),
        "columns": {t: len(s.columns) for t, s in SCHEMA_CATALOG.tables.items()},
        "fks_count": len(SCHEMA_CATALOG.foreign_keys),
        "snippets": SCHEMA_CATALOG.to_text_snippets(),
    })


@app.route("/api/ai/query", methods=["POST"])
async def ai_query():
    try:
        tenant = resolve_tenant()
    except ValidationError:
        return json_utf8({"detail": "Missing organization context (X-Org-Id header)"}, 401)

    key = rate_limit_key(tenant.org_id, tenant.user_id, "ai.query")
    if not rate_limiter.hit(key):
        retry_after = rate_limiter.retry_after(key)
        logger.warning("[AI][rate-limited] org=%s user=%s", tenant.org_id, tenant.user_id)
        return json_utf8(
            {"message": "Too many AI queries, please try again shortly"},
            429,
            headers={"Retry-After": str(max(1, int(retry_after + 0.999)))},
        )

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return json_utf8({"detail": "Invalid request: expected a JSON object body"}, 400)
    try:
        req = AIQueryRequest.model_validate(data)
    except ValidationError as e:
        return json_utf8({"detail": f"Invalid request: {e}"}, 400)

    response = await get_pipeline().handle(tenant, req)
    return json_utf8(response.to_payload())


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8000, debug=True)
