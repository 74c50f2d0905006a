from typing import Optional, List, Tuple
import logging
import re

from .errors import SQLRejected, UpstreamGenerationError
from .llm import TextGenerationService, complete_within, extract_json_block
from .models import SQLGenerationRequest, SQLGenerationResult
from .safety import MAX_LIMIT, harden

logger = logging.getLogger(__name__)

# Screened before hardening; bounded by letters only, so "order_delete" trips
# it while "created_at" and "updated_at" do not.
PRECHECK_KEYWORDS = ("INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER", "TRUNCATE", "EXEC")
_PRECHECK_RE = re.compile(
    r"(?<![A-Za-z])(" + "|".join(PRECHECK_KEYWORDS) + r")(?![A-Za-z])",
    flags=re.IGNORECASE,
)

SYSTEM_PROMPT_TEMPLATE = """You are a SQL expert for a POS (Point of Sale) system. Generate safe, read-only SQL queries based on natural language requests.

IMPORTANT SAFETY RULES:
1. ONLY generate SELECT statements
2. ALWAYS include a LIMIT clause (max {max_limit} rows)
3. ALWAYS include date filters when possible
4. NO INSERT, UPDATE, DELETE, DROP, CREATE, ALTER statements
5. NO system tables or functions
6. Exactly one statement, no trailing commentary

SCHEMA:
{schema}

CONTEXT:
- This is a hospitality POS system with orders, products, locations
- All monetary values are in AUD
- Dates are in ISO format
- Location access may be restricted based on user permissions

FILTERS TO APPLY:
{filters}

Return a JSON response with:
- sql: The generated SQL query
- explanation: Brief explanation of what the query does
- isValid: true if query follows safety rules
- error: any validation errors"""

USER_PROMPT_TEMPLATE = """Generate a SQL query for: "{query}"

Make sure to:
1. Apply all relevant filters from the context
2. Include appropriate JOINs for related data
3. Use meaningful column aliases
4. Include LIMIT clause
5. Order results logically (usually by date DESC or value DESC)"""


def render_filters(req: SQLGenerationRequest) -> str:
    lines: List[str] = []
    if req.date_range:
        lines.append(f"Date Range: {req.date_range.from_} to {req.date_range.to}")
    else:
        lines.append("No date filter specified")
    if req.location_ids:
        lines.append(f"Location IDs: {', '.join(req.location_ids)}")
    else:
        lines.append("No location filter specified (all locations)")
    if req.channel:
        lines.append(f"Channel: {req.channel}")
    else:
        lines.append("No channel filter specified (all channels)")
    if req.order_type:
        lines.append(f"Order Type: {req.order_type}")
    else:
        lines.append("No order type filter specified (all order types)")
    return "\n".join(lines)


def build_prompts(req: SQLGenerationRequest) -> Tuple[str, str]:
    system_prompt = SYSTEM_PROMPT_TEMPLATE.format(
        max_limit=MAX_LIMIT,
        schema=req.schema_text.strip(),
        filters=render_filters(req),
    )
    return system_prompt, USER_PROMPT_TEMPLATE.format(query=req.query)


def precheck_sql(sql: object) -> Optional[str]:
    """Cheap screening of the raw candidate; returns an error message or None."""
    if not sql or not isinstance(sql, str):
        return "Invalid SQL response format"
    keyword = _PRECHECK_RE.search(sql)
    if keyword:
        return f"Query contains forbidden keyword: {keyword.group(1).upper()}"
    if not sql.strip().upper().startswith("SELECT"):
        return "Query must be a SELECT statement"
    return None


class SQLGenerator:
    def __init__(self, service: TextGenerationService, timeout: float = 20.0, log_prompts: bool = False) -> None:
        self.service = service
        self.timeout = timeout
        self.log_prompts = log_prompts

    async def generate(self, req: SQLGenerationRequest) -> SQLGenerationResult:
        system_prompt, user_prompt = build_prompts(req)
        if self.log_prompts:
            logger.info("[AI][prompt] role=sql system=%r user=%r", system_prompt, user_prompt)

        try:
            content = await complete_within(
                self.service,
                system_prompt,
                user_prompt,
                timeout=self.timeout,
                json_mode=True,
                temperature=0.1,
            )
        except UpstreamGenerationError as e:
            logger.error("[AI][upstream-failure] stage=sql error=%s", e)
            return SQLGenerationResult.rejected(str(e))

        result = extract_json_block(content)
        if not isinstance(result, dict) or not result:
            logger.error("[AI][upstream-failure] stage=sql error=unparseable payload %r", content[:200])
            return SQLGenerationResult.rejected("Text generation returned an unreadable response")

        sql = result.get("sql")
        error = precheck_sql(sql)
        if error:
            logger.warning("[AI][rejected] stage=precheck reason=%s", error)
            return SQLGenerationResult.rejected(error)

        try:
            hardened = harden(sql)
        except SQLRejected as e:
            logger.warning("[AI][rejected] stage=harden reason=%s detail=%s", e.reason.value, e.message)
            return SQLGenerationResult.rejected(e.message)

        explanation = result.get("explanation")
        return SQLGenerationResult(
            sql=hardened,
            explanation=explanation if isinstance(explanation, str) else "",
            is_valid=True,
        )
