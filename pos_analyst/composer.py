"""
Turns executed rows into the payload the dashboard renders.

The narrative comes from the text generation service; chart, KPI and driver
projections are plain heuristics over column names and the first row.
"""
import json
import logging
import re
from typing import Any, List, Optional, Sequence

from .errors import UpstreamGenerationError
from .llm import TextGenerationService, complete_within
from .models import AIQueryResponse, ChartData, Driver, KPIs, Row

logger = logging.getLogger(__name__)

PREVIEW_ROWS = 10
BAR_ROWS = 10
MAX_DRIVERS = 3

EMAIL_RE = re.compile(r"([\w.+-]+)@([\w.-]+)\.(\w+)")
REDACTED_EMAIL = "***@***.***"

FALLBACK_ANSWER = "Analysis completed successfully. Please review the data above for insights."

INSIGHT_PROMPT_TEMPLATE = """Based on the user's question "{query}" and the SQL query results below, provide a clear, concise business insight.

SQL Query: {sql}

Data (first {preview} rows): {data}

Provide a business-focused answer that:
1. Directly answers the user's question
2. Highlights key numbers and trends
3. Provides actionable insights
4. Uses clear, professional language
5. Keeps it concise (2-3 sentences max)

Format currency as AUD and round to nearest dollar."""

KPI_FIELDS = {
    "net_sales": ("net_sales", "netamount", "net_amount"),
    "gross_sales": ("gross_sales", "totalamount", "total_amount"),
    "transactions": ("qty_transactions", "order_count"),
    "average_sale": ("average_sale",),
    "profit": ("profit_amount",),
}

LABEL_COLUMNS = ("name", "product_name", "location_name")


def redact_emails(sql: str) -> str:
    return EMAIL_RE.sub(REDACTED_EMAIL, sql)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_number(value: Any) -> float:
    if is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def find_date_column(columns: Sequence[str]) -> Optional[str]:
    for col in columns:
        lowered = col.lower()
        if "date" in lowered or "day" in lowered:
            return col
    return None


def find_value_columns(row: Row) -> List[str]:
    return [
        col for col, value in row.items()
        if is_number(value) and "id" not in col.lower() and "count" not in col.lower()
    ]


def derive_chart(rows: Sequence[Row]) -> Optional[ChartData]:
    if not rows:
        return None
    first = rows[0]
    date_col = find_date_column(list(first.keys()))
    value_cols = find_value_columns(first)
    if not value_cols:
        return None
    value_col = value_cols[0]

    if date_col:
        return ChartData(
            type="line",
            data=[row.get(value_col) for row in rows],
            labels=["" if row.get(date_col) is None else str(row[date_col]) for row in rows],
        )

    head = rows[:BAR_ROWS]
    labels = []
    for i, row in enumerate(head):
        label = next((row[c] for c in LABEL_COLUMNS if row.get(c)), None)
        labels.append(str(label) if label is not None else f"Item {i + 1}")
    return ChartData(type="bar", data=[row.get(value_col) for row in head], labels=labels)


def derive_kpis(rows: Sequence[Row]) -> KPIs:
    first = rows[0] if rows else {}
    values = {}
    for field, aliases in KPI_FIELDS.items():
        raw = next((first[a] for a in aliases if first.get(a) is not None), None)
        values[field] = to_number(raw)
    return KPIs(**values)


def derive_drivers(rows: Sequence[Row]) -> Optional[List[Driver]]:
    if not rows:
        return None
    candidates = [Driver(label=col, value=float(rows[0][col])) for col in find_value_columns(rows[0])]
    candidates.sort(key=lambda d: d.value, reverse=True)
    return candidates[:MAX_DRIVERS] or None


def no_data_answer(query: str) -> str:
    return (
        f'I couldn\'t find any data matching "{query}". '
        "Try widening the date range or removing some filters."
    )


class ResponseComposer:
    def __init__(self, service: TextGenerationService, timeout: float = 20.0, log_prompts: bool = False) -> None:
        self.service = service
        self.timeout = timeout
        self.log_prompts = log_prompts

    async def summarize(self, query: str, rows: Sequence[Row], sql: str) -> str:
        if not rows:
            return no_data_answer(query)

        prompt = INSIGHT_PROMPT_TEMPLATE.format(
            query=query,
            sql=sql,
            preview=PREVIEW_ROWS,
            data=json.dumps(list(rows[:PREVIEW_ROWS]), indent=2, default=str),
        )
        if self.log_prompts:
            logger.info("[AI][prompt] role=insight prompt=%r", prompt)
        try:
            answer = await complete_within(
                self.service, "", prompt, timeout=self.timeout, temperature=0.3, max_tokens=200
            )
        except UpstreamGenerationError as e:
            logger.error("[AI][upstream-failure] stage=insight error=%s", e)
            return FALLBACK_ANSWER
        return answer.strip()

    async def compose(self, original_query: str, rows: Sequence[Row], sql: str) -> AIQueryResponse:
        safe_sql = redact_emails(sql)
        answer = await self.summarize(original_query, rows, safe_sql)
        return AIQueryResponse(
            answer=answer,
            sql=safe_sql,
            data=list(rows),
            chart_data=derive_chart(rows),
            kpis=derive_kpis(rows),
            drivers=derive_drivers(rows),
        )
