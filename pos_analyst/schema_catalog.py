from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass(frozen=True)
class Column:
    name: str
    data_type: str
    is_nullable: bool = True


@dataclass(frozen=True)
class TableSchema:
    table: str
    columns: List[Column]
    notes: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ForeignKey:
    child_table: str
    child_column: str
    parent_table: str
    parent_column: str


def _cols(text: str) -> List[Column]:
    columns = []
    for item in text.split(","):
        name, data_type = item.strip().split(":")
        columns.append(Column(name=name, data_type=data_type, is_nullable=name != "id"))
    return columns


class SchemaCatalog:
    """Static description of the analytics tables the assistant may query."""

    def __init__(self, tables: List[TableSchema], foreign_keys: List[ForeignKey], notes: List[str]) -> None:
        self.tables: Dict[str, TableSchema] = {t.table: t for t in tables}
        self.foreign_keys = list(foreign_keys)
        self.notes = list(notes)

    def to_text_snippets(self) -> List[str]:
        snippets: List[str] = []
        for t, schema in self.tables.items():
            cols = ", ".join(f"{c.name}:{c.data_type}" for c in schema.columns)
            snippets.append(f"table {t}({cols})")
        for fk in self.foreign_keys:
            snippets.append(
                f"fk {fk.child_table}.{fk.child_column} -> {fk.parent_table}.{fk.parent_column}"
            )
        return snippets

    def to_text(self) -> str:
        lines = ["Tables:"]
        for i, (name, schema) in enumerate(self.tables.items(), start=1):
            lines.append(f"{i}. {name}: " + ", ".join(c.name for c in schema.columns))
            for note in schema.notes:
                lines.append(f"   - {note}")
        lines.append("")
        lines.append("Key relationships:")
        for fk in self.foreign_keys:
            lines.append(f"- {fk.child_table}.{fk.child_column} -> {fk.parent_table}.{fk.parent_column}")
        lines.append("")
        lines.append("Important notes:")
        lines.extend(f"- {note}" for note in self.notes)
        return "\n".join(lines) + "\n"


SCHEMA_CATALOG = SchemaCatalog(
    tables=[
        TableSchema(
            "till_summaries",
            _cols(
                "id:uuid, org_id:uuid, venue_name:text, time_span:date, first_txn_at:timestamptz, "
                "last_txn_at:timestamptz, qty_transactions:integer, average_sale:numeric, "
                "gross_sales:numeric, total_discount:numeric, net_sales:numeric, net_sales_ex_tax:numeric, "
                "payment_total:numeric, cost_of_sales:numeric, profit_amount:numeric, profit_percent:numeric, "
                "qty_cancelled:integer, cancelled_total:numeric, qty_returns:integer, returns_total:numeric, "
                "qty_training:integer, training_total:numeric, qty_no_sales:integer, "
                "qty_no_sale_after_cancel:integer, no_sale_after_cancel_total:numeric, "
                "qty_table_refund_after_print:integer, table_refund_after_print_total:numeric, "
                "created_at:timestamptz, updated_at:timestamptz"
            ),
            notes=["Uniqueness: (org_id, time_span, venue_name)"],
        ),
        TableSchema(
            "orders",
            _cols(
                "id:uuid, location_id:uuid, order_number:text, channel:text, order_type:text, "
                "subtotal:numeric, discount_amount:numeric, tax_amount:numeric, total_amount:numeric, "
                "refund_amount:numeric, net_amount:numeric, customer_name:text, customer_email:text, "
                "status:text, created_at:timestamptz, completed_at:timestamptz"
            ),
        ),
        TableSchema(
            "order_items",
            _cols(
                "id:uuid, order_id:uuid, product_id:uuid, quantity:integer, unit_price:numeric, "
                "total_price:numeric, discount_amount:numeric, net_price:numeric"
            ),
        ),
        TableSchema(
            "products",
            _cols("id:uuid, name:text, category:text, price:numeric, cost:numeric, active:boolean, created_at:timestamptz"),
        ),
        TableSchema(
            "locations",
            _cols(
                "id:uuid, name:text, address:text, city:text, state:text, country:text, "
                "timezone:text, created_at:timestamptz"
            ),
        ),
    ],
    foreign_keys=[
        ForeignKey("orders", "location_id", "locations", "id"),
        ForeignKey("order_items", "order_id", "orders", "id"),
        ForeignKey("order_items", "product_id", "products", "id"),
    ],
    notes=[
        "For high-level daily KPIs, prefer till_summaries",
        "Use orders.net_amount for revenue when querying raw orders (excludes refunds)",
        "Filter by orders.status = 'completed' for sales data",
        "Use created_at for date filtering on orders; use time_span for daily rollups",
        "All monetary values are in AUD",
    ],
)
