from pos_analyst.composer import (
    FALLBACK_ANSWER,
    REDACTED_EMAIL,
    ResponseComposer,
    derive_chart,
    derive_drivers,
    derive_kpis,
    redact_emails,
)

from conftest import SlowTextService, StubTextService, TOP_ITEMS_ROWS


DAILY_ROWS = [
    {"order_date": "2024-05-01", "net_sales": 1200.0},
    {"order_date": "2024-05-02", "net_sales": 980.5},
    {"order_date": None, "net_sales": 10.0},
]


def test_line_chart_for_dated_rows():
    chart = derive_chart(DAILY_ROWS)
    assert chart.type == "line"
    assert chart.data == [1200.0, 980.5, 10.0]
    assert chart.labels == ["2024-05-01", "2024-05-02", ""]


def test_bar_chart_uses_label_columns():
    chart = derive_chart(TOP_ITEMS_ROWS)
    assert chart.type == "bar"
    assert chart.labels == ["Flat White", "Croissant", "Iced Latte"]
    assert chart.data == [1520.5, 830.0, 610.25]


def test_bar_chart_caps_at_ten_and_falls_back_to_item_labels():
    rows = [{"total": float(i)} for i in range(25)]
    chart = derive_chart(rows)
    assert len(chart.data) == 10
    assert chart.labels[0] == "Item 1"
    assert chart.labels[-1] == "Item 10"


def test_no_chart_without_numeric_columns():
    assert derive_chart([{"name": "Sydney", "location_id": 3}]) is None
    assert derive_chart([]) is None


def test_booleans_are_not_values():
    assert derive_chart([{"name": "x", "is_active": True}]) is None


def test_kpis_read_aliases_from_first_row():
    kpis = derive_kpis([{"netamount": "150.5", "total_amount": 200, "order_count": 4, "profit_amount": None}])
    assert kpis.net_sales == 150.5
    assert kpis.gross_sales == 200
    assert kpis.transactions == 4
    assert kpis.average_sale == 0
    assert kpis.profit == 0


def test_kpis_default_to_zero():
    assert derive_kpis([]).model_dump() == {
        "net_sales": 0, "gross_sales": 0, "transactions": 0, "average_sale": 0, "profit": 0,
    }


def test_drivers_top_three_descending():
    row = {"location_id": 9, "a": 1.0, "b": 5.0, "c": 3.0, "d": 4.0, "order_count": 100}
    drivers = derive_drivers([row])
    assert [(d.label, d.value) for d in drivers] == [("b", 5.0), ("d", 4.0), ("c", 3.0)]
    assert derive_drivers([{"name": "x"}]) is None
    assert derive_drivers([]) is None


def test_redact_emails():
    sql = "SELECT * FROM orders WHERE staff = 'jane.doe+pos@cafe.com.au' LIMIT 10"
    redacted = redact_emails(sql)
    assert "jane.doe" not in redacted
    assert REDACTED_EMAIL in redacted


async def test_compose_builds_full_response():
    service = StubTextService(insight="  Flat White led sales.  ")
    response = await ResponseComposer(service).compose(
        "top items", TOP_ITEMS_ROWS, "SELECT * FROM order_items WHERE note = 'a@b.io' LIMIT 3"
    )
    assert response.answer == "Flat White led sales."
    assert "a@b.io" not in response.sql
    assert response.data == TOP_ITEMS_ROWS
    assert response.chart_data.type == "bar"
    assert response.drivers[0].label == "total_sales"
    assert response.error is None

    call = service.insight_calls[0]
    assert call["temperature"] == 0.3
    assert call["max_tokens"] == 200
    assert "a@b.io" not in call["user"]
    assert '"top items"' in call["user"]


async def test_empty_rows_skip_the_service():
    service = StubTextService()
    response = await ResponseComposer(service).compose("sales on mars", [], "SELECT 1 LIMIT 100")
    assert "sales on mars" in response.answer
    assert service.calls == []
    assert response.data == []
    assert response.chart_data is None
    assert response.drivers is None
    assert response.kpis.net_sales == 0


async def test_insight_failure_falls_back():
    response = await ResponseComposer(StubTextService(fail=True)).compose("q", TOP_ITEMS_ROWS, "SELECT 1")
    assert response.answer == FALLBACK_ANSWER
    assert response.error is None


async def test_insight_timeout_falls_back():
    composer = ResponseComposer(SlowTextService(), timeout=0.01)
    assert await composer.summarize("q", TOP_ITEMS_ROWS, "SELECT 1") == FALLBACK_ANSWER
