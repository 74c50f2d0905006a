from typing import List, Optional, Dict, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


Scalar = Union[str, int, float, bool, None]
Row = Dict[str, Scalar]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class TenantContext(_CamelModel):
    org_id: str = Field(min_length=1)
    user_id: Optional[str] = None
    role: Optional[str] = None
    location_access: List[str] = Field(default_factory=list)


class DateRange(_CamelModel):
    from_: str = Field(alias="from")
    to: str


class AIQueryRequest(_CamelModel):
    query: str = ""
    date_range: Optional[DateRange] = None
    location_ids: Optional[List[str]] = None
    channel: Optional[str] = None
    order_type: Optional[str] = None


class SQLGenerationRequest(_CamelModel):
    query: str = Field(min_length=1)
    schema_text: str = Field(default="", alias="schema")
    date_range: Optional[DateRange] = None
    location_ids: Optional[List[str]] = None
    channel: Optional[str] = None
    order_type: Optional[str] = None

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value

    @classmethod
    def from_query_request(cls, req: AIQueryRequest, schema: str) -> "SQLGenerationRequest":
        return cls(
            query=req.query.strip(),
            schema_text=schema,
            date_range=req.date_range,
            location_ids=req.location_ids,
            channel=req.channel,
            order_type=req.order_type,
        )


class SQLGenerationResult(_CamelModel):
    sql: str = ""
    explanation: str = ""
    is_valid: bool = False
    error: Optional[str] = None

    @model_validator(mode="after")
    def _invalid_means_no_sql(self) -> "SQLGenerationResult":
        if not self.is_valid and self.sql:
            raise ValueError("an invalid generation result must not carry SQL")
        return self

    @classmethod
    def rejected(cls, error: str) -> "SQLGenerationResult":
        return cls(sql="", explanation="", is_valid=False, error=error)


class ChartData(_CamelModel):
    type: Literal["line", "bar", "pie"]
    data: List[Any]
    labels: List[str]


class KPIs(_CamelModel):
    net_sales: float = 0
    gross_sales: float = 0
    transactions: float = 0
    average_sale: float = 0
    profit: float = 0


class Driver(_CamelModel):
    label: str
    value: float


class AIQueryResponse(_CamelModel):
    answer: str
    sql: str
    data: Optional[List[Row]] = None
    chart_data: Optional[ChartData] = None
    kpis: Optional[KPIs] = None
    drivers: Optional[List[Driver]] = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
