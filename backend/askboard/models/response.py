# askboard/models/response.py
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, Dict, List, Optional, Union


class DatasetResult(BaseModel):
    description: str = ""
    columns: List[str] = []
    data: List[Dict[str, Any]] = []
    row_count: int = 0
    error: Optional[str] = None

    @model_validator(mode="after")
    def _fill_from_rows(self) -> "DatasetResult":
        # servers sometimes omit columns/row_count when they send rows
        if not self.columns and self.data:
            self.columns = list(self.data[0].keys())
        if not self.row_count and self.data:
            self.row_count = len(self.data)
        return self


class ComponentConfig(BaseModel):
    type: str = ""
    title: str = ""
    description: str = ""
    properties: Dict[str, Any] = {}


class Component(BaseModel):
    """One entry of a multi-component response."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str = ""
    title: str = ""
    description: Optional[str] = None
    properties: Dict[str, Any] = {}

    def to_config(self) -> ComponentConfig:
        return ComponentConfig(
            type=self.type,
            title=self.title,
            description=self.description or "",
            properties=self.properties,
        )


class Position(BaseModel):
    row: int = 1
    col: int = 1
    span_row: int = 1
    span_col: int = 1


class Arrangement(BaseModel):
    component_id: str
    position: Optional[Position] = None
    size: Optional[str] = None
    span_col: Optional[int] = None
    span_row: Optional[int] = None


class Layout(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    columns: Optional[int] = None
    rows: Optional[int] = None
    responsive: Optional[bool] = None
    spacing: Optional[str] = None
    component_arrangement: Optional[List[Arrangement]] = None


class Analysis(BaseModel):
    model_config = ConfigDict(extra="allow")

    query_intent: str = ""
    data_requirements: List[str] = []
    recommended_component: Optional[str] = None
    component_config: Optional[ComponentConfig] = None


class QueryInfo(BaseModel):
    description: str = ""
    sql: Optional[str] = None
    orm: Optional[str] = None
    expected_fields: List[str] = []


class Insights(BaseModel):
    key_findings: List[str] = []
    recommendations: List[str] = []
    next_steps: List[str] = []
    alerts: List[str] = []

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def is_empty(self) -> bool:
        return not (self.key_findings or self.recommendations or self.next_steps or self.alerts)


class DataProcessing(BaseModel):
    model_config = ConfigDict(extra="allow")

    transformations: List[str] = []
    calculations: List[str] = []
    formatting: List[str] = []


class StructuredResponse(BaseModel):
    """
    Declarative payload of a completed task.

    Two shapes share this model: the legacy one (a list ``dataset`` plus a
    single ``analysis.component_config``) and the multi-component one
    (``components`` + ``layout`` + ``dataset`` keyed by component id or a
    shared list). ``is_multi_component`` tells them apart.
    """

    model_config = ConfigDict(extra="allow")

    success: bool = True
    error: Optional[str] = None
    raw_response: Optional[str] = None
    analysis: Optional[Analysis] = None
    queries: List[QueryInfo] = []
    data_processing: Optional[DataProcessing] = None
    insights: Optional[Insights] = None
    dataset: Optional[Union[List[DatasetResult], Dict[str, DatasetResult]]] = None
    components: List[Component] = Field(default_factory=list)
    layout: Optional[Layout] = None

    @model_validator(mode="before")
    @classmethod
    def _drop_null_lists(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            for key in ("queries", "components"):
                if data.get(key, []) is None:
                    data.pop(key)
        return data

    @property
    def is_multi_component(self) -> bool:
        return len(self.components) > 0

    def summary_text(self) -> str:
        """Short assistant-facing text for a completed response."""
        if self.insights and self.insights.key_findings:
            return self.insights.key_findings[0]
        if self.analysis and self.analysis.query_intent:
            return self.analysis.query_intent
        return "Dashboard generated successfully"


# keys a task payload may carry at top level instead of under "response"
RESPONSE_KEYS = (
    "success",
    "error",
    "raw_response",
    "analysis",
    "queries",
    "data_processing",
    "insights",
    "dataset",
    "components",
    "layout",
)


def structured_from_payload(payload: Dict[str, Any]) -> StructuredResponse:
    """Lift the response fields embedded at the top level of a task payload."""
    picked = {k: payload[k] for k in RESPONSE_KEYS if payload.get(k) is not None}
    picked.setdefault("success", True)
    return StructuredResponse.model_validate(picked)
