# askboard/models/render.py
from enum import Enum
from pydantic import BaseModel, Field
from typing import Annotated, List, Literal, Optional, Union

from askboard.models.response import ComponentConfig, DatasetResult, Insights, Position


class ChartKind(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    AREA = "area"
    SCATTER = "scatter"
    GENERIC = "generic"


class ChartType(BaseModel):
    family: Literal["chart"] = "chart"
    chart_kind: ChartKind = ChartKind.GENERIC


class TableType(BaseModel):
    family: Literal["table"] = "table"


class MetricType(BaseModel):
    family: Literal["metric"] = "metric"


class InsightsType(BaseModel):
    family: Literal["insights"] = "insights"


class ListType(BaseModel):
    family: Literal["list"] = "list"


class UnknownType(BaseModel):
    """Anything we cannot classify; rendered as a raw data dump."""

    family: Literal["unknown"] = "unknown"
    raw_type: str = ""


class ErrorType(BaseModel):
    family: Literal["error"] = "error"
    message: str = "Unknown error occurred"


ResolvedType = Annotated[
    Union[ChartType, TableType, MetricType, InsightsType, ListType, UnknownType, ErrorType],
    Field(discriminator="family"),
]


class RenderItem(BaseModel):
    component_id: str
    resolved_type: ResolvedType
    config: ComponentConfig
    dataset: List[DatasetResult] = []
    position: Position = Field(default_factory=Position)
    insights: Optional[Insights] = None

    @property
    def family(self) -> str:
        return self.resolved_type.family


class RenderPlan(BaseModel):
    items: List[RenderItem] = []
    columns: int = 1
    raw_response: Optional[str] = None
    insights: Optional[Insights] = None
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def component_ids(self) -> List[str]:
        return [item.component_id for item in self.items]
