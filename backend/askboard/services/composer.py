# askboard/services/composer.py
"""
Turns a StructuredResponse into a RenderPlan.

compose() is pure: the same response always yields an equal plan, and no
input (however malformed) makes it raise. Unknown component types and
undecodable payloads degrade to the raw-data fallback family.
"""
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from askboard.models.render import (
    ChartKind,
    ChartType,
    ErrorType,
    InsightsType,
    ListType,
    MetricType,
    RenderItem,
    RenderPlan,
    ResolvedType,
    TableType,
    UnknownType,
)
from askboard.models.response import (
    Arrangement,
    Component,
    ComponentConfig,
    DatasetResult,
    Position,
    StructuredResponse,
)

logger = logging.getLogger("composer")

DEFAULT_LAYOUT_COLUMNS = 4   # explicit layout without a column count
AUTO_LAYOUT_COLUMNS = 2      # synthesized two-per-row arrangement
LEGACY_LAYOUT_COLUMNS = 1    # legacy datasets stack vertically
BAR_CHART_MAX_ROWS = 10

_CHART_WORDS = ("chart", "bar", "line", "pie")
_METRIC_WORDS = ("metric", "card", "stat")
_CHART_KINDS = (
    ("bar", ChartKind.BAR),
    ("line", ChartKind.LINE),
    ("pie", ChartKind.PIE),
    ("area", ChartKind.AREA),
    ("scatter", ChartKind.SCATTER),
)

# what JavaScript's parseFloat accepts as a numeric prefix
_LEADING_FLOAT = re.compile(r"^\s*[+-]?(?:Infinity|\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)")


# -------- classification -------- #

def classify_component_type(type_tag: Optional[str]) -> ResolvedType:
    """Map an open, conventionally-prefixed type tag onto the closed set of render families."""
    tag = (type_tag or "").lower()

    if any(word in tag for word in _CHART_WORDS):
        for word, kind in _CHART_KINDS:
            if word in tag:
                return ChartType(chart_kind=kind)
        return ChartType()
    if "table" in tag:
        return TableType()
    if any(word in tag for word in _METRIC_WORDS):
        return MetricType()
    # checked before "list": "insights_list" is an insights panel
    if "insights" in tag:
        return InsightsType()
    if "list" in tag:
        return ListType()
    return UnknownType(raw_type=type_tag or "")


# -------- config inference -------- #

def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        return _LEADING_FLOAT.match(value) is not None
    return False


def infer_component_config(dataset: DatasetResult, index: int = 0) -> ComponentConfig:
    """
    Guess a visualization for a dataset that came without one.

    Looks only at the first row: no numeric column gives a table; a single
    row with a single numeric column gives a metric card; otherwise small
    results (<= 10 rows) become a bar chart and larger ones a metric view.
    """
    columns = list(dataset.columns)
    sample = dataset.data[0] if dataset.data else {}
    numeric = [col for col in columns if is_numeric(sample.get(col))]
    base_title = dataset.description or f"Dataset {index + 1}"

    if not numeric:
        component_type, title = "table", base_title
    elif dataset.row_count == 1 and len(numeric) == 1:
        component_type, title = "metric", f"{base_title} - Metrics"
    elif dataset.row_count <= BAR_CHART_MAX_ROWS:
        component_type, title = "bar_chart", f"{base_title} - Chart View"
    else:
        component_type, title = "metric", f"{base_title} - Metrics"

    x_axis = columns[0] if columns else None
    y_axis = next((col for col in columns[1:] if col in numeric), None)
    if y_axis is None and len(columns) > 1:
        y_axis = columns[1]

    properties: Dict[str, Any] = {"aggregation": "sum"}
    if x_axis is not None:
        properties["x_axis"] = x_axis
    if y_axis is not None:
        properties["y_axis"] = y_axis

    return ComponentConfig(
        type=component_type,
        title=title,
        description=dataset.description or f"Analysis of {dataset.row_count} records",
        properties=properties,
    )


# -------- placement and binding -------- #

def _position_of(arrangement: Arrangement) -> Position:
    pos = arrangement.position or Position()
    return Position(
        row=max(pos.row, 1),
        col=max(pos.col, 1),
        span_row=max(arrangement.span_row or pos.span_row or 1, 1),
        span_col=max(arrangement.span_col or pos.span_col or 1, 1),
    )


def auto_position(index: int) -> Position:
    return Position(row=index // 2 + 1, col=index % 2 + 1)


def bind_dataset(
    dataset: Optional[Union[List[DatasetResult], Dict[str, DatasetResult]]],
    component_id: str,
) -> List[DatasetResult]:
    """A list dataset is shared by every component; a mapping is sliced by component id."""
    if not dataset:
        return []
    if isinstance(dataset, list):
        return [ds.model_copy(deep=True) for ds in dataset]
    slice_ = dataset.get(component_id)
    return [slice_.model_copy(deep=True)] if slice_ is not None else []


def _arrangement_entries(response: StructuredResponse) -> Tuple[List[Tuple[str, Position]], int]:
    layout = response.layout
    if layout is not None and layout.component_arrangement:
        entries = [(a.component_id, _position_of(a)) for a in layout.component_arrangement]
        return entries, layout.columns or DEFAULT_LAYOUT_COLUMNS
    entries = [(c.id, auto_position(i)) for i, c in enumerate(response.components)]
    return entries, AUTO_LAYOUT_COLUMNS


def _item(
    response: StructuredResponse,
    component_id: str,
    config: ComponentConfig,
    dataset: List[DatasetResult],
    position: Position,
) -> RenderItem:
    resolved = classify_component_type(config.type)
    return RenderItem(
        component_id=component_id,
        resolved_type=resolved,
        config=config,
        dataset=dataset,
        position=position,
        insights=response.insights.model_copy(deep=True)
        if resolved.family == "insights" and response.insights
        else None,
    )


def _compose_components(response: StructuredResponse) -> Tuple[List[RenderItem], int]:
    by_id: Dict[str, Component] = {}
    for component in response.components:
        by_id.setdefault(component.id, component)

    entries, columns = _arrangement_entries(response)
    items: List[RenderItem] = []
    placed = set()
    for component_id, position in entries:
        if component_id in placed:
            logger.debug("Component %s arranged twice; keeping first placement", component_id)
            continue
        component = by_id.get(component_id)
        if component is None:
            logger.warning("Layout references unknown component %s; dropping it", component_id)
            continue
        placed.add(component_id)
        items.append(
            _item(
                response,
                component_id,
                component.to_config(),
                bind_dataset(response.dataset, component_id),
                position,
            )
        )
    return items, columns


def _compose_legacy(response: StructuredResponse) -> Tuple[List[RenderItem], int]:
    dataset = response.dataset
    if not dataset:
        return [], LEGACY_LAYOUT_COLUMNS

    if isinstance(dataset, dict):
        entries = list(dataset.items())
    else:
        entries = [(f"dataset_{i}", ds) for i, ds in enumerate(dataset)]

    explicit = response.analysis.component_config if response.analysis else None
    items: List[RenderItem] = []
    for index, (component_id, ds) in enumerate(entries):
        if index == 0 and explicit is not None:
            config = explicit.model_copy(deep=True)
        else:
            config = infer_component_config(ds, index)
        items.append(
            _item(
                response,
                component_id,
                config,
                [ds.model_copy(deep=True)],
                Position(row=index + 1, col=1),
            )
        )
    return items, LEGACY_LAYOUT_COLUMNS


# -------- degraded plans -------- #

def error_plan(message: Optional[str]) -> RenderPlan:
    message = message or "Unknown error occurred"
    item = RenderItem(
        component_id="error",
        resolved_type=ErrorType(message=message),
        config=ComponentConfig(type="error", title="Response Error", description=message),
    )
    return RenderPlan(items=[item], columns=1, error=message)


def _raw_rows(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, Mapping):
        return [{str(k): v for k, v in payload.items()}]
    if isinstance(payload, list):
        return [
            {str(k): v for k, v in row.items()} if isinstance(row, Mapping) else {"value": row}
            for row in payload
        ]
    return [{"value": payload}]


def raw_plan(payload: Any) -> RenderPlan:
    """Plan for a payload that could not be interpreted at all."""
    try:
        rows = _raw_rows(payload)
        dataset = [DatasetResult(description="Raw response", data=rows)]
    except (PydanticValidationError, TypeError, ValueError):
        dataset = [DatasetResult(description="Raw response", data=[{"value": repr(payload)}])]
    item = RenderItem(
        component_id="raw",
        resolved_type=UnknownType(raw_type="raw_response"),
        config=ComponentConfig(
            type="raw_response",
            title="Response",
            description="The response could not be interpreted; showing raw data instead.",
        ),
        dataset=dataset,
    )
    return RenderPlan(items=[item], columns=1)


# -------- entry point -------- #

def compose(response: Union[StructuredResponse, Mapping[str, Any], None]) -> RenderPlan:
    if response is None:
        return RenderPlan()

    if isinstance(response, StructuredResponse):
        parsed = response
    else:
        try:
            parsed = StructuredResponse.model_validate(response)
        except PydanticValidationError as e:
            logger.warning("Response does not match the expected shape (%s errors)", e.error_count())
            return raw_plan(response)

    if not parsed.success:
        return error_plan(parsed.error)

    try:
        if parsed.is_multi_component:
            items, columns = _compose_components(parsed)
        else:
            items, columns = _compose_legacy(parsed)
    except Exception:
        logger.exception("Failed to compose response; falling back to raw data")
        return raw_plan(parsed.model_dump(mode="json"))

    return RenderPlan(
        items=items,
        columns=columns,
        raw_response=parsed.raw_response,
        insights=parsed.insights.model_copy(deep=True) if parsed.insights else None,
    )
