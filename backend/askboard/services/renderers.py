# askboard/services/renderers.py
"""
Default text renderers for RenderPlan items.

The real drawing (charts, tables, cards) belongs to whatever UI consumes the
plan; these renderers make the plan inspectable from a terminal and define the
seam a UI plugs into via RendererRegistry.register().
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from askboard.models.render import RenderItem, RenderPlan

logger = logging.getLogger("renderers")

Renderer = Callable[[RenderItem], str]

RAW_PREVIEW_ROWS = 5
LIST_MAX_ITEMS = 10
TABLE_MAX_ROWS = 20
CHART_MAX_POINTS = 25


def _rows(item: RenderItem) -> List[Dict[str, Any]]:
    if not item.dataset:
        return []
    return item.dataset[0].data


def _header(item: RenderItem, badge: str) -> List[str]:
    lines = [f"{item.config.title or item.component_id} [{badge}]"]
    if item.config.description:
        lines.append(item.config.description)
    return lines


def render_chart(item: RenderItem) -> str:
    props = item.config.properties
    rows = _rows(item)
    lines = _header(item, f"{item.resolved_type.chart_kind.value} chart")
    if not rows:
        lines.append("  (no data)")
        return "\n".join(lines)

    x = props.get("x_axis") or next(iter(rows[0]), None)
    y = props.get("y_axis")
    for row in rows[:CHART_MAX_POINTS]:
        lines.append(f"  {row.get(x)}: {row.get(y) if y else ''}".rstrip())
    if len(rows) > CHART_MAX_POINTS:
        lines.append(f"  ... {len(rows) - CHART_MAX_POINTS} more points")
    return "\n".join(lines)


def render_table(item: RenderItem) -> str:
    lines = _header(item, "table")
    column_spec = item.config.properties.get("columns")
    if isinstance(column_spec, list) and column_spec and all(
        isinstance(c, dict) and "field" in c for c in column_spec
    ):
        fields = [c["field"] for c in column_spec]
        labels = [c.get("label") or c["field"] for c in column_spec]
    else:
        fields = list(item.dataset[0].columns) if item.dataset else []
        labels = fields

    rows = _rows(item)
    if not fields and rows:
        fields = labels = list(rows[0].keys())
    lines.append(" | ".join(labels))
    for row in rows[:TABLE_MAX_ROWS]:
        lines.append(" | ".join(str(row.get(f, "")) for f in fields))
    if len(rows) > TABLE_MAX_ROWS:
        lines.append(f"... {len(rows) - TABLE_MAX_ROWS} more rows")
    return "\n".join(lines)


def render_metric(item: RenderItem) -> str:
    lines = _header(item, "metrics")
    rows = _rows(item)
    if not rows:
        lines.append("No data available for metric")
        return "\n".join(lines)

    metrics = item.config.properties.get("metrics")
    if isinstance(metrics, list) and metrics:
        for index, metric in enumerate(metrics):
            label = metric if isinstance(metric, str) else (metric or {}).get("label", "")
            field = None if isinstance(metric, str) else (metric or {}).get("field")
            match = next(
                (r for r in rows if r.get("label") == label or (field and r.get("field") == field)),
                rows[index] if index < len(rows) else None,
            )
            value = match.get("value", match.get(field)) if match else None
            lines.append(f"  {label}: {value if value is not None else 0}")
        return "\n".join(lines)

    for key, value in rows[0].items():
        lines.append(f"  {key}: {value}")
    return "\n".join(lines)


def render_insights(item: RenderItem) -> str:
    lines = _header(item, "insights")
    insights = item.insights
    if insights is None or insights.is_empty():
        lines.append("No insights available for this component.")
        return "\n".join(lines)
    for heading, entries in (
        ("Key Findings", insights.key_findings),
        ("Recommendations", insights.recommendations),
        ("Next Steps", insights.next_steps),
        ("Alerts", insights.alerts),
    ):
        if entries:
            lines.append(heading)
            lines.extend(f"  - {entry}" for entry in entries)
    return "\n".join(lines)


def render_list(item: RenderItem) -> str:
    lines = _header(item, "list")
    for row in _rows(item)[:LIST_MAX_ITEMS]:
        lines.append("  " + " - ".join(str(v) for v in row.values()))
    return "\n".join(lines)


def render_raw(item: RenderItem) -> str:
    raw_type = getattr(item.resolved_type, "raw_type", None) or item.config.type
    preview = json.dumps(_rows(item)[:RAW_PREVIEW_ROWS], indent=2, default=str)
    return (
        f'Component type "{raw_type}" is not yet supported. Showing raw data instead.\n'
        f"{preview}"
    )


def render_error(item: RenderItem) -> str:
    return f"Response Error: {item.config.description or 'Unknown error occurred'}"


DEFAULT_RENDERERS: Dict[str, Renderer] = {
    "chart": render_chart,
    "table": render_table,
    "metric": render_metric,
    "insights": render_insights,
    "list": render_list,
    "unknown": render_raw,
    "error": render_error,
}


class RendererRegistry:
    """Dispatches RenderItems to render functions by resolved family."""

    def __init__(self, renderers: Optional[Dict[str, Renderer]] = None):
        self._renderers: Dict[str, Renderer] = dict(DEFAULT_RENDERERS)
        if renderers:
            self._renderers.update(renderers)

    def register(self, family: str, renderer: Renderer) -> None:
        self._renderers[family] = renderer

    def render(self, item: RenderItem) -> str:
        renderer = self._renderers.get(item.family, render_raw)
        try:
            return renderer(item)
        except Exception:
            logger.exception("Renderer for %s failed on %s; using raw fallback", item.family, item.component_id)
            return render_raw(item)

    def render_plan(self, plan: RenderPlan) -> List[str]:
        return [self.render(item) for item in plan.items]
