"""Read-only analyses over recorded changes and sync history."""

from infragraph.analysis.timeline import (
    CostTrendPoint,
    GraphDiff,
    TimelineSummary,
    get_cost_trend,
    get_graph_diff,
    get_timeline_summary,
)

__all__ = [
    "CostTrendPoint",
    "GraphDiff",
    "TimelineSummary",
    "get_cost_trend",
    "get_graph_diff",
    "get_timeline_summary",
]
