"""Audit-log event sources and event-to-change ingestion."""

from infragraph.events.sources import (
    AzureActivityLogSource,
    CloudTrailEventSource,
    EventSource,
    GcpAuditLogSource,
    categorize_event,
    classify_actor,
    events_to_changes,
    index_resolver,
)

__all__ = [
    "AzureActivityLogSource",
    "CloudTrailEventSource",
    "EventSource",
    "GcpAuditLogSource",
    "categorize_event",
    "classify_actor",
    "events_to_changes",
    "index_resolver",
]
