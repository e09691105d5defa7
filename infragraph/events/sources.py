"""Cloud audit-log event sources.

Each source polls one provider audit log and normalizes its records to
CloudEvent. Read-only calls are dropped unless ``include_read_only`` is
set. ``events_to_changes`` turns the mutating, successful events into
event-stream GraphChange records.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from infragraph.constants import CREATE_VERBS, DELETE_VERBS, READ_ONLY_VERBS, SERVICE_PRINCIPAL_PATTERNS
from infragraph.core.bus import EventBus
from infragraph.core.graph import (
    ChangeType,
    CloudEvent,
    DetectionSource,
    GraphChange,
    InitiatorType,
    utcnow,
)
from infragraph.core.telemetry import instrumented
from infragraph.discovery.base import parse_timestamp
from infragraph.discovery.fieldpath import extract_resource_id, first_value

logger = logging.getLogger(__name__)

_VERB_RE = re.compile(r"[A-Za-z][a-z]*")
_AZURE_OBJECT_ID_CLAIM = "http://schemas.microsoft.com/identity/claims/objectidentifier"


def event_verb(event_type: str) -> str:
    """Leading verb of an operation name, lower-cased.

    Example:
        >>> event_verb("RunInstances")
        'run'
        >>> event_verb("Microsoft.Compute/virtualMachines/delete")
        'delete'
        >>> event_verb("v1.compute.instances.insert")
        'insert'
    """
    segment = re.split(r"[./:]", event_type or "")[-1]
    match = _VERB_RE.match(segment)
    return match.group(0).lower() if match else ""


def categorize_event(event_type: str) -> ChangeType:
    verb = event_verb(event_type)
    if verb in CREATE_VERBS:
        return ChangeType.NODE_CREATED
    if verb in DELETE_VERBS:
        return ChangeType.NODE_DELETED
    return ChangeType.NODE_UPDATED


def classify_actor(actor: Optional[str]) -> InitiatorType:
    """Service principals are system initiators, everyone else is human."""
    if not actor or actor == "unknown":
        return InitiatorType.SYSTEM
    if any(pattern.search(actor) for pattern in SERVICE_PRINCIPAL_PATTERNS):
        return InitiatorType.SYSTEM
    return InitiatorType.HUMAN


def _as_record(item: Any) -> Dict[str, Any]:
    if isinstance(item, dict):
        return item
    for method in ("to_api_repr", "as_dict"):
        convert = getattr(item, method, None)
        if callable(convert):
            return convert()
    serialize = getattr(item, "serialize", None)
    if callable(serialize):
        return serialize(keep_readonly=True)
    return {}


class EventSource(ABC):
    """Base class for audit-log event sources.

    Subclasses implement ``fetch_raw`` and ``parse``; ``fetch_events``
    filters and orders the parsed events.
    """

    provider: str = ""
    source_type: str = ""

    def __init__(self, client: Any = None, include_read_only: bool = False, event_bus: Optional[EventBus] = None):
        self.client = client
        self.include_read_only = include_read_only
        self.event_bus = event_bus

    @abstractmethod
    def fetch_raw(self, since: datetime) -> Iterable[Any]:
        """Fetch the provider audit records newer than ``since``."""

    @abstractmethod
    def parse(self, record: Dict[str, Any]) -> Optional[CloudEvent]:
        """Normalize one audit record, None when it has no identifier."""

    @abstractmethod
    def health_check(self) -> bool:
        """Perform the cheapest audit-log call. Never raises."""

    def fetch_events(self, since: datetime) -> List[CloudEvent]:
        """Fetch normalized events since a timestamp, oldest first.

        Raises:
            Exception: Provider failures propagate; the monitor isolates them
        """
        events = []
        for item in self.fetch_raw(since):
            event = self.parse(_as_record(item))
            if event is None:
                continue
            if event.read_only and not self.include_read_only:
                continue
            events.append(event)
        events.sort(key=lambda e: e.timestamp)
        logger.debug("Fetched %d %s events since %s", len(events), self.source_type, since.isoformat())
        return events

    def _call(self, fn: Callable, service: str, operation: str) -> Callable:
        return instrumented(fn, self.event_bus, self.provider, service, operation)


class CloudTrailEventSource(EventSource):
    """AWS CloudTrail LookupEvents source.

    Example:
        >>> source = CloudTrailEventSource(session=boto3.Session(), region="us-east-1")
        >>> events = source.fetch_events(utcnow() - timedelta(hours=1))
    """

    provider = "aws"
    source_type = "cloudtrail"

    def __init__(
        self,
        session: Any = None,
        region: Optional[str] = None,
        client: Any = None,
        include_read_only: bool = False,
        event_bus: Optional[EventBus] = None,
    ):
        if client is None and session is not None:
            client = session.client("cloudtrail", region_name=region) if region else session.client("cloudtrail")
        super().__init__(client, include_read_only, event_bus)
        self.region = region

    def fetch_raw(self, since: datetime) -> Iterable[Any]:
        paginator = self.client.get_paginator("lookup_events")
        paginate = self._call(paginator.paginate, "cloudtrail", "lookup_events")
        records: List[Dict[str, Any]] = []
        for page in paginate(StartTime=since, EndTime=utcnow()):
            records.extend(page.get("Events", []))
        return records

    def health_check(self) -> bool:
        if self.client is None:
            return False
        try:
            self.client.lookup_events(MaxResults=1)
            return True
        except Exception as e:
            logger.warning("CloudTrail health check failed: %s", type(e).__name__)
            return False

    def parse(self, record: Dict[str, Any]) -> Optional[CloudEvent]:
        event_id = record.get("EventId")
        event_name = record.get("EventName")
        if not event_id or not event_name:
            return None

        detail: Dict[str, Any] = {}
        if isinstance(record.get("CloudTrailEvent"), str):
            try:
                detail = json.loads(record["CloudTrailEvent"])
            except ValueError:
                logger.debug("Unparseable CloudTrailEvent payload in %s", event_id)

        read_only = str(record.get("ReadOnly", detail.get("readOnly", "false"))).lower() == "true"
        return CloudEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=event_name,
            actor=self._actor(record, detail),
            resource_id=first_value(record, "Resources[].ResourceName"),
            region=detail.get("awsRegion") or self.region,
            timestamp=parse_timestamp(record.get("EventTime")) or utcnow(),
            read_only=read_only,
            success=not (record.get("ErrorCode") or detail.get("errorCode")),
            raw=record,
        )

    @staticmethod
    def _actor(record: Dict[str, Any], detail: Dict[str, Any]) -> str:
        for candidate in (
            record.get("Username"),
            first_value(detail, "userIdentity.userName"),
            first_value(detail, "userIdentity.sessionContext.sessionIssuer.userName"),
            first_value(detail, "userIdentity.invokedBy"),
            first_value(detail, "userIdentity.arn"),
            first_value(detail, "userIdentity.principalId"),
        ):
            if candidate:
                return str(candidate)
        return "unknown"


class AzureActivityLogSource(EventSource):
    """Azure Monitor activity-log source.

    ``client`` is a MonitorManagementClient or anything exposing
    ``activity_logs.list(filter=...)``.
    """

    provider = "azure"
    source_type = "azure-activity"

    def __init__(
        self,
        client: Any = None,
        subscription_id: Optional[str] = None,
        include_read_only: bool = False,
        event_bus: Optional[EventBus] = None,
    ):
        super().__init__(client, include_read_only, event_bus)
        self.subscription_id = subscription_id

    def _list(self, since: datetime) -> Iterable[Any]:
        odata = f"eventTimestamp ge '{since.isoformat()}'"
        return self._call(self.client.activity_logs.list, "monitor", "activity_logs.list")(filter=odata)

    def fetch_raw(self, since: datetime) -> Iterable[Any]:
        return list(self._list(since))

    def health_check(self) -> bool:
        if self.client is None:
            return False
        try:
            list(self._list(utcnow() - timedelta(hours=1)))
            return True
        except Exception as e:
            logger.warning("Azure activity log health check failed: %s", type(e).__name__)
            return False

    def parse(self, record: Dict[str, Any]) -> Optional[CloudEvent]:
        event_id = record.get("eventDataId")
        if not event_id:
            return None
        operation = first_value(record, "operationName.value") or "unknown"
        lowered = operation.lower()
        claims = record.get("claims") or {}
        actor = record.get("caller") or claims.get(_AZURE_OBJECT_ID_CLAIM) or "unknown"
        return CloudEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=operation,
            actor=str(actor),
            resource_id=record.get("resourceId"),
            region=record.get("location"),
            timestamp=parse_timestamp(record.get("eventTimestamp")) or utcnow(),
            read_only="write" not in lowered and "delete" not in lowered and "action" not in lowered,
            success=first_value(record, "status.value") == "Succeeded",
            raw=record,
        )


class GcpAuditLogSource(EventSource):
    """GCP Cloud Audit Logs source.

    ``client`` is a google-cloud-logging Client or anything exposing
    ``list_entries(filter_=...)``.
    """

    provider = "gcp"
    source_type = "gcp-audit"

    def __init__(
        self,
        project_id: str,
        client: Any = None,
        include_read_only: bool = False,
        event_bus: Optional[EventBus] = None,
    ):
        super().__init__(client, include_read_only, event_bus)
        self.project_id = project_id

    def _filter(self, since: datetime) -> str:
        return " AND ".join([
            f'logName="projects/{self.project_id}/logs/cloudaudit.googleapis.com%2Factivity"',
            f'timestamp>="{since.isoformat()}"',
        ])

    def fetch_raw(self, since: datetime) -> Iterable[Any]:
        list_entries = self._call(self.client.list_entries, "logging", "list_entries")
        return list(list_entries(filter_=self._filter(since)))

    def health_check(self) -> bool:
        if self.client is None:
            return False
        try:
            list(self.client.list_entries(filter_=self._filter(utcnow() - timedelta(hours=1)), max_results=1))
            return True
        except Exception as e:
            logger.warning("GCP audit log health check failed: %s", type(e).__name__)
            return False

    def parse(self, record: Dict[str, Any]) -> Optional[CloudEvent]:
        event_id = record.get("insertId")
        if not event_id:
            return None
        payload = record.get("protoPayload") or {}
        method = payload.get("methodName") or "unknown"
        status = payload.get("status")
        actor = (
            first_value(payload, "authenticationInfo.principalEmail")
            or first_value(payload, "authenticationInfo.principalSubject")
            or "unknown"
        )
        region = (
            first_value(record, "resource.labels.location")
            or first_value(record, "resource.labels.region")
            or first_value(record, "resource.labels.zone")
        )
        return CloudEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=method,
            actor=str(actor),
            resource_id=payload.get("resourceName") or first_value(record, "resource.labels.instance_id"),
            region=region,
            timestamp=parse_timestamp(record.get("timestamp")) or utcnow(),
            read_only=event_verb(method) in READ_ONLY_VERBS,
            success=not status or status.get("code", 0) == 0,
            raw=record,
        )


# Event -> change ingestion

TargetResolver = Callable[[CloudEvent], Optional[str]]


def index_resolver(nodes: Iterable[Any]) -> TargetResolver:
    """Resolve events to node ids by provider and short resource id.

    Identifiers shared by several nodes of one provider resolve to nothing.
    """
    index: Dict[tuple, Optional[str]] = {}
    for node in nodes:
        key = (node.provider, extract_resource_id(node.native_id))
        index[key] = None if key in index and index[key] != node.id else node.id

    def resolve(event: CloudEvent) -> Optional[str]:
        if not event.resource_id:
            return None
        return index.get((event.provider, extract_resource_id(event.resource_id)))

    return resolve


def events_to_changes(events: Sequence[CloudEvent], resolve_target: TargetResolver) -> List[GraphChange]:
    """Convert successful, mutating events on known nodes into changes.

    Args:
        events: Normalized cloud events
        resolve_target: Maps an event to the id of the node it touched

    Returns:
        One event-stream change per matching event, in event order
    """
    changes = []
    for event in events:
        if event.read_only or not event.success:
            continue
        target_id = resolve_target(event)
        if target_id is None:
            continue
        changes.append(GraphChange(
            target_id=target_id,
            change_type=categorize_event(event.event_type),
            new_value=event.event_type,
            detected_at=event.timestamp,
            detected_via=DetectionSource.EVENT_STREAM,
            # Audit-logged actions are tracked changes
            correlation_id=event.event_id,
            initiator=event.actor,
            initiator_type=classify_actor(event.actor),
            metadata={"event_id": event.event_id, "provider": event.provider},
        ))
    return changes
