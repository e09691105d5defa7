"""InfraMonitor: periodic sync, rule evaluation and alert dispatch.

One cycle polls the event sources, syncs every adapter through the
engine, recomputes graph stats, evaluates the enabled rules, drops alerts
still in cooldown, caps the batch, records it in the alert history and
hands it to every destination. Cycles never overlap: the timer re-arms
only after the previous cycle has returned.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

from infragraph.config import resolve_schedule
from infragraph.constants import (
    DEFAULT_ALERT_COOLDOWN,
    DEFAULT_ALERT_HISTORY_SIZE,
    DEFAULT_MAX_ALERTS_PER_CYCLE,
    DEFAULT_SYNC_INTERVAL,
)
from infragraph.core.bus import ALERT_FIRED, CYCLE_COMPLETED, EventBus
from infragraph.core.graph import AlertInstance, CloudEvent, GraphStats, SyncRecord, utcnow
from infragraph.discovery.base import DiscoverOptions
from infragraph.engine import GraphEngine
from infragraph.errors import ConfigurationError, DispatchError, StorageError
from infragraph.events.sources import EventSource, events_to_changes, index_resolver
from infragraph.monitoring.destinations import AlertDestination, LogDestination, WebhookDestination
from infragraph.monitoring.metrics import MonitorMetrics
from infragraph.monitoring.rules import AlertEvaluationContext, AlertRule, RuleThresholds, builtin_rules

logger = logging.getLogger(__name__)

CooldownKey = Tuple[str, FrozenSet[str]]


@dataclass
class CycleResult:
    """Outcome of one monitor cycle.

    Attributes:
        started_at: Cycle start
        completed_at: Cycle end, None for skipped cycles
        sync_records: SyncRecords written during the cycle
        alerts: Alerts dispatched, in rule-evaluation order
        suppressed_by_cooldown: Alerts dropped because they fired recently
        suppressed_by_cap: Alerts dropped by max_alerts_per_cycle
        events_ingested: Audit events turned into changes
        skipped: True when another cycle was in flight
        error: Storage failure that aborted the cycle
    """

    started_at: datetime
    completed_at: Optional[datetime] = None
    sync_records: List[SyncRecord] = field(default_factory=list)
    alerts: List[AlertInstance] = field(default_factory=list)
    suppressed_by_cooldown: int = 0
    suppressed_by_cap: int = 0
    events_ingested: int = 0
    skipped: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.skipped and self.error is None

    @property
    def duration_ms(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds() * 1000


class InfraMonitor:
    """Scheduler driving sync, evaluation and dispatch.

    Example:
        >>> monitor = InfraMonitor(engine, destinations=[LogDestination()])
        >>> monitor.start("hourly")
        >>> ...
        >>> monitor.stop()
    """

    def __init__(
        self,
        engine: GraphEngine,
        rules: Optional[Sequence[AlertRule]] = None,
        destinations: Sequence[AlertDestination] = (),
        event_sources: Sequence[EventSource] = (),
        alert_cooldown_seconds: float = DEFAULT_ALERT_COOLDOWN,
        max_alerts_per_cycle: int = DEFAULT_MAX_ALERTS_PER_CYCLE,
        alert_history_size: int = DEFAULT_ALERT_HISTORY_SIZE,
        thresholds: Optional[RuleThresholds] = None,
        discover_options: Optional[DiscoverOptions] = None,
        metrics: Optional[MonitorMetrics] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if alert_cooldown_seconds < 0:
            raise ConfigurationError("alert cooldown cannot be negative", field="alert_cooldown_seconds")
        if max_alerts_per_cycle < 1:
            raise ConfigurationError("max_alerts_per_cycle must be >= 1", field="max_alerts_per_cycle")
        if alert_history_size < 1:
            raise ConfigurationError("alert_history_size must be >= 1", field="alert_history_size")

        self.engine = engine
        self.storage = engine.storage
        self.rules: List[AlertRule] = list(rules) if rules is not None else builtin_rules()
        self.destinations: List[AlertDestination] = list(destinations)
        self.event_sources: List[EventSource] = list(event_sources)
        self.alert_cooldown = timedelta(seconds=alert_cooldown_seconds)
        self.max_alerts_per_cycle = max_alerts_per_cycle
        self.thresholds = thresholds or RuleThresholds()
        self.discover_options = discover_options or DiscoverOptions()
        self.metrics = metrics or MonitorMetrics()
        self.event_bus = event_bus if event_bus is not None else engine.event_bus
        self.clock = clock

        self.alert_history: Deque[AlertInstance] = deque(maxlen=alert_history_size)
        self._last_fired: Dict[CooldownKey, datetime] = {}
        self._last_stats: Optional[GraphStats] = None
        self._event_cursors: Dict[int, datetime] = {}
        self._cycle_lock = threading.Lock()
        self._timer_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._cancel = threading.Event()
        self._interval: float = DEFAULT_SYNC_INTERVAL
        self._running = False
        self.cycles_run = 0
        self.last_cycle: Optional[CycleResult] = None

    @classmethod
    def from_settings(cls, settings, engine: GraphEngine, **kwargs: Any) -> "InfraMonitor":
        """Build a monitor from Settings; keyword arguments override.

        Raises:
            ConfigurationError: If the settings cannot drive a monitor
        """
        settings.validate_monitoring()
        destinations = list(kwargs.pop("destinations", [LogDestination()]))
        webhook = WebhookDestination.from_settings(settings)
        if webhook is not None:
            destinations.append(webhook)
        monitor = cls(
            engine,
            destinations=destinations,
            alert_cooldown_seconds=settings.alert_cooldown_seconds,
            max_alerts_per_cycle=settings.max_alerts_per_cycle,
            alert_history_size=settings.alert_history_size,
            thresholds=RuleThresholds.from_settings(settings),
            **kwargs,
        )
        monitor._interval = settings.sync_interval_seconds
        return monitor

    # Configuration

    def add_rule(self, rule: AlertRule) -> None:
        """Add a rule, replacing any rule with the same id."""
        self.rules = [r for r in self.rules if r.id != rule.id] + [rule]

    def enable_rule(self, rule_id: str, enabled: bool = True) -> bool:
        for rule in self.rules:
            if rule.id == rule_id:
                rule.enabled = enabled
                return True
        return False

    def add_destination(self, destination: AlertDestination) -> None:
        self.destinations.append(destination)

    def add_event_source(self, source: EventSource) -> None:
        self.event_sources.append(source)

    # Scheduling

    @property
    def running(self) -> bool:
        return self._running

    def start(self, interval: Union[str, int, float, None] = None, run_immediately: bool = False) -> None:
        """Arm the repeating timer.

        Args:
            interval: Preset name ('5min', '15min', 'hourly', 'daily') or seconds
            run_immediately: Run the first cycle now instead of after one interval

        Raises:
            ConfigurationError: If the interval is invalid
        """
        if interval is not None:
            self._interval = resolve_schedule(interval)
        with self._timer_lock:
            if self._running:
                logger.info("Monitor already running")
                return
            self._running = True
            self._cancel.clear()
        logger.info("Monitor started, interval %ss", self._interval)
        self._arm(0 if run_immediately else self._interval)

    def stop(self) -> None:
        """Cancel the timer and signal an in-flight discovery to stop."""
        with self._timer_lock:
            self._running = False
            self._cancel.set()
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        logger.info("Monitor stopped")

    def _arm(self, delay: float) -> None:
        with self._timer_lock:
            if not self._running:
                return
            self._timer = threading.Timer(delay, self._tick)
            self._timer.daemon = True
            self._timer.start()

    def _tick(self) -> None:
        try:
            self.run_cycle()
        finally:
            self._arm(self._interval)

    # Cycle

    def run_cycle(self) -> CycleResult:
        """Run one full cycle unless one is already in flight.

        Storage failures abort the cycle and are reported in the result;
        the schedule is unaffected.
        """
        started = self.clock()
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Monitor cycle already in flight, skipping")
            self.metrics.record_cycle("skipped", 0.0)
            return CycleResult(started_at=started, skipped=True)

        result = CycleResult(started_at=started)
        perf_start = time.perf_counter()
        try:
            self._run(result)
        except StorageError as e:
            logger.error("Monitor cycle aborted: %s", e)
            result.error = str(e)
        finally:
            result.completed_at = self.clock()
            self.cycles_run += 1
            self.last_cycle = result
            self._cycle_lock.release()

        self.metrics.record_cycle("ok" if result.ok else "failed", time.perf_counter() - perf_start)
        self._emit(CYCLE_COMPLETED, {
            "started_at": result.started_at.isoformat(),
            "duration_ms": result.duration_ms,
            "alerts": len(result.alerts),
            "syncs": len(result.sync_records),
            "error": result.error,
        })
        return result

    def _run(self, result: CycleResult) -> None:
        events = self._poll_events(result.started_at)
        result.events_ingested = self.ingest_events(events)

        options = replace(self.discover_options, cancel_signal=self._cancel)
        result.sync_records = self.engine.sync(options, events)
        self.metrics.record_syncs(result.sync_records)

        current_stats = self.storage.get_stats()
        context = AlertEvaluationContext(
            storage=self.storage,
            sync_records=result.sync_records,
            previous_stats=self._last_stats,
            current_stats=current_stats,
            engine=self.engine,
            thresholds=self.thresholds,
        )
        candidates = self.evaluate(context)
        self._last_stats = current_stats
        survivors = self._apply_cooldown(candidates, result)
        result.alerts = survivors[:self.max_alerts_per_cycle]
        result.suppressed_by_cap = len(survivors) - len(result.alerts)
        self.metrics.record_suppressed("cap", result.suppressed_by_cap)

        now = self.clock()
        for alert in result.alerts:
            self._last_fired[alert.cooldown_key] = now
            self.alert_history.append(alert)
            self._emit(ALERT_FIRED, alert.to_dict())
        self.metrics.record_alerts(result.alerts)

        if result.alerts:
            self.dispatch(result.alerts)

    def evaluate(self, context: AlertEvaluationContext) -> List[AlertInstance]:
        """Evaluate the enabled rules in order.

        A rule raising anything but StorageError is logged and skipped.
        """
        alerts: List[AlertInstance] = []
        for rule in self.rules:
            if not rule.enabled:
                continue
            try:
                alerts.extend(rule.evaluate(context))
            except StorageError:
                raise
            except Exception:
                logger.exception("Alert rule %s failed", rule.id)
        return alerts

    def _apply_cooldown(self, alerts: Sequence[AlertInstance], result: CycleResult) -> List[AlertInstance]:
        now = self.clock()
        self._last_fired = {
            key: fired for key, fired in self._last_fired.items()
            if now - fired < self.alert_cooldown
        }
        survivors = []
        seen = set()
        for alert in alerts:
            key = alert.cooldown_key
            last = self._last_fired.get(key)
            if key in seen or (last is not None and now - last < self.alert_cooldown):
                result.suppressed_by_cooldown += 1
                continue
            seen.add(key)
            survivors.append(alert)
        self.metrics.record_suppressed("cooldown", result.suppressed_by_cooldown)
        return survivors

    def dispatch(self, alerts: Sequence[AlertInstance]) -> int:
        """Deliver alerts to every destination independently.

        Returns:
            Number of destinations that accepted the batch
        """
        delivered = 0
        for destination in self.destinations:
            try:
                destination.deliver(alerts)
                delivered += 1
            except DispatchError as e:
                logger.warning("%s", e)
                self.metrics.record_dispatch_failure(destination.name)
            except Exception as e:
                logger.warning("%s", DispatchError(destination.name, e))
                self.metrics.record_dispatch_failure(destination.name)
        return delivered

    # Events

    def _poll_events(self, now: datetime) -> List[CloudEvent]:
        events: List[CloudEvent] = []
        for source in self.event_sources:
            since = self._event_cursors.get(id(source), now - timedelta(seconds=self._interval))
            try:
                fetched = source.fetch_events(since)
            except Exception as e:
                logger.warning("Polling %s events failed: %s", source.source_type, e)
                continue
            self._event_cursors[id(source)] = now
            events.extend(fetched)
        return events

    def ingest_events(self, events: Sequence[CloudEvent]) -> int:
        """Append event-stream changes for events touching stored nodes.

        Also used for events pushed from outside the polling loop.

        Returns:
            Number of changes appended
        """
        if not events:
            return 0
        changes = events_to_changes(events, index_resolver(self.storage.list_nodes()))
        self.storage.append_changes(changes)
        return len(changes)

    # Queries

    def get_alert_history(self, limit: Optional[int] = None, rule_id: Optional[str] = None) -> List[AlertInstance]:
        """Alerts in firing order, optionally only the last ``limit``."""
        alerts = [a for a in self.alert_history if rule_id is None or a.rule_id == rule_id]
        return alerts[-limit:] if limit else alerts

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "interval_seconds": self._interval,
            "cycles_run": self.cycles_run,
            "last_cycle_at": self.last_cycle.started_at.isoformat() if self.last_cycle else None,
            "alerts_in_history": len(self.alert_history),
            "rules_enabled": [r.id for r in self.rules if r.enabled],
            "destinations": [d.name for d in self.destinations],
            "event_sources": [s.source_type for s in self.event_sources],
        }

    def _emit(self, topic: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(topic, payload)
