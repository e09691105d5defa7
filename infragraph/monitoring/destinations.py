"""Alert destinations.

A destination receives the alerts surviving one cycle. Delivery failures
raise DispatchError; the monitor isolates each destination so one failure
never blocks the others.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence

import requests

from infragraph.core.graph import AlertInstance, Severity
from infragraph.errors import DispatchError

logger = logging.getLogger(__name__)


class AlertDestination(ABC):
    """Base class for alert destinations."""

    name: str = "destination"

    @abstractmethod
    def deliver(self, alerts: Sequence[AlertInstance]) -> None:
        """Deliver a batch of alerts.

        Raises:
            DispatchError: If delivery failed
        """


class CallbackDestination(AlertDestination):
    """Hand alerts to a Python callable."""

    def __init__(self, callback: Callable[[List[AlertInstance]], None], name: str = "callback"):
        self.callback = callback
        self.name = name

    def deliver(self, alerts: Sequence[AlertInstance]) -> None:
        try:
            self.callback(list(alerts))
        except Exception as e:
            raise DispatchError(self.name, e) from e


class WebhookDestination(AlertDestination):
    """POST alerts as JSON to an HTTP endpoint.

    There is no timeout unless one is configured: a slow endpoint delays
    the end of the cycle but does not lose alerts.
    """

    def __init__(
        self,
        url: str,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
        name: str = "webhook",
    ):
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.session = session or requests.Session()
        self.name = name

    @classmethod
    def from_settings(cls, settings) -> Optional["WebhookDestination"]:
        if not settings.webhook_url:
            return None
        return cls(settings.webhook_url, timeout=settings.webhook_timeout)

    def deliver(self, alerts: Sequence[AlertInstance]) -> None:
        payload = {"alerts": [a.to_dict() for a in alerts], "count": len(alerts)}
        try:
            response = self.session.post(self.url, json=payload, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise DispatchError(self.name, e) from e
        logger.debug("Delivered %d alerts to %s", len(alerts), self.url)


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.CRITICAL: logging.ERROR,
}


class LogDestination(AlertDestination):
    """Write alerts to a logger, one line each."""

    name = "log"

    def __init__(self, target: Optional[logging.Logger] = None):
        self.logger = target or logging.getLogger("infragraph.alerts")

    def deliver(self, alerts: Sequence[AlertInstance]) -> None:
        for alert in alerts:
            self.logger.log(
                _LOG_LEVELS.get(alert.severity, logging.WARNING),
                "[%s] %s: %s (%d nodes)",
                alert.severity.value, alert.rule_id, alert.message, len(alert.affected_node_ids),
            )
