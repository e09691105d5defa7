"""Registry of configured discovery adapters."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Dict, List, Optional

from infragraph.discovery.base import DiscoveryAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Holds one adapter per provider and remembers which ones answered.

    Example:
        >>> registry = AdapterRegistry()
        >>> registry.register(AwsDiscoveryAdapter(session))
        >>> registry.probe()
        {'aws': True}
    """

    def __init__(self) -> None:
        self._adapters: "OrderedDict[str, DiscoveryAdapter]" = OrderedDict()
        self._health: Dict[str, bool] = {}

    def register(self, adapter: DiscoveryAdapter) -> None:
        """Register an adapter, replacing any previous one for its provider.

        Raises:
            ValueError: If the adapter does not declare a provider
        """
        if not adapter.provider:
            raise ValueError(f"{type(adapter).__name__} does not declare a provider")
        if adapter.provider in self._adapters:
            logger.info("Replacing %s discovery adapter", adapter.provider)
        self._adapters[adapter.provider] = adapter
        self._health.pop(adapter.provider, None)

    def unregister(self, provider: str) -> bool:
        self._health.pop(provider, None)
        return self._adapters.pop(provider, None) is not None

    def get(self, provider: str) -> Optional[DiscoveryAdapter]:
        return self._adapters.get(provider)

    def providers(self) -> List[str]:
        return list(self._adapters)

    def probe(self) -> Dict[str, bool]:
        """Health-check every adapter and cache the outcome."""
        for provider, adapter in self._adapters.items():
            healthy = adapter.health_check()
            if not healthy:
                logger.warning("%s discovery adapter is not available", provider)
            self._health[provider] = healthy
        return dict(self._health)

    def available(self) -> List[DiscoveryAdapter]:
        """Adapters that passed the last probe, or all adapters if never probed."""
        return [
            adapter for provider, adapter in self._adapters.items()
            if self._health.get(provider, True)
        ]

    def __len__(self) -> int:
        return len(self._adapters)

    def __iter__(self):
        return iter(list(self._adapters.values()))
