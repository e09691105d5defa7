"""InfraGraph centralized configuration management.

Uses pydantic-settings to load configuration from environment variables
and .env files with validation.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional, Union

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from infragraph.constants import SCHEDULE_PRESETS
from infragraph.errors import ConfigurationError


class Settings(BaseSettings):
    """InfraGraph application settings.

    All settings can be overridden via environment variables
    prefixed with INFRAGRAPH_.

    Example:
        INFRAGRAPH_SYNC_INTERVAL_SECONDS=900
        INFRAGRAPH_NEO4J_URI=bolt://neo4j:7687
    """

    model_config = SettingsConfigDict(
        env_prefix="INFRAGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Scheduling
    sync_interval_seconds: float = Field(default=3600, description="Seconds between sync cycles")
    alert_cooldown_seconds: float = Field(
        default=1800,
        description="Minimum seconds before the same alert may fire again"
    )
    max_alerts_per_cycle: int = Field(default=50, description="Alerts dispatched per cycle at most")
    alert_history_size: int = Field(default=1000, description="Alerts kept in memory")

    # Discovery
    discovery_max_workers: int = Field(default=8, description="Parallel fetches per adapter")
    aws_profile: Optional[str] = Field(default=None, description="AWS named profile")
    aws_regions: List[str] = Field(default=["us-east-1"], description="AWS regions to scan")
    azure_subscription_id: Optional[str] = Field(default=None, description="Azure subscription to scan")
    azure_resource_groups: List[str] = Field(default=[], description="Azure resource groups, empty for all")

    # Neo4j Database
    neo4j_uri: str = Field(
        default="bolt://localhost:7687",
        description="Neo4j connection URI"
    )
    neo4j_user: str = Field(default="neo4j", description="Neo4j username")
    neo4j_password: str = Field(default="", description="Neo4j password")

    # Alert destinations
    webhook_url: Optional[str] = Field(default=None, description="Webhook alert destination")
    webhook_timeout: Optional[float] = Field(default=None, description="Webhook timeout, None waits")

    # Rule thresholds
    orphan_critical_cost: float = Field(default=1000.0, description="Orphan cost for critical severity")
    spof_min_out_degree: int = Field(default=5, description="Out-degree above which a star is a SPOF")
    cost_anomaly_threshold: float = Field(default=0.20, description="Relative cost increase to alert on")
    cost_anomaly_critical: float = Field(default=0.50, description="Relative increase for critical")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    def get_aws_regions(self) -> List[str]:
        """Get AWS regions, handling comma-separated env var."""
        regions_env = os.environ.get("INFRAGRAPH_AWS_REGIONS", "")
        if regions_env and not regions_env.lstrip().startswith("["):
            return [r.strip() for r in regions_env.split(",") if r.strip()]
        return self.aws_regions

    def validate_monitoring(self) -> None:
        """Raise ConfigurationError for values the monitor cannot run with."""
        if self.sync_interval_seconds <= 0:
            raise ConfigurationError("sync interval must be positive", field="sync_interval_seconds")
        if self.alert_cooldown_seconds < 0:
            raise ConfigurationError("cooldown cannot be negative", field="alert_cooldown_seconds")
        if self.max_alerts_per_cycle < 1:
            raise ConfigurationError("max_alerts_per_cycle must be >= 1", field="max_alerts_per_cycle")


def resolve_schedule(schedule: Union[str, int, float]) -> float:
    """Resolve a schedule preset name or a number of seconds.

    Args:
        schedule: One of '5min', '15min', 'hourly', 'daily' or seconds

    Returns:
        Interval in seconds

    Raises:
        ConfigurationError: If the preset is unknown or the interval is not positive
    """
    if isinstance(schedule, str):
        if schedule not in SCHEDULE_PRESETS:
            raise ConfigurationError(f"Unknown schedule preset '{schedule}'", field="schedule")
        return float(SCHEDULE_PRESETS[schedule])
    if schedule <= 0:
        raise ConfigurationError("Schedule interval must be positive", field="schedule")
    return float(schedule)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment
    """
    return Settings()
