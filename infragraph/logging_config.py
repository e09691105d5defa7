"""Logging setup for processes embedding InfraGraph."""

from __future__ import annotations

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging from the given level or settings.log_level."""
    if level is None:
        from infragraph.config import get_settings

        level = get_settings().log_level
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # botocore is chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
