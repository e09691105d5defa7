"""Change and sync recording."""

from infragraph.sync.recorder import ChangeRecorder, DriftPolicy, drift_on_fields, never_drift

__all__ = ["ChangeRecorder", "DriftPolicy", "drift_on_fields", "never_drift"]
