"""
Settings engine models.

Exports the snapshot value objects and enums for easy imports.
"""

from withdrawal_settings.models.config_snapshot import (
    ConfigSnapshot,
    GlobalLimits,
    GlobalStatus,
    LimitRecord,
    ManualReview,
    ResourceKey,
    Thresholds,
)
from withdrawal_settings.models.enums import (
    ControllerState,
    SubResource,
    ValidationMode,
)

__all__ = [
    "ConfigSnapshot",
    "ControllerState",
    "GlobalLimits",
    "GlobalStatus",
    "LimitRecord",
    "ManualReview",
    "ResourceKey",
    "SubResource",
    "Thresholds",
    "ValidationMode",
]
