"""
Dirty tracker.

Compares the live snapshot against the last fetched/saved baseline, one
sub-resource at a time.
"""

from typing import Any

from withdrawal_settings.models.config_snapshot import (
    ConfigSnapshot,
    ResourceKey,
)
from withdrawal_settings.models.enums import SubResource


def _comparable(key: ResourceKey, value: Any) -> Any:
    """Project a slice onto the fields its dirty-check looks at."""
    if value is None:
        return None
    if key.resource == SubResource.GLOBAL_STATUS:
        # paused_by/paused_at are server-owned, reason rides along with a toggle
        return value.enabled
    if key.resource == SubResource.CHAIN_LIMITS:
        return (value.min_amount_cents, value.max_amount_cents)
    return value


def is_dirty(key: ResourceKey, current: ConfigSnapshot, original: ConfigSnapshot) -> bool:
    """
    Check whether one sub-resource differs from its baseline.

    Args:
        key: Sub-resource to compare
        current: Live snapshot
        original: Baseline snapshot

    Returns:
        True if the slice has unsaved changes
    """
    return _comparable(key, current.get(key)) != _comparable(key, original.get(key))


def dirty_resources(current: ConfigSnapshot, original: ConfigSnapshot) -> list[ResourceKey]:
    """
    List every dirty sub-resource.

    Chains present in only one of the two snapshots are included.
    """
    keys = {*current.resource_keys(), *original.resource_keys()}
    return sorted(
        (key for key in keys if is_dirty(key, current, original)),
        key=str,
    )


def commit(key: ResourceKey, original: ConfigSnapshot, saved: Any) -> ConfigSnapshot:
    """Return a new baseline with only the slice at ``key`` replaced."""
    baseline = original.copy()
    baseline.set(key, saved)
    return baseline


class DirtyTracker:
    """
    Baseline holder for one brand.

    Features:
    - Field-scoped dirty checks per sub-resource
    - Per-slice baseline replacement after a save
    """

    def __init__(self, original: ConfigSnapshot) -> None:
        """
        Initialize tracker.

        Args:
            original: Freshly loaded snapshot (copied)
        """
        self._original = original.copy()

    @property
    def original(self) -> ConfigSnapshot:
        """Baseline snapshot (do not mutate)."""
        return self._original

    def is_dirty(self, key: ResourceKey, current: ConfigSnapshot) -> bool:
        """Check one sub-resource of ``current`` against the baseline."""
        return is_dirty(key, current, self._original)

    def dirty_resources(self, current: ConfigSnapshot) -> list[ResourceKey]:
        """Every sub-resource of ``current`` with unsaved changes."""
        return dirty_resources(current, self._original)

    def payload(self, key: ResourceKey, current: ConfigSnapshot) -> Any:
        """Value to send for ``key``."""
        return current.get(key)

    def baseline(self, key: ResourceKey) -> Any:
        """Last persisted value of ``key``."""
        return self._original.get(key)

    def commit(self, key: ResourceKey, saved: Any) -> None:
        """Replace the baseline of exactly one sub-resource."""
        self._original = commit(key, self._original, saved)
