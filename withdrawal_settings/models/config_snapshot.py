"""
Withdrawal configuration snapshot.

Per-brand aggregate of every withdrawal setting the dashboard edits.
Slices are immutable value objects, so replacing a slice in the live copy
can never leak into a baseline copy.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from withdrawal_settings.models.enums import SubResource, ValidationMode
from withdrawal_settings.utils.exceptions import (
    LocalValidationError,
    MutualExclusionError,
)


@dataclass(frozen=True)
class ResourceKey:
    """Identifies one independently saveable slice."""

    resource: SubResource
    chain_id: str | None = None

    def __post_init__(self) -> None:
        if self.resource == SubResource.CHAIN_LIMITS and not self.chain_id:
            raise ValueError("chain_limits requires a chain_id")
        if self.resource != SubResource.CHAIN_LIMITS and self.chain_id:
            raise ValueError(f"{self.resource} is not addressed by chain_id")

    def __str__(self) -> str:
        if self.chain_id:
            return f"{self.resource}[{self.chain_id}]"
        return str(self.resource)


@dataclass(frozen=True)
class GlobalStatus:
    """Global withdrawal switch."""

    enabled: bool = True
    reason: str = ""
    paused_by: str = ""
    paused_at: datetime | None = None


@dataclass(frozen=True)
class Thresholds:
    """KYC thresholds (amounts in USD cents)."""

    cumulative_kyc_limit_cents: int = 0
    cumulative_kyc_enabled: bool = False
    kyc_daily_limit_cents: int = 0
    kyc_daily_enabled: bool = False


@dataclass(frozen=True)
class ManualReview:
    """Manual review thresholds (amounts in USD cents)."""

    enabled: bool = False
    single_threshold_cents: int = 0
    daily_threshold_cents: int = 0


@dataclass(frozen=True)
class LimitRecord:
    """Per-chain withdrawal limits (amounts in USD cents)."""

    chain_id: str
    min_amount_cents: int = 0
    max_amount_cents: int = 0


@dataclass(frozen=True)
class GlobalLimits:
    """Withdrawal limits applied uniformly across chains."""

    min_amount_cents: int = 0
    max_amount_cents: int = 0
    enabled: bool = False


# Snapshot attribute holding each non-chain slice
_SLICE_ATTRS: dict[SubResource, str] = {
    SubResource.GLOBAL_STATUS: "global_status",
    SubResource.THRESHOLDS: "thresholds",
    SubResource.MANUAL_REVIEW: "manual_review",
    SubResource.GLOBAL_LIMITS: "global_limits",
    SubResource.PER_CHAIN_VALIDATION: "per_chain_validation_enabled",
    SubResource.REQUIRE_KYC_ON_FIRST_WITHDRAWAL: "require_kyc_on_first_withdrawal",
    SubResource.DEPOSIT_MARGIN: "deposit_margin_percent",
    SubResource.WITHDRAWAL_MARGIN: "withdrawal_margin_percent",
    SubResource.DUPLICATE_ACCOUNT_CHECKS: "duplicate_account_checks_enabled",
}

_MARGIN_RESOURCES = frozenset(
    {SubResource.DEPOSIT_MARGIN, SubResource.WITHDRAWAL_MARGIN}
)


@dataclass
class ConfigSnapshot:
    """Withdrawal configuration of one brand."""

    brand_id: str | None = None
    global_status: GlobalStatus = field(default_factory=GlobalStatus)
    thresholds: Thresholds = field(default_factory=Thresholds)
    manual_review: ManualReview = field(default_factory=ManualReview)
    global_limits: GlobalLimits = field(default_factory=GlobalLimits)
    chain_limits: dict[str, LimitRecord] = field(default_factory=dict)
    per_chain_validation_enabled: bool = True
    require_kyc_on_first_withdrawal: bool = False
    deposit_margin_percent: Decimal = Decimal("0")
    withdrawal_margin_percent: Decimal = Decimal("0")
    duplicate_account_checks_enabled: bool = False

    def copy(self) -> ConfigSnapshot:
        """Return an independent copy (slices are immutable and shared)."""
        return dataclasses.replace(self, chain_limits=dict(self.chain_limits))

    @property
    def validation_mode(self) -> ValidationMode:
        """
        Limit set currently enforced.

        Raises:
            MutualExclusionError: If both flags are set
        """
        if self.global_limits.enabled and self.per_chain_validation_enabled:
            raise MutualExclusionError(
                "Global limits and per-chain validation are both enabled",
                brand_id=self.brand_id,
            )
        if self.global_limits.enabled:
            return ValidationMode.GLOBAL_LIMITS
        if self.per_chain_validation_enabled:
            return ValidationMode.PER_CHAIN_LIMITS
        return ValidationMode.DISABLED

    def get(self, key: ResourceKey) -> Any:
        """Get the value of one slice (None for an unknown chain)."""
        if key.resource == SubResource.CHAIN_LIMITS:
            return self.chain_limits.get(key.chain_id)
        return getattr(self, _SLICE_ATTRS[key.resource])

    def set(self, key: ResourceKey, value: Any) -> None:
        """Replace one slice in place (None removes a chain)."""
        if key.resource == SubResource.CHAIN_LIMITS:
            if value is None:
                self.chain_limits.pop(key.chain_id, None)
            else:
                self.chain_limits[key.chain_id] = value
            return
        setattr(self, _SLICE_ATTRS[key.resource], value)

    def patched(self, key: ResourceKey, patch: Any) -> Any:
        """
        Build the new value of a slice from a patch.

        Record slices take a mapping of field names; scalar slices take the
        bare value or ``{"value": ...}``.

        Raises:
            LocalValidationError: On unknown fields or a malformed patch
        """
        current = self.get(key)
        if key.resource == SubResource.CHAIN_LIMITS and current is None:
            current = LimitRecord(chain_id=key.chain_id)

        if dataclasses.is_dataclass(current):
            if not isinstance(patch, dict):
                raise LocalValidationError(
                    f"Patch for {key} must be a mapping of fields",
                    resource=key,
                    brand_id=self.brand_id,
                )
            allowed = {f.name for f in dataclasses.fields(current)} - {"chain_id"}
            unknown = sorted(set(patch) - allowed)
            if unknown:
                raise LocalValidationError(
                    f"Unknown fields for {key}: {', '.join(unknown)}",
                    field_errors={name: "unknown field" for name in unknown},
                    resource=key,
                    brand_id=self.brand_id,
                )
            flag_errors = {
                name: "must be a boolean"
                for name, value in patch.items()
                if isinstance(getattr(current, name), bool) and not isinstance(value, bool)
            }
            if flag_errors:
                raise LocalValidationError(
                    f"{key} expects true or false for {', '.join(sorted(flag_errors))}",
                    field_errors=flag_errors,
                    resource=key,
                    brand_id=self.brand_id,
                )
            return dataclasses.replace(current, **patch)

        value = patch
        if isinstance(patch, dict):
            if set(patch) != {"value"}:
                raise LocalValidationError(
                    f"Patch for {key} must be {{'value': ...}}",
                    resource=key,
                    brand_id=self.brand_id,
                )
            value = patch["value"]

        if key.resource in _MARGIN_RESOURCES:
            try:
                return Decimal(str(value))
            except ArithmeticError as e:
                raise LocalValidationError(
                    f"Invalid percent for {key}: {value}",
                    field_errors={"value": "must be a number"},
                    resource=key,
                    brand_id=self.brand_id,
                ) from e
        if not isinstance(value, bool):
            raise LocalValidationError(
                f"{key} expects true or false",
                field_errors={"value": "must be a boolean"},
                resource=key,
                brand_id=self.brand_id,
            )
        return value

    def resource_keys(self) -> list[ResourceKey]:
        """All saveable keys of this snapshot."""
        keys = [ResourceKey(resource) for resource in _SLICE_ATTRS]
        keys.extend(
            ResourceKey(SubResource.CHAIN_LIMITS, chain_id)
            for chain_id in sorted(self.chain_limits)
        )
        return keys
