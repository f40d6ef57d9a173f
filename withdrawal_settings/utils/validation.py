"""Withdrawal settings validation rules.

Pure functions over snapshot value objects. Each returns a mapping of
field name to message; an empty mapping means the value is valid.
"""

from decimal import Decimal
from typing import Any

from withdrawal_settings.models.config_snapshot import ConfigSnapshot, ResourceKey
from withdrawal_settings.models.enums import SubResource

MIN_FIELD = "min_amount_cents"
MAX_FIELD = "max_amount_cents"
ENABLED_FIELD = "enabled"
REASON_MAX_LENGTH = 500

MIN_GREATER_THAN_MAX = "Minimum amount cannot be greater than maximum amount"
MAX_LESS_THAN_MIN = "Maximum amount cannot be less than minimum amount"

GLOBAL_LIMITS_CONFLICT = (
    "Cannot enable global limits when per-chain validation is enabled. "
    "Please disable per-chain validation first."
)
PER_CHAIN_CONFLICT = (
    "Cannot enable per-chain validation when global limits are enabled. "
    "Please disable global limits first."
)


def validate_limit_pair(min_amount_cents: int, max_amount_cents: int) -> dict[str, str]:
    """
    Validate a min/max pair.

    Both fields are flagged together so either input can be highlighted.

    Args:
        min_amount_cents: Minimum amount
        max_amount_cents: Maximum amount

    Returns:
        Field errors (empty if valid)
    """
    if min_amount_cents > max_amount_cents:
        return {MIN_FIELD: MIN_GREATER_THAN_MAX, MAX_FIELD: MAX_LESS_THAN_MIN}
    return {}


def validate_global_limits(
    min_amount_cents: int,
    max_amount_cents: int,
    enabled: bool,
) -> dict[str, str]:
    """
    Validate global limits.

    Disabled limits are never validated.

    Args:
        min_amount_cents: Minimum amount
        max_amount_cents: Maximum amount
        enabled: Whether global limits are enforced

    Returns:
        Field errors (empty if valid)
    """
    if not enabled:
        return {}

    errors: dict[str, str] = {}
    if min_amount_cents <= 0:
        errors[MIN_FIELD] = "Minimum amount must be greater than 0 when enabled"
    if max_amount_cents <= 0:
        errors[MAX_FIELD] = "Maximum amount must be greater than 0 when enabled"
    errors.update(validate_limit_pair(min_amount_cents, max_amount_cents))
    return errors


def can_enable_global_limits(per_chain_validation_enabled: bool) -> bool:
    """Global limits can be enabled only while per-chain validation is off."""
    return not per_chain_validation_enabled


def can_enable_per_chain_validation(global_limits_enabled: bool) -> bool:
    """Per-chain validation can be enabled only while global limits are off."""
    return not global_limits_enabled


def validate_cents(value: Any, field: str) -> dict[str, str]:
    """
    Validate a USD cents amount.

    Args:
        value: Amount to validate
        field: Field name used in the error mapping

    Returns:
        Field errors (empty if valid)
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return {field: "Amount must be a whole number of cents"}
    if value < 0:
        return {field: "Amount cannot be negative"}
    return {}


def validate_margin_percent(value: Any, field: str = "value") -> dict[str, str]:
    """
    Validate a margin percent.

    Args:
        value: Percent to validate
        field: Field name used in the error mapping

    Returns:
        Field errors (empty if valid)
    """
    if not isinstance(value, Decimal) or not value.is_finite():
        return {field: "Margin percent must be a number"}
    if value < 0 or value > 100:
        return {field: "Margin percent must be between 0 and 100"}
    return {}


def clean_pause_reason(reason: str | None, max_length: int = REASON_MAX_LENGTH) -> str:
    """Trim a pause reason to what the toggle endpoint accepts (NUL bytes dropped)."""
    return (reason or "").replace("\x00", "").strip()[:max_length]


def validate_resource(key: ResourceKey, snapshot: ConfigSnapshot) -> dict[str, str]:
    """
    Validate one sub-resource of a live snapshot.

    Only the slice addressed by ``key`` is inspected, except for the
    mutual-exclusion rule which reads the peer flag from the same snapshot.

    Args:
        key: Sub-resource to validate
        snapshot: Live snapshot

    Returns:
        Field errors (empty if valid)
    """
    resource = key.resource
    value = snapshot.get(key)
    errors: dict[str, str] = {}

    if resource == SubResource.THRESHOLDS:
        errors.update(
            validate_cents(value.cumulative_kyc_limit_cents, "cumulative_kyc_limit_cents")
        )
        errors.update(validate_cents(value.kyc_daily_limit_cents, "kyc_daily_limit_cents"))

    elif resource == SubResource.MANUAL_REVIEW:
        errors.update(validate_cents(value.single_threshold_cents, "single_threshold_cents"))
        errors.update(validate_cents(value.daily_threshold_cents, "daily_threshold_cents"))

    elif resource == SubResource.GLOBAL_LIMITS:
        errors.update(validate_cents(value.min_amount_cents, MIN_FIELD))
        errors.update(validate_cents(value.max_amount_cents, MAX_FIELD))
        if not errors:
            errors.update(
                validate_global_limits(
                    value.min_amount_cents, value.max_amount_cents, value.enabled
                )
            )
        if value.enabled and not can_enable_global_limits(
            snapshot.per_chain_validation_enabled
        ):
            errors[ENABLED_FIELD] = GLOBAL_LIMITS_CONFLICT

    elif resource == SubResource.PER_CHAIN_VALIDATION:
        if value and not can_enable_per_chain_validation(snapshot.global_limits.enabled):
            errors[ENABLED_FIELD] = PER_CHAIN_CONFLICT

    elif resource == SubResource.CHAIN_LIMITS:
        if value is not None:
            errors.update(validate_cents(value.min_amount_cents, MIN_FIELD))
            errors.update(validate_cents(value.max_amount_cents, MAX_FIELD))
            if not errors:
                errors.update(
                    validate_limit_pair(value.min_amount_cents, value.max_amount_cents)
                )

    elif resource in (SubResource.DEPOSIT_MARGIN, SubResource.WITHDRAWAL_MARGIN):
        errors.update(validate_margin_percent(value))

    return errors


def is_mutual_exclusion_error(key: ResourceKey, errors: dict[str, str]) -> bool:
    """Whether ``errors`` include the global/per-chain conflict."""
    return (
        key.resource in (SubResource.GLOBAL_LIMITS, SubResource.PER_CHAIN_VALIDATION)
        and ENABLED_FIELD in errors
    )
