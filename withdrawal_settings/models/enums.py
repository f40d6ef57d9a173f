"""
Settings engine enums.

Centralized enums used across the snapshot model and the controller.
"""

from enum import StrEnum


class SubResource(StrEnum):
    """Independently saveable slices of a brand's configuration."""

    GLOBAL_STATUS = "global_status"
    THRESHOLDS = "thresholds"
    MANUAL_REVIEW = "manual_review"
    GLOBAL_LIMITS = "global_limits"
    PER_CHAIN_VALIDATION = "per_chain_validation"
    CHAIN_LIMITS = "chain_limits"  # Addressed together with a chain_id
    REQUIRE_KYC_ON_FIRST_WITHDRAWAL = "require_kyc_on_first_withdrawal"
    DEPOSIT_MARGIN = "deposit_margin"
    WITHDRAWAL_MARGIN = "withdrawal_margin"
    DUPLICATE_ACCOUNT_CHECKS = "duplicate_account_checks"


class ControllerState(StrEnum):
    """Settings controller lifecycle states."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    SAVING = "saving"  # Reported per sub-resource only
    ERROR = "error"


class ValidationMode(StrEnum):
    """Which withdrawal limit set the backend enforces."""

    GLOBAL_LIMITS = "global_limits"
    PER_CHAIN_LIMITS = "per_chain_limits"
    DISABLED = "disabled"
