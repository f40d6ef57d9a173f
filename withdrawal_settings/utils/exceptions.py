"""
Withdrawal settings errors.

Every failure in the settings engine is recoverable by an edit or a retry,
so these are reported per sub-resource and never escape the controller.
"""

from __future__ import annotations

from typing import Any


class ConfigEngineError(Exception):
    """Base class for withdrawal settings errors."""

    error_code: str = "CONFIG_ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        resource: Any = None,
        brand_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.resource = resource
        self.brand_id = brand_id
        self.details = details or {}


class LocalValidationError(ConfigEngineError):
    """Edit rejected before any network call."""

    error_code = "LOCAL_VALIDATION"

    def __init__(
        self,
        message: str,
        *,
        field_errors: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.field_errors = dict(field_errors or {})


class MutualExclusionError(LocalValidationError):
    """Global limits and per-chain validation cannot both be enabled."""

    error_code = "MUTUAL_EXCLUSION"


class NothingToSaveError(LocalValidationError):
    """Save requested for a sub-resource with no unsaved changes."""

    error_code = "NOTHING_TO_SAVE"


class SaveInProgressError(ConfigEngineError):
    """A save for the same sub-resource is already in flight."""

    error_code = "SAVE_IN_PROGRESS"


class ControllerStateError(ConfigEngineError):
    """Operation attempted while the controller is not loaded."""

    error_code = "INVALID_STATE"


class RemoteRejectionError(ConfigEngineError):
    """Backend refused the request (non-success envelope or HTTP 4xx)."""

    error_code = "REMOTE_REJECTION"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status = status


class TransportError(ConfigEngineError):
    """Network failure, timeout or server-side error."""

    error_code = "TRANSPORT_ERROR"


class StaleBrandError(ConfigEngineError):
    """Result arrived for a brand that is no longer selected."""

    error_code = "STALE_BRAND"
