"""
Withdrawal settings controller.

Orchestrates fetch -> edit -> validate -> save for one brand at a time.
Every async operation is tagged with the generation active when it was
dispatched; results for an older generation are discarded.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from loguru import logger

from withdrawal_settings.config.settings import Settings, get_settings
from withdrawal_settings.models.config_snapshot import ConfigSnapshot, ResourceKey
from withdrawal_settings.models.enums import (
    ControllerState,
    SubResource,
    ValidationMode,
)
from withdrawal_settings.repositories.withdrawal_config_repository import (
    WithdrawalConfigRepository,
)
from withdrawal_settings.services.dirty_tracker import DirtyTracker
from withdrawal_settings.services.wms_client import WMSClient
from withdrawal_settings.utils.exceptions import (
    ConfigEngineError,
    ControllerStateError,
    LocalValidationError,
    MutualExclusionError,
    NothingToSaveError,
    RemoteRejectionError,
    SaveInProgressError,
    StaleBrandError,
    TransportError,
)
from withdrawal_settings.utils.validation import (
    is_mutual_exclusion_error,
    validate_resource,
)

_EXCLUSION_PEERS = {
    SubResource.GLOBAL_LIMITS: ResourceKey(SubResource.PER_CHAIN_VALIDATION),
    SubResource.PER_CHAIN_VALIDATION: ResourceKey(SubResource.GLOBAL_LIMITS),
}


@dataclass(frozen=True)
class SaveResult:
    """Outcome of one save request."""

    key: ResourceKey
    ok: bool
    value: Any = None
    error: ConfigEngineError | None = None


class SettingsController:
    """
    State machine for the withdrawal settings of the selected brand.

    Features:
    - Brand switching with stale-result detection (generation counter)
    - Per-sub-resource validation, dirty tracking and save lifecycle
    - Independent concurrent saves for different sub-resources
    """

    def __init__(self, repository: WithdrawalConfigRepository) -> None:
        """
        Initialize controller.

        Args:
            repository: Withdrawal configuration repository
        """
        self.repository = repository

        self._state = ControllerState.UNLOADED
        self._brand_id: str | None = None
        self._generation = 0
        self._live: ConfigSnapshot | None = None
        self._tracker: DirtyTracker | None = None
        self._load_task: asyncio.Task[ConfigSnapshot] | None = None
        self._load_error: ConfigEngineError | None = None

        # key -> generation that dispatched the save
        self._saving: dict[ResourceKey, int] = {}
        self._field_errors: dict[ResourceKey, dict[str, str]] = {}
        self._last_errors: dict[ResourceKey, ConfigEngineError] = {}

    @property
    def state(self) -> ControllerState:
        """Controller-wide state (per-key saves are reported by state_of)."""
        return self._state

    @property
    def brand_id(self) -> str | None:
        return self._brand_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def snapshot(self) -> ConfigSnapshot | None:
        """Live snapshot being edited."""
        return self._live

    @property
    def original(self) -> ConfigSnapshot | None:
        """Last fetched/saved baseline."""
        return self._tracker.original if self._tracker else None

    @property
    def load_error(self) -> ConfigEngineError | None:
        return self._load_error

    @property
    def validation_mode(self) -> ValidationMode:
        """
        Limit set enforced by the live snapshot.

        Raises:
            ControllerStateError: If nothing is loaded
            MutualExclusionError: If both limit flags are set
        """
        if self._live is None:
            raise ControllerStateError(
                "No configuration loaded", brand_id=self._brand_id
            )
        return self._live.validation_mode

    # Loading

    async def select_brand(self, brand_id: str | None) -> bool:
        """
        Switch to a brand and load its configuration.

        Any previous load is cancelled and any in-flight save for the
        previous brand becomes stale.

        Args:
            brand_id: Brand to load (None for the platform default)

        Returns:
            True if the snapshot was loaded, False if the load failed or was
            superseded by a later selection
        """
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()

        self._generation += 1
        generation = self._generation
        self._brand_id = brand_id
        self._state = ControllerState.LOADING
        self._live = None
        self._tracker = None
        self._load_error = None
        self._saving = {}
        self._field_errors = {}
        self._last_errors = {}

        logger.info(f"Loading withdrawal settings for brand {brand_id or 'default'}")

        task = asyncio.create_task(self.repository.load_snapshot(brand_id))
        self._load_task = task
        try:
            snapshot = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.debug(
                    f"Load for brand {brand_id or 'default'} superseded "
                    f"(generation {generation})"
                )
                return False
            task.cancel()
            self._state = ControllerState.UNLOADED
            raise
        except ConfigEngineError as e:
            if generation != self._generation:
                return False
            self._state = ControllerState.ERROR
            self._load_error = e
            logger.error(
                f"Failed to load withdrawal settings for brand "
                f"{brand_id or 'default'}: {e}"
            )
            return False
        finally:
            if self._load_task is task:
                self._load_task = None

        if generation != self._generation:
            logger.debug(
                f"Discarding stale snapshot for brand {brand_id or 'default'}"
            )
            return False

        self._live = snapshot.copy()
        self._tracker = DirtyTracker(snapshot)
        for key in self._live.resource_keys():
            self._revalidate(key)
        self._state = ControllerState.LOADED
        return True

    async def refresh(self) -> bool:
        """Reload the current brand, discarding unsaved edits."""
        return await self.select_brand(self._brand_id)

    # Editing

    def mutate(
        self,
        resource: SubResource | str,
        patch: Any,
        chain_id: str | None = None,
    ) -> dict[str, str]:
        """
        Apply an edit to the live snapshot.

        Never contacts the backend. The edit is applied even when it leaves
        the slice invalid; the errors gate save instead.

        Args:
            resource: Sub-resource to edit
            patch: Mapping of fields, or a bare value for scalar toggles
            chain_id: Chain for chain_limits

        Returns:
            Field errors of the edited sub-resource after the edit

        Raises:
            ControllerStateError: If the controller is not loaded
            SaveInProgressError: If this sub-resource is being saved
            LocalValidationError: On unknown fields or a malformed patch
        """
        key = self._key(resource, chain_id)
        self._require_loaded(key)
        if key in self._saving:
            raise SaveInProgressError(
                f"Save in progress for {key}",
                resource=key,
                brand_id=self._brand_id,
            )

        value = self._live.patched(key, patch)
        self._live.set(key, value)
        self._last_errors.pop(key, None)
        self._revalidate(key)

        errors = self._field_errors.get(key, {})
        if errors:
            logger.debug(f"Edit of {key} has errors: {errors}")
        return dict(errors)

    # Queries

    def errors(self, resource: SubResource | str, chain_id: str | None = None) -> dict[str, str]:
        """Field errors of one sub-resource."""
        return dict(self._field_errors.get(self._key(resource, chain_id), {}))

    def is_dirty(self, resource: SubResource | str, chain_id: str | None = None) -> bool:
        """Whether one sub-resource has unsaved changes."""
        if self._live is None or self._tracker is None:
            return False
        return self._tracker.is_dirty(self._key(resource, chain_id), self._live)

    def dirty_resources(self) -> list[ResourceKey]:
        """Every sub-resource with unsaved changes."""
        if self._live is None or self._tracker is None:
            return []
        return self._tracker.dirty_resources(self._live)

    def is_saving(self, resource: SubResource | str, chain_id: str | None = None) -> bool:
        return self._key(resource, chain_id) in self._saving

    def state_of(
        self, resource: SubResource | str, chain_id: str | None = None
    ) -> ControllerState:
        """State of one sub-resource (SAVING while its save is in flight)."""
        if self._key(resource, chain_id) in self._saving:
            return ControllerState.SAVING
        return self._state

    def last_error(
        self, resource: SubResource | str, chain_id: str | None = None
    ) -> ConfigEngineError | None:
        """Error reported by the last save of one sub-resource."""
        return self._last_errors.get(self._key(resource, chain_id))

    def can_save(self, resource: SubResource | str, chain_id: str | None = None) -> bool:
        """Whether the save action of one sub-resource is enabled."""
        try:
            self._check_save(self._key(resource, chain_id))
        except ConfigEngineError:
            return False
        return True

    # Saving

    async def save(
        self,
        resource: SubResource | str,
        chain_id: str | None = None,
    ) -> SaveResult:
        """
        Persist one sub-resource.

        Precondition failures are returned without contacting the backend.
        A backend rejection reverts the live slice to its baseline; a
        transport failure keeps the live edits for retry.

        Args:
            resource: Sub-resource to save
            chain_id: Chain for chain_limits

        Returns:
            SaveResult with the persisted value or the error
        """
        key = self._key(resource, chain_id)
        try:
            self._check_save(key)
        except ConfigEngineError as e:
            logger.debug(f"Save of {key} rejected locally: {e}")
            return SaveResult(key=key, ok=False, error=e)

        generation = self._generation
        brand_id = self._brand_id
        value = self._tracker.payload(key, self._live)

        self._saving[key] = generation
        self._last_errors.pop(key, None)
        logger.info(f"Saving {key} for brand {brand_id or 'default'}")

        try:
            saved = await self.repository.save(brand_id, key, value)
        except RemoteRejectionError as e:
            if generation != self._generation:
                return self._stale_result(key, generation, brand_id)
            baseline = self._tracker.baseline(key)
            self._live.set(key, baseline)
            self._last_errors[key] = e
            self._revalidate(key)
            logger.warning(f"WMS rejected {key} for brand {brand_id or 'default'}: {e}")
            return SaveResult(key=key, ok=False, value=baseline, error=e)
        except ConfigEngineError as e:
            if generation != self._generation:
                return self._stale_result(key, generation, brand_id)
            if not isinstance(e, TransportError):
                e = TransportError(
                    str(e), resource=key, brand_id=brand_id, details=e.details
                )
            self._last_errors[key] = e
            logger.error(f"Failed to save {key} for brand {brand_id or 'default'}: {e}")
            return SaveResult(key=key, ok=False, value=value, error=e)
        finally:
            if self._saving.get(key) == generation:
                del self._saving[key]

        if generation != self._generation:
            return self._stale_result(key, generation, brand_id)

        self._live.set(key, saved)
        self._tracker.commit(key, saved)
        self._revalidate(key)
        logger.info(f"Saved {key} for brand {brand_id or 'default'}")
        return SaveResult(key=key, ok=True, value=saved)

    async def close(self) -> None:
        """Cancel any pending load and release the HTTP session."""
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        await self.repository.close()

    # Internals

    def _key(self, resource: SubResource | str, chain_id: str | None) -> ResourceKey:
        try:
            return ResourceKey(SubResource(resource), chain_id)
        except ValueError as e:
            raise LocalValidationError(
                f"Invalid sub-resource {resource!r}: {e}",
                field_errors={"resource": str(e)},
                brand_id=self._brand_id,
            ) from e

    def _require_loaded(self, key: ResourceKey) -> None:
        if self._state != ControllerState.LOADED or self._live is None:
            raise ControllerStateError(
                f"Cannot modify {key} while {self._state}",
                resource=key,
                brand_id=self._brand_id,
            )

    def _check_save(self, key: ResourceKey) -> None:
        """
        Raise the first failing save precondition.

        Raises:
            ControllerStateError: Not loaded
            SaveInProgressError: Same key already saving
            NothingToSaveError: No changes
            MutualExclusionError: Global limits vs per-chain validation
            LocalValidationError: Field errors
        """
        self._require_loaded(key)
        if key in self._saving:
            raise SaveInProgressError(
                f"Save in progress for {key}",
                resource=key,
                brand_id=self._brand_id,
            )
        if not self._tracker.is_dirty(key, self._live):
            raise NothingToSaveError(
                f"No changes to save for {key}",
                resource=key,
                brand_id=self._brand_id,
            )

        # Re-run against the combined live state; the peer flag may have moved
        self._revalidate(key)
        errors = self._field_errors.get(key, {})
        if not errors:
            return
        if is_mutual_exclusion_error(key, errors):
            raise MutualExclusionError(
                errors["enabled"],
                field_errors=errors,
                resource=key,
                brand_id=self._brand_id,
            )
        raise LocalValidationError(
            f"Invalid values for {key}",
            field_errors=errors,
            resource=key,
            brand_id=self._brand_id,
        )

    def _revalidate(self, key: ResourceKey) -> None:
        keys = [key]
        peer = _EXCLUSION_PEERS.get(key.resource)
        if peer is not None:
            keys.append(peer)
        for each in keys:
            errors = validate_resource(each, self._live)
            if errors:
                self._field_errors[each] = errors
            else:
                self._field_errors.pop(each, None)

    def _stale_result(
        self, key: ResourceKey, generation: int, brand_id: str | None
    ) -> SaveResult:
        logger.info(
            f"Discarding result of {key} for brand {brand_id or 'default'} "
            f"(generation {generation}, current {self._generation})"
        )
        return SaveResult(
            key=key,
            ok=False,
            error=StaleBrandError(
                f"Brand {brand_id or 'default'} is no longer selected",
                resource=key,
                brand_id=brand_id,
            ),
        )


def create_settings_controller(settings: Settings | None = None) -> SettingsController:
    """
    Build a controller wired to the configured WMS.

    Args:
        settings: Application settings (defaults to get_settings())

    Returns:
        SettingsController instance
    """
    settings = settings or get_settings()
    client = WMSClient(
        base_url=settings.wms_api_url,
        access_token=settings.wms_access_token,
        timeout=settings.api_timeout,
    )
    repository = WithdrawalConfigRepository(
        client,
        default_pause_reason=settings.default_pause_reason,
        include_testnet_chains=settings.include_testnet_chains,
        chain_config_page_size=settings.chain_config_page_size,
    )
    return SettingsController(repository)


# Singleton instance
_settings_controller: SettingsController | None = None


def init_settings_controller(settings: Settings | None = None) -> SettingsController:
    """Initialize settings controller singleton."""
    global _settings_controller

    _settings_controller = create_settings_controller(settings)

    return _settings_controller


def get_settings_controller() -> SettingsController | None:
    """Get settings controller singleton."""
    return _settings_controller
