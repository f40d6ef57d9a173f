"""
Withdrawal configuration repository.

Maps WMS wire payloads onto ConfigSnapshot slices and implements the
per-sub-resource save strategies:

- global status, thresholds, manual review: write, then re-fetch
  (the backend may normalize values)
- everything else: write and merge the echoed value
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from loguru import logger

from withdrawal_settings.models.config_snapshot import (
    ConfigSnapshot,
    GlobalLimits,
    GlobalStatus,
    LimitRecord,
    ManualReview,
    ResourceKey,
    Thresholds,
)
from withdrawal_settings.models.enums import SubResource
from withdrawal_settings.utils.exceptions import ConfigEngineError, TransportError
from withdrawal_settings.utils.validation import clean_pause_reason

if TYPE_CHECKING:
    from withdrawal_settings.services.wms_client import WMSClient

DEFAULT_PAUSE_REASON = "immediate action needed"


def _int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    return int(value) if value is not None else 0


def _percent(data: dict[str, Any], fallback: Decimal = Decimal("0")) -> Decimal:
    value = data.get("percent")
    if value is None:
        return fallback
    try:
        return Decimal(str(value))
    except InvalidOperation:
        logger.warning(f"Invalid margin percent from WMS: {value}")
        return fallback


def _timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        logger.warning(f"Invalid paused_at timestamp from WMS: {value}")
        return None


def parse_global_status(data: dict[str, Any]) -> GlobalStatus:
    """Build GlobalStatus from a WMS payload."""
    return GlobalStatus(
        enabled=bool(data.get("enabled", True)),
        reason=data.get("reason") or "",
        paused_by=data.get("paused_by") or "",
        paused_at=_timestamp(data.get("paused_at")),
    )


def parse_thresholds(data: dict[str, Any]) -> tuple[Thresholds, ManualReview]:
    """Build Thresholds and ManualReview from the thresholds payload."""
    cumulative = data.get("cumulative_kyc_transaction_limit") or {}
    daily = data.get("kyc_threshold") or {}
    review = data.get("withdrawal_manual_review") or {}
    thresholds = Thresholds(
        cumulative_kyc_limit_cents=_int(cumulative, "usd_amount_cents"),
        cumulative_kyc_enabled=bool(cumulative.get("enabled", False)),
        kyc_daily_limit_cents=_int(daily, "usd_amount_cents"),
        kyc_daily_enabled=bool(daily.get("enabled", False)),
    )
    manual_review = ManualReview(
        enabled=bool(review.get("enabled", False)),
        single_threshold_cents=_int(review, "single_threshold_cents"),
        daily_threshold_cents=_int(review, "daily_threshold_cents"),
    )
    return thresholds, manual_review


def parse_limit_record(chain_id: str, data: dict[str, Any]) -> LimitRecord:
    """Build a LimitRecord from a per-chain payload."""
    return LimitRecord(
        chain_id=chain_id,
        min_amount_cents=_int(data, "min_amount_cents"),
        max_amount_cents=_int(data, "max_amount_cents"),
    )


def parse_global_limits(data: dict[str, Any]) -> GlobalLimits:
    """Build GlobalLimits from a WMS payload."""
    return GlobalLimits(
        min_amount_cents=_int(data, "min_amount_cents"),
        max_amount_cents=_int(data, "max_amount_cents"),
        enabled=bool(data.get("enabled", False)),
    )


def _has_limit_fields(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and "min_amount_cents" in data
        and "max_amount_cents" in data
    )


class WithdrawalConfigRepository:
    """Repository for a brand's withdrawal configuration held by WMS."""

    def __init__(
        self,
        client: WMSClient,
        default_pause_reason: str = DEFAULT_PAUSE_REASON,
        include_testnet_chains: bool = False,
        chain_config_page_size: int = 100,
    ) -> None:
        """
        Initialize repository.

        Args:
            client: WMS REST client
            default_pause_reason: Reason sent with a status toggle lacking one
            include_testnet_chains: Keep testnet chains in the per-chain fallback
            chain_config_page_size: Chain configs requested in the fallback
        """
        self.client = client
        self.default_pause_reason = default_pause_reason
        self.include_testnet_chains = include_testnet_chains
        self.chain_config_page_size = chain_config_page_size

        self._savers: dict[SubResource, Callable[[str | None, ResourceKey, Any], Awaitable[Any]]] = {
            SubResource.GLOBAL_STATUS: self._save_global_status,
            SubResource.THRESHOLDS: self._save_thresholds,
            SubResource.MANUAL_REVIEW: self._save_manual_review,
            SubResource.GLOBAL_LIMITS: self._save_global_limits,
            SubResource.PER_CHAIN_VALIDATION: self._save_per_chain_validation,
            SubResource.CHAIN_LIMITS: self._save_chain_limits,
            SubResource.REQUIRE_KYC_ON_FIRST_WITHDRAWAL: self._save_require_kyc,
            SubResource.DEPOSIT_MARGIN: self._save_deposit_margin,
            SubResource.WITHDRAWAL_MARGIN: self._save_withdrawal_margin,
            SubResource.DUPLICATE_ACCOUNT_CHECKS: self._save_duplicate_checks,
        }

    async def load_snapshot(self, brand_id: str | None) -> ConfigSnapshot:
        """
        Fetch the full configuration of a brand.

        Args:
            brand_id: Brand to load (None for the platform default)

        Returns:
            Fresh ConfigSnapshot

        Raises:
            ConfigEngineError: If any part of the configuration fails to load
        """
        try:
            snapshot = await self._load_snapshot(brand_id)
        except (ValueError, TypeError, AttributeError) as e:
            raise TransportError(
                f"Malformed WMS response while loading brand {brand_id or 'default'}: {e}",
                brand_id=brand_id,
            ) from e
        logger.info(
            f"Loaded withdrawal settings for brand {brand_id or 'default'}: "
            f"{len(snapshot.chain_limits)} chains, mode={self._describe_mode(snapshot)}"
        )
        return snapshot

    async def _load_snapshot(self, brand_id: str | None) -> ConfigSnapshot:
        (
            status_data,
            thresholds_data,
            (chain_limits, validation_enabled),
            global_limits_data,
            kyc_data,
            deposit_margin_data,
            withdrawal_margin_data,
            duplicate_checks_data,
        ) = await asyncio.gather(
            self.client.get_withdrawal_global_status(brand_id),
            self.client.get_withdrawal_thresholds(brand_id),
            self.load_chain_limits(brand_id),
            self.client.get_global_withdrawal_limits(brand_id),
            self.client.get_require_kyc_on_first_withdrawal(brand_id),
            self.client.get_deposit_margin_percent(brand_id),
            self.client.get_withdrawal_margin_percent(brand_id),
            self.client.get_duplicate_account_checks(brand_id),
        )

        thresholds, manual_review = parse_thresholds(thresholds_data)
        return ConfigSnapshot(
            brand_id=brand_id,
            global_status=parse_global_status(status_data),
            thresholds=thresholds,
            manual_review=manual_review,
            global_limits=parse_global_limits(global_limits_data),
            chain_limits=chain_limits,
            per_chain_validation_enabled=validation_enabled,
            require_kyc_on_first_withdrawal=bool(kyc_data.get("enabled", False)),
            deposit_margin_percent=_percent(deposit_margin_data),
            withdrawal_margin_percent=_percent(withdrawal_margin_data),
            duplicate_account_checks_enabled=bool(
                duplicate_checks_data.get("enabled", False)
            ),
        )

    @staticmethod
    def _describe_mode(snapshot: ConfigSnapshot) -> str:
        try:
            return str(snapshot.validation_mode)
        except ConfigEngineError:
            return "conflicting"

    async def load_chain_limits(
        self, brand_id: str | None
    ) -> tuple[dict[str, LimitRecord], bool]:
        """
        Fetch per-chain limits and the per-chain validation flag.

        Falls back to one request per configured chain when the aggregate
        response carries no limits mapping.

        Returns:
            Tuple of (limits by chain_id, validation_enabled)
        """
        data = await self.client.get_withdrawal_limits(brand_id=brand_id)
        validation_enabled = bool(data.get("validation_enabled", True))

        raw_limits = data.get("limits", data)
        limits = {
            chain_id: parse_limit_record(chain_id, record)
            for chain_id, record in (raw_limits or {}).items()
            if _has_limit_fields(record)
        }
        if limits or "limits" in data:
            return limits, validation_enabled

        logger.info(
            f"Aggregate limits unavailable for brand {brand_id or 'default'}, "
            f"fetching per chain"
        )
        return await self._load_limits_per_chain(brand_id), validation_enabled

    async def _load_limits_per_chain(self, brand_id: str | None) -> dict[str, LimitRecord]:
        chain_configs = await self.client.get_chain_configs(self.chain_config_page_size, 0)
        chain_ids = [
            config["chain_id"]
            for config in chain_configs
            if config.get("chain_id")
            and (self.include_testnet_chains or not config.get("is_testnet", False))
        ]

        async def fetch(chain_id: str) -> LimitRecord | None:
            try:
                data = await self.client.get_withdrawal_limits(chain_id, brand_id)
            except ConfigEngineError as e:
                logger.warning(f"Failed to fetch limits for chain {chain_id}: {e}")
                return None
            if _has_limit_fields(data.get(chain_id)):
                return parse_limit_record(chain_id, data[chain_id])
            if data.get("chain_id") == chain_id and _has_limit_fields(data):
                return parse_limit_record(chain_id, data)
            return None

        records = await asyncio.gather(*(fetch(chain_id) for chain_id in chain_ids))
        return {record.chain_id: record for record in records if record is not None}

    async def close(self) -> None:
        """Close the underlying WMS client."""
        await self.client.close()

    async def save(self, brand_id: str | None, key: ResourceKey, value: Any) -> Any:
        """
        Persist one sub-resource.

        Args:
            brand_id: Brand to write
            key: Sub-resource
            value: Slice value to persist

        Returns:
            Authoritative value after the write

        Raises:
            RemoteRejectionError: Backend refused the write
            TransportError: Network or server failure
        """
        try:
            return await self._savers[key.resource](brand_id, key, value)
        except (ValueError, TypeError, AttributeError) as e:
            raise TransportError(
                f"Malformed WMS response while saving {key}: {e}",
                resource=key,
                brand_id=brand_id,
            ) from e

    async def _refetch(
        self,
        key: ResourceKey,
        sent: Any,
        fetch: Callable[[], Awaitable[dict[str, Any]]],
        parse: Callable[[dict[str, Any]], Any],
    ) -> Any:
        """
        Re-read a slice after a successful write.

        The write has already been applied, so a failed read falls back to
        the sent value instead of reporting the save as failed.
        """
        try:
            return parse(await fetch())
        except (ConfigEngineError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Re-fetch of {key} failed after write, keeping sent value: {e}")
            return sent

    async def _save_global_status(
        self, brand_id: str | None, key: ResourceKey, value: GlobalStatus
    ) -> GlobalStatus:
        reason = clean_pause_reason(value.reason) or self.default_pause_reason
        await self.client.toggle_withdrawal_global_status(reason, brand_id)
        status = await self._refetch(
            key,
            value,
            lambda: self.client.get_withdrawal_global_status(brand_id),
            parse_global_status,
        )
        if status.enabled != value.enabled:
            logger.warning(
                f"Global status for brand {brand_id or 'default'} is "
                f"enabled={status.enabled} after toggle, expected {value.enabled}"
            )
        return status

    async def _save_thresholds(
        self, brand_id: str | None, key: ResourceKey, value: Thresholds
    ) -> Thresholds:
        await self.client.update_withdrawal_thresholds(
            {
                "cumulative_kyc_transaction_limit": {
                    "usd_amount_cents": value.cumulative_kyc_limit_cents,
                    "enabled": value.cumulative_kyc_enabled,
                },
                "kyc_threshold": {
                    "usd_amount_cents": value.kyc_daily_limit_cents,
                    "enabled": value.kyc_daily_enabled,
                },
            },
            brand_id,
        )
        return await self._refetch(
            key,
            value,
            lambda: self.client.get_withdrawal_thresholds(brand_id),
            lambda data: parse_thresholds(data)[0],
        )

    async def _save_manual_review(
        self, brand_id: str | None, key: ResourceKey, value: ManualReview
    ) -> ManualReview:
        await self.client.update_withdrawal_thresholds(
            {
                "withdrawal_manual_review": {
                    "enabled": value.enabled,
                    "single_threshold_cents": value.single_threshold_cents,
                    "daily_threshold_cents": value.daily_threshold_cents,
                },
            },
            brand_id,
        )
        return await self._refetch(
            key,
            value,
            lambda: self.client.get_withdrawal_thresholds(brand_id),
            lambda data: parse_thresholds(data)[1],
        )

    async def _save_global_limits(
        self, brand_id: str | None, key: ResourceKey, value: GlobalLimits
    ) -> GlobalLimits:
        data = await self.client.update_global_withdrawal_limits(
            value.min_amount_cents,
            value.max_amount_cents,
            value.enabled,
            brand_id,
        )
        return parse_global_limits(data) if _has_limit_fields(data) else value

    async def _save_per_chain_validation(
        self, brand_id: str | None, key: ResourceKey, value: bool
    ) -> bool:
        data = await self.client.toggle_withdrawal_limit_validation(value, brand_id)
        return bool(data.get("enabled", value))

    async def _save_chain_limits(
        self, brand_id: str | None, key: ResourceKey, value: LimitRecord
    ) -> LimitRecord:
        response = await self.client.update_withdrawal_limits(
            value.chain_id,
            value.max_amount_cents,
            value.min_amount_cents,
            brand_id,
        )
        data = response.get("data")
        if _has_limit_fields(data):
            return parse_limit_record(value.chain_id, data)
        return value

    async def _save_require_kyc(
        self, brand_id: str | None, key: ResourceKey, value: bool
    ) -> bool:
        data = await self.client.update_require_kyc_on_first_withdrawal(value, brand_id)
        return bool(data.get("enabled", value))

    async def _save_deposit_margin(
        self, brand_id: str | None, key: ResourceKey, value: Decimal
    ) -> Decimal:
        data = await self.client.update_deposit_margin_percent(float(value), brand_id)
        return _percent(data, fallback=value)

    async def _save_withdrawal_margin(
        self, brand_id: str | None, key: ResourceKey, value: Decimal
    ) -> Decimal:
        data = await self.client.update_withdrawal_margin_percent(float(value), brand_id)
        return _percent(data, fallback=value)

    async def _save_duplicate_checks(
        self, brand_id: str | None, key: ResourceKey, value: bool
    ) -> bool:
        data = await self.client.update_duplicate_account_checks(value, brand_id)
        return bool(data.get("enabled", value))


