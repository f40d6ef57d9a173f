"""
Unit tests for WithdrawalConfigRepository.

Tests wire payload mapping, the per-chain limits fallback and the
per-sub-resource save strategies against a mocked WMS client.
"""

from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from withdrawal_settings.models import (
    GlobalLimits,
    GlobalStatus,
    LimitRecord,
    ManualReview,
    ResourceKey,
    SubResource,
    Thresholds,
)
from withdrawal_settings.repositories.withdrawal_config_repository import (
    WithdrawalConfigRepository,
    parse_global_status,
    parse_thresholds,
)
from withdrawal_settings.services.settings_controller import SettingsController
from withdrawal_settings.services.wms_client import WMSClient
from withdrawal_settings.utils.exceptions import (
    RemoteRejectionError,
    TransportError,
)

THRESHOLDS_PAYLOAD = {
    "cumulative_kyc_transaction_limit": {"usd_amount_cents": 100_000, "enabled": True},
    "kyc_threshold": {"usd_amount_cents": 50_000, "enabled": False},
    "withdrawal_manual_review": {
        "enabled": True,
        "single_threshold_cents": 200_000,
        "daily_threshold_cents": 500_000,
    },
}


@pytest.fixture
def wms_client() -> AsyncMock:
    """WMS client mock returning one consistent brand configuration."""
    client = AsyncMock(spec=WMSClient)
    client.get_withdrawal_global_status.return_value = {
        "enabled": False,
        "reason": "maintenance",
        "paused_by": "ops@example.com",
        "paused_at": "2024-05-01T12:00:00+00:00",
    }
    client.get_withdrawal_thresholds.return_value = THRESHOLDS_PAYLOAD
    client.get_withdrawal_limits.return_value = {
        "limits": {
            "eth": {"min_amount_cents": 1_000, "max_amount_cents": 100_000},
            "btc": {"min_amount_cents": 2_000, "max_amount_cents": 200_000},
        },
        "validation_enabled": False,
        "global_limits": {},
    }
    client.get_global_withdrawal_limits.return_value = {
        "min_amount_cents": 500,
        "max_amount_cents": 900_000,
        "enabled": True,
    }
    client.get_require_kyc_on_first_withdrawal.return_value = {"enabled": True}
    client.get_deposit_margin_percent.return_value = {"percent": 1.5}
    client.get_withdrawal_margin_percent.return_value = {"percent": "2.25"}
    client.get_duplicate_account_checks.return_value = {"enabled": False}
    return client


@pytest.fixture
def repository(wms_client: AsyncMock) -> WithdrawalConfigRepository:
    return WithdrawalConfigRepository(wms_client)


class TestParsing:
    """Tests for wire payload parsers."""

    def test_parse_global_status(self):
        status = parse_global_status(
            {"enabled": False, "reason": "audit", "paused_at": "2024-05-01T12:00:00"}
        )

        assert status.enabled is False
        assert status.reason == "audit"
        assert status.paused_by == ""
        assert status.paused_at == datetime(2024, 5, 1, 12, 0)

    def test_parse_global_status_defaults_and_bad_timestamp(self):
        status = parse_global_status({"paused_at": "yesterday"})

        assert status == GlobalStatus(enabled=True)

    def test_parse_thresholds(self):
        thresholds, manual_review = parse_thresholds(THRESHOLDS_PAYLOAD)

        assert thresholds == Thresholds(100_000, True, 50_000, False)
        assert manual_review == ManualReview(True, 200_000, 500_000)

    def test_parse_thresholds_empty(self):
        thresholds, manual_review = parse_thresholds({})

        assert thresholds == Thresholds()
        assert manual_review == ManualReview()


class TestLoadSnapshot:
    """Tests for load_snapshot."""

    @pytest.mark.asyncio
    async def test_load_maps_every_slice(self, repository, wms_client):
        snapshot = await repository.load_snapshot("brand-a")

        assert snapshot.brand_id == "brand-a"
        assert snapshot.global_status.enabled is False
        assert snapshot.global_status.paused_by == "ops@example.com"
        assert snapshot.thresholds.cumulative_kyc_limit_cents == 100_000
        assert snapshot.manual_review.daily_threshold_cents == 500_000
        assert snapshot.global_limits == GlobalLimits(500, 900_000, True)
        assert snapshot.chain_limits == {
            "eth": LimitRecord("eth", 1_000, 100_000),
            "btc": LimitRecord("btc", 2_000, 200_000),
        }
        assert snapshot.per_chain_validation_enabled is False
        assert snapshot.require_kyc_on_first_withdrawal is True
        assert snapshot.deposit_margin_percent == Decimal("1.5")
        assert snapshot.withdrawal_margin_percent == Decimal("2.25")
        assert snapshot.duplicate_account_checks_enabled is False
        wms_client.get_withdrawal_thresholds.assert_awaited_once_with("brand-a")

    @pytest.mark.asyncio
    async def test_validation_enabled_defaults_to_true(self, repository, wms_client):
        wms_client.get_withdrawal_limits.return_value = {"limits": {}}

        snapshot = await repository.load_snapshot(None)

        assert snapshot.per_chain_validation_enabled is True
        assert snapshot.chain_limits == {}

    @pytest.mark.asyncio
    async def test_any_failure_fails_the_load(self, repository, wms_client):
        wms_client.get_duplicate_account_checks.side_effect = TransportError("timeout")

        with pytest.raises(TransportError):
            await repository.load_snapshot("brand-a")

    @pytest.mark.asyncio
    async def test_malformed_payload_is_transport_error(self, repository, wms_client):
        wms_client.get_global_withdrawal_limits.return_value = {
            "min_amount_cents": "lots",
            "max_amount_cents": 1,
        }

        with pytest.raises(TransportError, match="Malformed"):
            await repository.load_snapshot("brand-a")


class TestPerChainFallback:
    """Aggregate limits missing: list chains and fetch each one."""

    @pytest.mark.asyncio
    async def test_fallback_fetches_each_mainnet_chain(
        self, repository, wms_client, captured_logs
    ):
        chain_payloads = {
            "eth": {"eth": {"min_amount_cents": 1, "max_amount_cents": 10}},
            "sol": {"chain_id": "sol", "min_amount_cents": 2, "max_amount_cents": 20},
        }

        async def get_limits(chain_id=None, brand_id=None):
            if chain_id is None:
                return {"validation_enabled": True}
            if chain_id == "btc":
                raise TransportError("HTTP 502")
            return chain_payloads[chain_id]

        wms_client.get_withdrawal_limits.side_effect = get_limits
        wms_client.get_chain_configs.return_value = [
            {"chain_id": "eth", "is_testnet": False},
            {"chain_id": "btc"},
            {"chain_id": "sol"},
            {"chain_id": "sepolia", "is_testnet": True},
        ]

        limits, validation_enabled = await repository.load_chain_limits("brand-a")

        assert limits == {
            "eth": LimitRecord("eth", 1, 10),
            "sol": LimitRecord("sol", 2, 20),
        }
        assert validation_enabled is True
        wms_client.get_chain_configs.assert_awaited_once_with(100, 0)
        assert any("btc" in message for message in captured_logs)

    @pytest.mark.asyncio
    async def test_fallback_can_include_testnets(self, wms_client):
        repository = WithdrawalConfigRepository(wms_client, include_testnet_chains=True)

        async def get_limits(chain_id=None, brand_id=None):
            if chain_id is None:
                return {}
            return {chain_id: {"min_amount_cents": 0, "max_amount_cents": 5}}

        wms_client.get_withdrawal_limits.side_effect = get_limits
        wms_client.get_chain_configs.return_value = [
            {"chain_id": "sepolia", "is_testnet": True},
        ]

        limits, _ = await repository.load_chain_limits(None)

        assert limits == {"sepolia": LimitRecord("sepolia", 0, 5)}


class TestSave:
    """Per-sub-resource save strategies."""

    @pytest.mark.asyncio
    async def test_global_status_toggles_then_refetches(self, repository, wms_client):
        value = GlobalStatus(enabled=False, reason="  audit  ")

        saved = await repository.save(
            "brand-a", ResourceKey(SubResource.GLOBAL_STATUS), value
        )

        wms_client.toggle_withdrawal_global_status.assert_awaited_once_with("audit", "brand-a")
        wms_client.get_withdrawal_global_status.assert_awaited_once_with("brand-a")
        assert saved.reason == "maintenance"
        assert saved.paused_by == "ops@example.com"

    @pytest.mark.asyncio
    async def test_global_status_uses_default_reason(self, repository, wms_client):
        await repository.save(
            None, ResourceKey(SubResource.GLOBAL_STATUS), GlobalStatus(enabled=False)
        )

        wms_client.toggle_withdrawal_global_status.assert_awaited_once_with(
            "immediate action needed", None
        )

    @pytest.mark.asyncio
    async def test_refetch_failure_keeps_sent_value(self, repository, wms_client):
        """A write that succeeded is not reported as failed."""
        wms_client.get_withdrawal_thresholds.side_effect = TransportError("timeout")
        value = Thresholds(1, True, 2, True)

        saved = await repository.save("brand-a", ResourceKey(SubResource.THRESHOLDS), value)

        assert saved == value

    @pytest.mark.asyncio
    async def test_refetch_rejected_after_toggle_keeps_sent_value(
        self, repository, wms_client
    ):
        """
        Test status read refused after a successful toggle.

        GIVEN: The toggle succeeds but the follow-up GET returns 403
        WHEN: Global status is saved as paused
        THEN: The paused value is returned and the toggle is sent once
        """
        wms_client.get_withdrawal_global_status.side_effect = RemoteRejectionError(
            "Forbidden", status=403
        )
        value = GlobalStatus(enabled=False, reason="audit")

        saved = await repository.save(
            "brand-a", ResourceKey(SubResource.GLOBAL_STATUS), value
        )

        assert saved == value
        wms_client.toggle_withdrawal_global_status.assert_awaited_once_with("audit", "brand-a")

    @pytest.mark.asyncio
    async def test_controller_keeps_toggle_when_status_read_refused(
        self, repository, wms_client
    ):
        controller = SettingsController(repository)
        await controller.select_brand("brand-a")
        wms_client.get_withdrawal_global_status.side_effect = RemoteRejectionError(
            "Forbidden", status=403
        )
        controller.mutate(SubResource.GLOBAL_STATUS, {"enabled": True})

        result = await controller.save(SubResource.GLOBAL_STATUS)

        assert result.ok is True
        assert controller.snapshot.global_status.enabled is True
        assert not controller.is_dirty(SubResource.GLOBAL_STATUS)
        assert wms_client.toggle_withdrawal_global_status.await_count == 1

    @pytest.mark.asyncio
    async def test_refetch_malformed_keeps_sent_value(self, repository, wms_client):
        wms_client.get_withdrawal_thresholds.return_value = {
            "withdrawal_manual_review": {"single_threshold_cents": "lots"}
        }
        value = ManualReview(True, 10, 20)

        saved = await repository.save(
            "brand-a", ResourceKey(SubResource.MANUAL_REVIEW), value
        )

        assert saved == value

    @pytest.mark.asyncio
    async def test_thresholds_sends_partial(self, repository, wms_client):
        saved = await repository.save(
            "brand-a",
            ResourceKey(SubResource.THRESHOLDS),
            Thresholds(100_000, True, 60_000, True),
        )

        wms_client.update_withdrawal_thresholds.assert_awaited_once_with(
            {
                "cumulative_kyc_transaction_limit": {
                    "usd_amount_cents": 100_000,
                    "enabled": True,
                },
                "kyc_threshold": {"usd_amount_cents": 60_000, "enabled": True},
            },
            "brand-a",
        )
        # Re-fetched value is authoritative
        assert saved == Thresholds(100_000, True, 50_000, False)

    @pytest.mark.asyncio
    async def test_manual_review_sends_only_review(self, repository, wms_client):
        saved = await repository.save(
            "brand-a",
            ResourceKey(SubResource.MANUAL_REVIEW),
            ManualReview(False, 1, 2),
        )

        payload = wms_client.update_withdrawal_thresholds.await_args.args[0]
        assert set(payload) == {"withdrawal_manual_review"}
        assert saved == ManualReview(True, 200_000, 500_000)

    @pytest.mark.asyncio
    async def test_chain_limits_merges_echo(self, repository, wms_client):
        wms_client.update_withdrawal_limits.return_value = {
            "success": True,
            "data": {"min_amount_cents": 1_000, "max_amount_cents": 149_900},
        }

        saved = await repository.save(
            "brand-a",
            ResourceKey(SubResource.CHAIN_LIMITS, "eth"),
            LimitRecord("eth", 1_000, 150_000),
        )

        wms_client.update_withdrawal_limits.assert_awaited_once_with(
            "eth", 150_000, 1_000, "brand-a"
        )
        assert saved == LimitRecord("eth", 1_000, 149_900)

    @pytest.mark.asyncio
    async def test_chain_limits_without_echo_keeps_sent(self, repository, wms_client):
        wms_client.update_withdrawal_limits.return_value = {"success": True}
        value = LimitRecord("eth", 1_000, 150_000)

        saved = await repository.save("brand-a", ResourceKey(SubResource.CHAIN_LIMITS, "eth"), value)

        assert saved == value
        wms_client.get_withdrawal_limits.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_global_limits_echo(self, repository, wms_client):
        wms_client.update_global_withdrawal_limits.return_value = {
            "min_amount_cents": 100,
            "max_amount_cents": 1_000,
            "enabled": True,
        }

        saved = await repository.save(
            "brand-a", ResourceKey(SubResource.GLOBAL_LIMITS), GlobalLimits(100, 1_000, True)
        )

        wms_client.update_global_withdrawal_limits.assert_awaited_once_with(
            100, 1_000, True, "brand-a"
        )
        assert saved == GlobalLimits(100, 1_000, True)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "resource, method",
        [
            (SubResource.PER_CHAIN_VALIDATION, "toggle_withdrawal_limit_validation"),
            (SubResource.REQUIRE_KYC_ON_FIRST_WITHDRAWAL, "update_require_kyc_on_first_withdrawal"),
            (SubResource.DUPLICATE_ACCOUNT_CHECKS, "update_duplicate_account_checks"),
        ],
    )
    async def test_scalar_toggles_merge_echo(self, repository, wms_client, resource, method):
        getattr(wms_client, method).return_value = {"enabled": False}

        saved = await repository.save("brand-a", ResourceKey(resource), True)

        getattr(wms_client, method).assert_awaited_once_with(True, "brand-a")
        assert saved is False

    @pytest.mark.asyncio
    async def test_margin_sent_as_float(self, repository, wms_client):
        wms_client.update_deposit_margin_percent.return_value = {}

        saved = await repository.save(
            "brand-a", ResourceKey(SubResource.DEPOSIT_MARGIN), Decimal("2.5")
        )

        wms_client.update_deposit_margin_percent.assert_awaited_once_with(2.5, "brand-a")
        assert saved == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_rejection_propagates(self, repository, wms_client):
        wms_client.update_withdrawal_margin_percent.side_effect = RemoteRejectionError(
            "Margin too high", status=400
        )

        with pytest.raises(RemoteRejectionError, match="Margin too high"):
            await repository.save(
                "brand-a", ResourceKey(SubResource.WITHDRAWAL_MARGIN), Decimal("99")
            )

    @pytest.mark.asyncio
    async def test_close_closes_client(self, repository, wms_client):
        await repository.close()

        wms_client.close.assert_awaited_once()
