"""
Pytest configuration and shared fixtures.

Snapshots for two brands, a fake WMS repository and a controller wired to
it. HTTP-level tests build their own aiohttp test server.
"""

from collections.abc import Generator
from decimal import Decimal
from typing import Any

import pytest
from loguru import logger

from helpers.fake_wms import FakeWMSRepository
from withdrawal_settings.config.settings import reset_settings
from withdrawal_settings.models import (
    ConfigSnapshot,
    GlobalLimits,
    GlobalStatus,
    LimitRecord,
    ManualReview,
    Thresholds,
)
from withdrawal_settings.services.settings_controller import SettingsController

# ==================== PYTEST CONFIGURATION ====================


def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: marks integration tests")
    config.addinivalue_line(
        "markers", "concurrency: marks tests that interleave in-flight requests"
    )


# ==================== ENVIRONMENT ====================


@pytest.fixture(autouse=True)
def clean_settings() -> Generator[None, None, None]:
    """Drop the cached Settings before and after every test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def wms_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Minimal valid environment for Settings."""
    env = {
        "WMS_API_URL": "https://wms.example.com/api/",
        "WMS_ACCESS_TOKEN": "test-token",
        "ENVIRONMENT": "test",
    }
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    return env


@pytest.fixture
def captured_logs() -> Generator[list[str], None, None]:
    """Collect loguru messages emitted during a test."""
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(str(message)), level="DEBUG")
    yield messages
    logger.remove(handler_id)


# ==================== SNAPSHOT FIXTURES ====================


@pytest.fixture
def brand_a_snapshot() -> ConfigSnapshot:
    """Brand A: per-chain validation on, global limits off."""
    return ConfigSnapshot(
        brand_id="brand-a",
        global_status=GlobalStatus(enabled=True),
        thresholds=Thresholds(
            cumulative_kyc_limit_cents=100_000,
            cumulative_kyc_enabled=True,
            kyc_daily_limit_cents=50_000,
            kyc_daily_enabled=False,
        ),
        manual_review=ManualReview(
            enabled=True,
            single_threshold_cents=200_000,
            daily_threshold_cents=500_000,
        ),
        global_limits=GlobalLimits(
            min_amount_cents=0, max_amount_cents=0, enabled=False
        ),
        chain_limits={
            "eth": LimitRecord("eth", min_amount_cents=1_000, max_amount_cents=100_000),
            "btc": LimitRecord("btc", min_amount_cents=2_000, max_amount_cents=200_000),
        },
        per_chain_validation_enabled=True,
        require_kyc_on_first_withdrawal=False,
        deposit_margin_percent=Decimal("1.5"),
        withdrawal_margin_percent=Decimal("2"),
        duplicate_account_checks_enabled=True,
    )


@pytest.fixture
def brand_b_snapshot() -> ConfigSnapshot:
    """Brand B: global limits on, per-chain validation off."""
    return ConfigSnapshot(
        brand_id="brand-b",
        global_status=GlobalStatus(enabled=False, reason="maintenance"),
        global_limits=GlobalLimits(
            min_amount_cents=500, max_amount_cents=900_000, enabled=True
        ),
        chain_limits={
            "sol": LimitRecord("sol", min_amount_cents=100, max_amount_cents=10_000),
        },
        per_chain_validation_enabled=False,
    )


@pytest.fixture
def fake_repository(
    brand_a_snapshot: ConfigSnapshot,
    brand_b_snapshot: ConfigSnapshot,
) -> FakeWMSRepository:
    """In-memory WMS holding brand A and brand B."""
    return FakeWMSRepository(
        {"brand-a": brand_a_snapshot, "brand-b": brand_b_snapshot}
    )


@pytest.fixture
def controller(fake_repository: FakeWMSRepository) -> SettingsController:
    """Unloaded controller over the fake WMS."""
    return SettingsController(fake_repository)
