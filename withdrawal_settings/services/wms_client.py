"""
Wallet management service client.

Thin aiohttp client for the WMS withdrawal configuration endpoints.
Responses use the ``{success, data, message}`` envelope; failures are
mapped onto the engine's error taxonomy:

- connection errors, timeouts, HTTP 5xx, undecodable bodies -> TransportError
- HTTP 4xx and ``success: false`` -> RemoteRejectionError
"""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
from loguru import logger

from withdrawal_settings.utils.exceptions import (
    RemoteRejectionError,
    TransportError,
)


class WMSClient:
    """
    REST client for withdrawal settings.

    Every method accepts an optional ``brand_id``; omitting it addresses the
    platform-wide default configuration.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str | None = None,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize client.

        Args:
            base_url: WMS API base URL
            access_token: Bearer token forwarded on every request
            timeout: Total request timeout in seconds
            session: Shared aiohttp session (optional, created lazily)
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> WMSClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self.access_token:
                headers["Authorization"] = f"Bearer {self.access_token}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        failure_message: str,
        *,
        brand_id: str | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """
        Perform one request and return the decoded body.

        Raises:
            TransportError: Network failure, timeout, 5xx or bad body
            RemoteRejectionError: 4xx or ``success: false``
        """
        query = dict(params or {})
        if brand_id:
            query["brand_id"] = brand_id

        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(
                method, url, params=query, json=json
            ) as response:
                status = response.status
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    if status >= 400:
                        body = None
                    else:
                        logger.error(f"{failure_message}: invalid JSON from {path}")
                        raise TransportError(
                            f"{failure_message}: invalid response body",
                            brand_id=brand_id,
                        ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"{failure_message}: {e!r}")
            raise TransportError(
                f"{failure_message}: {str(e) or type(e).__name__}",
                brand_id=brand_id,
            ) from e

        message = body.get("message") if isinstance(body, dict) else None

        if status >= 500:
            logger.error(f"{failure_message}: HTTP {status} from {path}")
            raise TransportError(
                message or f"{failure_message} (HTTP {status})",
                brand_id=brand_id,
                details={"status": status},
            )
        if status >= 400:
            logger.warning(f"{failure_message}: HTTP {status} from {path}: {message}")
            raise RemoteRejectionError(
                message or f"{failure_message} (HTTP {status})",
                status=status,
                brand_id=brand_id,
            )
        if isinstance(body, dict) and body.get("success") is False:
            logger.warning(f"{failure_message}: rejected by WMS: {message}")
            raise RemoteRejectionError(
                message or failure_message,
                status=status,
                brand_id=brand_id,
            )
        return body

    @staticmethod
    def _unwrap(body: Any) -> Any:
        if isinstance(body, dict) and body.get("data") is not None:
            return body["data"]
        return body

    # Global status

    async def get_withdrawal_global_status(self, brand_id: str | None = None) -> dict[str, Any]:
        body = await self._request(
            "GET",
            "/withdrawals/global-status",
            "Failed to fetch withdrawal global status",
            brand_id=brand_id,
        )
        return self._unwrap(body) or {}

    async def toggle_withdrawal_global_status(
        self,
        reason: str,
        brand_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/withdrawals/toggle-global-status",
            "Failed to toggle withdrawal global status",
            brand_id=brand_id,
            json={"reason": reason},
        ) or {}

    # Thresholds and manual review

    async def get_withdrawal_thresholds(self, brand_id: str | None = None) -> dict[str, Any]:
        body = await self._request(
            "GET",
            "/withdrawals/tresholds",
            "Failed to fetch withdrawal thresholds",
            brand_id=brand_id,
        )
        data = self._unwrap(body)
        if isinstance(data, list):
            return data[0] if data else {}
        return data or {}

    async def update_withdrawal_thresholds(
        self,
        thresholds: dict[str, Any],
        brand_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "PUT",
            "/withdrawals/tresholds",
            "Failed to update withdrawal thresholds",
            brand_id=brand_id,
            json=thresholds,
        ) or {}

    # Per-chain limits

    async def get_withdrawal_limits(
        self,
        chain_id: str | None = None,
        brand_id: str | None = None,
    ) -> dict[str, Any]:
        body = await self._request(
            "GET",
            "/withdrawals/limits",
            "Failed to fetch withdrawal limits",
            brand_id=brand_id,
            params={"chain_id": chain_id} if chain_id else None,
        )
        return self._unwrap(body) or {}

    async def update_withdrawal_limits(
        self,
        chain_id: str,
        max_amount_cents: int,
        min_amount_cents: int,
        brand_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "PUT",
            "/withdrawals/limits",
            f"Failed to update limits for {chain_id}",
            brand_id=brand_id,
            json={
                "chain_id": chain_id,
                "max_amount_cents": max_amount_cents,
                "min_amount_cents": min_amount_cents,
            },
        ) or {}

    async def toggle_withdrawal_limit_validation(
        self,
        enabled: bool,
        brand_id: str | None = None,
    ) -> dict[str, Any]:
        body = await self._request(
            "PUT",
            "/withdrawal-limit-validation/toggle",
            "Failed to toggle withdrawal limit validation",
            brand_id=brand_id,
            json={"enabled": enabled},
        )
        return self._unwrap(body) or {}

    async def get_chain_configs(self, limit: int = 10, offset: int = 0) -> list[dict[str, Any]]:
        body = await self._request(
            "GET",
            "/chain-configs",
            "Failed to fetch chain configs",
            params={"limit": limit, "offset": offset},
        )
        data = self._unwrap(body)
        if isinstance(data, dict):
            data = data.get("chain_configs", [])
        return data if isinstance(data, list) else []

    # Global limits

    async def get_global_withdrawal_limits(self, brand_id: str | None = None) -> dict[str, Any]:
        body = await self._request(
            "GET",
            "/withdrawals/limits/global",
            "Failed to fetch global withdrawal limits",
            brand_id=brand_id,
        )
        return self._unwrap(body) or {}

    async def update_global_withdrawal_limits(
        self,
        min_amount_cents: int,
        max_amount_cents: int,
        enabled: bool,
        brand_id: str | None = None,
    ) -> dict[str, Any]:
        body = await self._request(
            "PUT",
            "/withdrawals/limits/global",
            "Failed to update global withdrawal limits",
            brand_id=brand_id,
            json={
                "min_amount_cents": min_amount_cents,
                "max_amount_cents": max_amount_cents,
                "enabled": enabled,
            },
        )
        return self._unwrap(body) or {}

    # Scalar toggles

    async def get_require_kyc_on_first_withdrawal(
        self, brand_id: str | None = None
    ) -> dict[str, Any]:
        body = await self._request(
            "GET",
            "/require-kyc-on-first-withdrawal",
            "Failed to fetch KYC on first withdrawal setting",
            brand_id=brand_id,
        )
        return self._unwrap(body) or {}

    async def update_require_kyc_on_first_withdrawal(
        self,
        enabled: bool,
        brand_id: str | None = None,
    ) -> dict[str, Any]:
        body = await self._request(
            "PUT",
            "/require-kyc-on-first-withdrawal/toggle",
            "Failed to update KYC on first withdrawal setting",
            brand_id=brand_id,
            json={"enabled": enabled},
        )
        return self._unwrap(body) or {}

    async def get_deposit_margin_percent(self, brand_id: str | None = None) -> dict[str, Any]:
        body = await self._request(
            "GET",
            "/margin/deposit",
            "Failed to fetch deposit margin percent",
            brand_id=brand_id,
        )
        return self._unwrap(body) or {}

    async def update_deposit_margin_percent(
        self,
        percent: float,
        brand_id: str | None = None,
    ) -> dict[str, Any]:
        body = await self._request(
            "PUT",
            "/margin/deposit",
            "Failed to update deposit margin percent",
            brand_id=brand_id,
            json={"percent": percent},
        )
        return self._unwrap(body) or {}

    async def get_withdrawal_margin_percent(self, brand_id: str | None = None) -> dict[str, Any]:
        body = await self._request(
            "GET",
            "/margin/withdrawal",
            "Failed to fetch withdrawal margin percent",
            brand_id=brand_id,
        )
        return self._unwrap(body) or {}

    async def update_withdrawal_margin_percent(
        self,
        percent: float,
        brand_id: str | None = None,
    ) -> dict[str, Any]:
        body = await self._request(
            "PUT",
            "/margin/withdrawal",
            "Failed to update withdrawal margin percent",
            brand_id=brand_id,
            json={"percent": percent},
        )
        return self._unwrap(body) or {}

    async def get_duplicate_account_checks(self, brand_id: str | None = None) -> dict[str, Any]:
        body = await self._request(
            "GET",
            "/duplicate-account-checks",
            "Failed to fetch duplicate account checks",
            brand_id=brand_id,
        )
        return self._unwrap(body) or {}

    async def update_duplicate_account_checks(
        self,
        enabled: bool,
        brand_id: str | None = None,
    ) -> dict[str, Any]:
        body = await self._request(
            "PUT",
            "/duplicate-account-checks",
            "Failed to update duplicate account checks",
            brand_id=brand_id,
            json={"enabled": enabled},
        )
        return self._unwrap(body) or {}
