"""Seal Subscriptions API: subscription lookup and discount code application."""

from typing import Any

import httpx

from app.core.config import Settings
from app.core.exceptions import UpstreamError
from app.core.http import error_details, response_body
from app.core.logging import get_logger

log = get_logger(__name__)

SEAL_TIMEOUT_SECONDS = 20.0


def _subscriptions(response: Any) -> list[dict[str, Any]]:
    if not isinstance(response, dict):
        return []
    payload = response.get("payload")
    if isinstance(payload, dict):
        subs = payload.get("subscriptions")
    elif isinstance(payload, list):
        subs = payload
    else:
        subs = response.get("subscriptions")
    return [s for s in subs or [] if isinstance(s, dict)]


def active_subscription_ids(response: Any) -> list[str]:
    """Ids of ACTIVE subscriptions in a /subscriptions response."""
    return [
        str(s["id"])
        for s in _subscriptions(response)
        if s.get("id") is not None and str(s.get("status", "")).upper() == "ACTIVE"
    ]


class SealClient:
    def __init__(
        self,
        api_token: str,
        base_url: str = "https://app.sealsubscriptions.com/shopify/merchant/api",
        timeout: float = SEAL_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "X-Seal-Token": api_token,
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SealClient":
        return cls(settings.seal_api_token, base_url=settings.seal_base_url)

    async def _request(self, method: str, path: str, event: str, **kwargs: Any) -> Any:
        try:
            res = await self._client.request(method, path, **kwargs)
            res.raise_for_status()
        except httpx.HTTPError as e:
            details = {"path": path, **error_details(e)}
            log.error(event, **details)
            raise UpstreamError("Seal request failed", details=details) from e
        return response_body(res)

    async def list_subscriptions(self, email: str) -> Any:
        """GET /subscriptions?query=<email>"""
        log.info("seal_list_subscriptions", email=email)
        return await self._request(
            "GET", "/subscriptions", "seal_list_subscriptions_failed", params={"query": email}
        )

    async def apply_discount_code(self, subscription_id: str, discount_code: str | None) -> Any:
        """PUT /subscription-discount-code. The code must exist in Shopify and allow subscriptions."""
        if not discount_code:
            log.info("seal_discount_skipped", subscription_id=subscription_id, reason="no discount code")
            return None
        body = {
            "subscription_id": subscription_id,
            "action": "apply",
            "discount_code": discount_code,
        }
        log.info("seal_apply_discount", subscription_id=subscription_id, discount_code=discount_code)
        return await self._request("PUT", "/subscription-discount-code", "seal_apply_discount_failed", json=body)

    async def apply_discount_to_customer(self, email: str, discount_code: str | None) -> dict[str, Any]:
        """
        Apply `discount_code` to every active subscription of `email`.
        Per-subscription failures are collected, not raised.
        """
        response = await self.list_subscriptions(email)
        subscription_ids = active_subscription_ids(response)
        applied: list[str] = []
        errors: list[dict[str, Any]] = []
        for subscription_id in subscription_ids:
            try:
                await self.apply_discount_code(subscription_id, discount_code)
                applied.append(subscription_id)
            except UpstreamError as e:
                errors.append({"subscription_id": subscription_id, "error": e.message, **e.details})
        return {
            "success": not errors,
            "subscription_ids": subscription_ids,
            "applied": applied,
            "errors": errors,
        }

    async def aclose(self) -> None:
        await self._client.aclose()
