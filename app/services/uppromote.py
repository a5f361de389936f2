"""UpPromote API: referral commission adjustments."""

from decimal import Decimal
from typing import Any

import httpx

from app.core.config import Settings
from app.core.exceptions import UpstreamError
from app.core.http import error_details, response_body
from app.core.logging import get_logger

log = get_logger(__name__)

UPPROMOTE_TIMEOUT_SECONDS = 20.0


class UpPromoteClient:
    """Implements the commission sync adapter used by CreditLedger."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://aff-api.uppromote.com/api/v2",
        timeout: float = UPPROMOTE_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": api_key,
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "UpPromoteClient":
        return cls(settings.uppromote_api_key, base_url=settings.uppromote_base_url)

    async def add_referral_adjustment(self, referral_id: str, adjustment: Decimal) -> Any:
        """POST /referral/{id}/adjustment; negative adjustment deducts commission."""
        path = f"/referral/{referral_id}/adjustment"
        log.info("uppromote_adjustment_start", referral_id=referral_id, adjustment=str(adjustment))
        try:
            res = await self._client.post(path, json={"adjustment": float(adjustment)})
            res.raise_for_status()
        except httpx.HTTPError as e:
            details = {"referral_id": referral_id, "adjustment": str(adjustment), **error_details(e)}
            log.error("uppromote_adjustment_failed", **details)
            raise UpstreamError("UpPromote adjustment failed", details=details) from e
        log.info(
            "uppromote_adjustment_done",
            referral_id=referral_id,
            adjustment=str(adjustment),
            status=res.status_code,
        )
        return response_body(res)

    async def apply_adjustment(self, referral_id: str, signed_amount: Decimal) -> Any:
        return await self.add_referral_adjustment(referral_id, signed_amount)

    async def aclose(self) -> None:
        await self._client.aclose()
