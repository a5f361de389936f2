"""Shopify Admin GraphQL: one-off fixed-amount discount codes for affiliate credit."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import httpx

from app.core.config import Settings
from app.core.exceptions import DiscountError
from app.core.http import error_details, response_body
from app.core.logging import get_logger
from app.core.money import ZERO, format_amount, to_amount

log = get_logger(__name__)

SHOPIFY_TIMEOUT_SECONDS = 15.0

DISCOUNT_CREATE_MUTATION = """
mutation discountCodeBasicCreate($basicCodeDiscount: DiscountCodeBasicInput!) {
  discountCodeBasicCreate(basicCodeDiscount: $basicCodeDiscount) {
    codeDiscountNode {
      id
      codeDiscount {
        __typename
      }
    }
    userErrors {
      field
      code
      message
    }
  }
}
"""

DISCOUNT_SEARCH_QUERY = """
query codeDiscountNodeSearch($query: String!) {
  codeDiscountNodes(first: 1, query: $query) {
    edges {
      node {
        id
      }
    }
  }
}
"""


def discount_code_for(reference: str) -> str:
    return f"AFFILIATE-{reference}"


def build_discount_input(amount: Decimal, reference: str, starts_at: datetime) -> dict[str, Any]:
    """DiscountCodeBasicInput: single use, order level, subscriptions and one-time purchases."""
    return {
        "title": f"Affiliate Credit - {reference}",
        "code": discount_code_for(reference),
        "startsAt": starts_at.isoformat(),
        "usageLimit": 1,
        "appliesOncePerCustomer": True,
        "customerSelection": {"all": True},
        "customerGets": {
            "items": {"all": True},
            "appliesOnSubscription": True,
            "appliesOnOneTimePurchase": True,
            "value": {
                "discountAmount": {
                    "amount": format_amount(amount),
                    "appliesOnEachItem": False,
                },
            },
        },
        "combinesWith": {
            "orderDiscounts": True,
            "productDiscounts": True,
            "shippingDiscounts": True,
        },
    }


class ShopifyClient:
    def __init__(
        self,
        store: str,
        access_token: str,
        api_version: str = "2024-01",
        timeout: float = SHOPIFY_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.is_configured = bool(store and access_token)
        self._client: httpx.AsyncClient | None = None
        if self.is_configured:
            self._client = httpx.AsyncClient(
                base_url=f"https://{store}/admin/api/{api_version}",
                headers={
                    "X-Shopify-Access-Token": access_token,
                    "Content-Type": "application/json",
                },
                timeout=timeout,
                transport=transport,
            )
            log.info("shopify_configured", store=store, api_version=api_version)
        else:
            log.info("shopify_not_configured", store=store or "missing", token_set=bool(access_token))

    @classmethod
    def from_settings(cls, settings: Settings) -> "ShopifyClient":
        return cls(
            settings.shopify_store,
            settings.shopify_admin_api_token,
            api_version=settings.shopify_api_version,
        )

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        if self._client is None:
            raise DiscountError("Shopify GraphQL not configured")
        res = await self._client.post("/graphql.json", json={"query": query, "variables": variables})
        res.raise_for_status()
        data = response_body(res)
        if not isinstance(data, dict):
            details = {"status": res.status_code, "data": str(data)[:500]}
            log.error("shopify_graphql_unexpected_body", **details)
            raise DiscountError("Shopify GraphQL returned a non-JSON body", details=details)
        return data

    async def create_discount_code(self, amount: Any, reference: str, customer_email: str | None = None) -> str:
        """Create AFFILIATE-<reference> worth `amount` off; return the code."""
        try:
            value = to_amount(amount)
        except ValueError:
            value = ZERO
        if value <= ZERO:
            raise DiscountError(f"Invalid commission amount for discount: {amount}")

        code = discount_code_for(reference)
        variables = {"basicCodeDiscount": build_discount_input(value, reference, datetime.now(timezone.utc))}
        log.info(
            "shopify_discount_create",
            discount_code=code,
            amount=format_amount(value),
            reference=reference,
            customer_email=customer_email,
        )
        try:
            data = await self._graphql(DISCOUNT_CREATE_MUTATION, variables)
        except httpx.HTTPError as e:
            details = {"discount_code": code, "reference": reference, **error_details(e)}
            log.error("shopify_discount_create_failed", **details)
            raise DiscountError("Shopify discount creation failed", details=details) from e

        payload = (data.get("data") or {}).get("discountCodeBasicCreate") or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            log.error("shopify_discount_user_errors", discount_code=code, user_errors=user_errors)
            message = "; ".join(str(e.get("message")) for e in user_errors)
            raise DiscountError(
                f"Shopify discountCodeBasicCreate failed: {message}",
                details={"discount_code": code, "user_errors": user_errors},
            )

        node_id = (payload.get("codeDiscountNode") or {}).get("id")
        log.info("shopify_discount_created", discount_code=code, node_id=node_id, reference=reference)
        return code

    async def discount_code_exists(self, code: str) -> bool:
        if self._client is None:
            return False
        try:
            data = await self._graphql(DISCOUNT_SEARCH_QUERY, {"query": f"code:{code}"})
        except httpx.HTTPError as e:
            log.warning("shopify_discount_lookup_failed", discount_code=code, **error_details(e))
            return False
        except DiscountError as e:
            log.warning("shopify_discount_lookup_failed", discount_code=code, message=e.message)
            return False
        edges = ((data.get("data") or {}).get("codeDiscountNodes") or {}).get("edges") or []
        return len(edges) > 0

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
