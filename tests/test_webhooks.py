"""Webhook routes end to end (ledger, Seal and Shopify replaced by in-process doubles)."""

import json
from decimal import Decimal

import httpx
import pytest

from app import deps
from app.main import app
from app.services.seal import SealClient
from app.services.shopify import ShopifyClient
from conftest import SHARED_SECRET, RecordingSync, approval, sign

pytestmark = pytest.mark.asyncio

REFERRAL = {
    "id": 26008232,
    "commission": "20.00",
    "customer_email": "buyer@example.com",
    "affiliate": {"id": 7, "email": "aff@example.com"},
}


def subscription_body(total_value="30.00", email="buyer@example.com", sub_id=555) -> bytes:
    return json.dumps({"payload": {"payload": {"id": sub_id, "email": email, "total_value": total_value}}}).encode()


async def post_referral(client, body: bytes, signature: str | None = None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["X-UpPromote-Signature"] = signature
    return await client.post("/webhooks/uppromote/referral-approved", content=body, headers=headers)


async def post_subscription(client, body: bytes, token: str | None = SHARED_SECRET):
    params = {"token": token} if token is not None else {}
    return await client.post(
        "/webhooks/seal/subscription",
        content=body,
        params=params,
        headers={"Content-Type": "application/json"},
    )


async def test_referral_get_ping(client):
    r = await client.get("/webhooks/uppromote/referral-approved")
    assert r.status_code == 200
    assert r.text == "OK"


async def test_referral_validation_post(client, ledger):
    r = await post_referral(client, b"")
    assert r.status_code == 200
    assert r.text == "OK"


async def test_referral_bad_signature(client, ledger):
    body = json.dumps(REFERRAL).encode()
    r = await post_referral(client, body, signature="deadbeef")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"
    assert ledger.total_credit_for("buyer@example.com") == Decimal("0")


async def test_referral_stores_credit_and_discounts_subscriptions(client, ledger, seal):
    body = json.dumps(REFERRAL).encode()
    r = await post_referral(client, body, signature=sign(body))
    assert r.status_code == 200
    assert r.json() == {"success": True, "stored": True, "rejected_reason": None}
    assert ledger.total_credit_for("buyer@example.com") == Decimal("20.00")
    assert ledger.get_record("26008232").affiliate_email == "aff@example.com"
    assert seal.customer_lookups == [("buyer@example.com", "AFFCREDIT")]


async def test_referral_duplicate_delivery_is_ignored(client, ledger, seal):
    body = json.dumps(REFERRAL).encode()
    await post_referral(client, body, signature=sign(body))
    await ledger.consume("buyer@example.com", 5)

    r = await post_referral(client, body, signature=sign(body))

    assert r.json() == {"success": True, "duplicate": True}
    assert ledger.total_credit_for("buyer@example.com") == Decimal("15.00")
    assert len(seal.customer_lookups) == 1


async def test_referral_survives_non_json_seal_reply(client, ledger, events):
    maintenance = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    seal = SealClient("seal-token", transport=maintenance)
    app.dependency_overrides[deps.get_seal] = lambda: seal
    body = json.dumps(REFERRAL).encode()

    r = await post_referral(client, body, signature=sign(body))

    assert r.status_code == 200
    assert r.json() == {"success": True, "stored": True, "rejected_reason": None}
    assert ledger.total_credit_for("buyer@example.com") == Decimal("20.00")
    assert len(events) == 1
    await seal.aclose()


async def test_referral_bad_commission_is_acknowledged(client, ledger):
    body = json.dumps({**REFERRAL, "commission": "lots"}).encode()
    r = await post_referral(client, body, signature=sign(body))
    assert r.status_code == 200
    assert r.json()["stored"] is False
    assert ledger.get_record("26008232") is None


async def test_referral_unparseable_body(client):
    body = b"{not json"
    r = await post_referral(client, body, signature=sign(body))
    assert r.status_code == 200
    assert r.text == "OK"


async def test_subscription_requires_token(client):
    r = await post_subscription(client, subscription_body(), token=None)
    assert r.status_code == 401
    r = await post_subscription(client, subscription_body(), token="wrong")
    assert r.status_code == 401


async def test_subscription_incomplete_payload(client, seal):
    r = await post_subscription(client, json.dumps({"payload": {"id": 1}}).encode())
    assert r.status_code == 200
    assert r.json() == {"success": True}
    r = await post_subscription(client, subscription_body(total_value="n/a"))
    assert r.json() == {"success": True}
    assert seal.discounts == []


async def test_subscription_without_credit(client, seal, sync):
    r = await post_subscription(client, subscription_body())
    assert r.json() == {"success": True, "message": "no-credit"}
    assert seal.discounts == []
    assert sync.attempts == []


async def test_subscription_consumes_credit_fifo(client, ledger, seal, sync):
    await ledger.store_credit(approval("r1", "buyer@example.com", "20"))
    await ledger.store_credit(approval("r2", "buyer@example.com", "15"))

    r = await post_subscription(client, subscription_body(total_value="30.00"))

    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["usedCredit"] == 30
    assert data["availableBefore"] == 35
    assert [(b["referral_id"], b["used"]) for b in data["breakdown"]] == [("r1", 20), ("r2", 10)]
    assert seal.discounts == [("555", "AFFCREDIT")]
    assert sync.calls == [("r1", Decimal("-20.00")), ("r2", Decimal("-10.00"))]
    assert ledger.total_credit_for("buyer@example.com") == Decimal("5.00")


async def test_subscription_duplicate_delivery(client, ledger, sync):
    await ledger.store_credit(approval("r1", "buyer@example.com", "50"))
    body = subscription_body(total_value="10")

    await post_subscription(client, body)
    r = await post_subscription(client, body)

    assert r.json() == {"success": True, "duplicate": True}
    assert len(sync.calls) == 1
    assert ledger.total_credit_for("buyer@example.com") == Decimal("40.00")


async def test_subscription_sync_failure_reports_partial_progress(client, ledger, seal, events):
    failing = RecordingSync(fail_on=("r2",))
    ledger._sync = failing
    await ledger.store_credit(approval("r1", "buyer@example.com", "10"))
    await ledger.store_credit(approval("r2", "buyer@example.com", "10"))

    r = await post_subscription(client, subscription_body(total_value="15"))

    assert r.status_code == 502
    error = r.json()["error"]
    assert error["code"] == "COMMISSION_SYNC_FAILED"
    assert error["details"]["referral_id"] == "r2"
    assert error["details"]["breakdown"] == [{"referral_id": "r1", "used": 10}]
    assert ledger.get_record("r1").remaining_commission == Decimal("0.00")
    assert ledger.get_record("r2").remaining_commission == Decimal("10.00")
    # partially debited charge stays claimed so a redelivery cannot spend again
    assert len(events) == 1


async def test_subscription_sync_failure_before_any_debit_allows_retry(client, ledger, events):
    ledger._sync = RecordingSync(fail_on=("r1",))
    await ledger.store_credit(approval("r1", "buyer@example.com", "10"))
    body = subscription_body(total_value="5")

    r = await post_subscription(client, body)
    assert r.status_code == 502
    assert len(events) == 0

    ledger._sync = RecordingSync()
    r = await post_subscription(client, body)
    assert r.status_code == 200
    assert r.json()["usedCredit"] == 5


async def test_subscription_shopify_non_json_reply_allows_retry(client, ledger, seal, sync, events):
    maintenance = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    shopify = ShopifyClient("shop.myshopify.com", "shpat", transport=maintenance)
    app.dependency_overrides[deps.get_shopify] = lambda: shopify
    await ledger.store_credit(approval("r1", "buyer@example.com", "10"))

    r = await post_subscription(client, subscription_body(total_value="5"))

    assert r.status_code == 502
    assert r.json()["error"]["code"] == "DISCOUNT_ERROR"
    assert len(events) == 0
    assert seal.discounts == []
    assert sync.attempts == []
    assert ledger.total_credit_for("buyer@example.com") == Decimal("10.00")
    await shopify.aclose()


async def test_customer_credit_endpoint(client, ledger):
    await ledger.store_credit(approval("r1", "buyer@example.com", "12.5"))
    r = await client.get("/credits/Buyer@Example.com", params={"token": SHARED_SECRET})
    assert r.status_code == 200
    data = r.json()
    assert data["customer_key"] == "buyer@example.com"
    assert data["total"] == 12.5
    assert data["referrals"][0]["referral_id"] == "r1"

    r = await client.get("/credits/buyer@example.com")
    assert r.status_code == 401
