"""
Inbound webhooks: UpPromote referral approvals store credit, Seal subscription
charges spend it.
"""

import json
from typing import Any

from app.core.config import Settings
from app.core.exceptions import CommissionSyncError, UnauthorizedError, UpstreamError
from app.core.logging import get_logger
from app.core.money import ZERO, to_amount
from app.core.security import body_digest, verify_uppromote_signature
from app.services.idempotency import ProcessedEvents
from app.services.ledger import CreditLedger
from app.services.referrals import parse_referral_approval
from app.services.seal import SealClient
from app.services.shopify import ShopifyClient, discount_code_for

log = get_logger(__name__)


async def handle_referral_approved(
    body: bytes,
    signature: str | None,
    *,
    settings: Settings,
    ledger: CreditLedger,
    seal: SealClient,
    events: ProcessedEvents,
) -> dict[str, Any] | None:
    """
    Process UpPromote `referral.approved`. Returns None for validation pings and
    unparseable bodies (answered with plain OK); only a bad signature raises.
    """
    if not signature and not body:
        log.info("uppromote_validation_ping")
        return None

    if settings.uppromote_webhook_secret:
        if not verify_uppromote_signature(body, signature, settings.uppromote_webhook_secret):
            log.warning("uppromote_signature_invalid", signature_present=bool(signature))
            raise UnauthorizedError("Invalid signature")
    else:
        log.info("uppromote_signature_skipped", reason="no webhook secret configured")

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        log.error("uppromote_payload_unparseable", error=str(e))
        return None
    if not isinstance(payload, dict):
        log.error("uppromote_payload_unparseable", error="not a JSON object")
        return None

    event_key = body_digest("uppromote", body)
    if not events.claim(event_key):
        log.info("uppromote_duplicate_delivery", referral_id=payload.get("id"))
        return {"success": True, "duplicate": True}

    fact = parse_referral_approval(payload)
    outcome = await ledger.store_credit(fact)
    if not outcome.ok:
        log.error("uppromote_credit_not_stored", referral_id=fact.referral_id, reason=outcome.rejected_reason)

    if fact.customer_key:
        try:
            result = await seal.apply_discount_to_customer(fact.customer_key, settings.subscription_discount_code)
        except UpstreamError as e:
            log.error("uppromote_seal_lookup_failed", customer_email=fact.customer_key, error=e.message)
        else:
            log.info(
                "uppromote_seal_discounts_applied",
                customer_email=fact.customer_key,
                referral_id=fact.referral_id,
                subscription_ids=result["subscription_ids"],
                applied_count=len(result["applied"]),
            )
            if result["errors"]:
                log.error("uppromote_seal_discount_errors", customer_email=fact.customer_key, errors=result["errors"])
    else:
        log.info("uppromote_seal_lookup_skipped", referral_id=fact.referral_id, reason="no email")

    return {"success": True, "stored": outcome.ok, "rejected_reason": outcome.rejected_reason}


def extract_subscription(body: Any) -> dict[str, Any]:
    """Seal sends the subscription bare, under `payload`, or under `payload.payload`."""
    if not isinstance(body, dict):
        return {}
    payload = body.get("payload")
    if isinstance(payload, dict):
        inner = payload.get("payload")
        return inner if isinstance(inner, dict) else payload
    return body


async def _discount_code_for_charge(
    settings: Settings,
    shopify: ShopifyClient,
    amount: Any,
    reference: str,
    email: str,
) -> str | None:
    if shopify.is_configured:
        code = discount_code_for(reference)
        if await shopify.discount_code_exists(code):
            # redelivered charge whose code was created on the first attempt
            return code
        return await shopify.create_discount_code(amount, reference, email)
    return settings.subscription_discount_code


async def handle_subscription_charge(
    body: bytes,
    *,
    settings: Settings,
    ledger: CreditLedger,
    seal: SealClient,
    shopify: ShopifyClient,
    events: ProcessedEvents,
) -> dict[str, Any]:
    """
    Spend the customer's credit on a Seal subscription charge: discount the
    subscription, then debit the ledger (which pushes UpPromote adjustments).
    """
    try:
        subscription = extract_subscription(json.loads(body.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError):
        subscription = {}

    subscription_id = subscription.get("id")
    customer_email = subscription.get("email")
    try:
        total_value = to_amount(subscription.get("total_value") or 0)
    except ValueError:
        total_value = None
    if not subscription_id or not customer_email or total_value is None:
        log.info(
            "seal_subscription_incomplete",
            subscription_id=subscription_id or "missing",
            customer_email=customer_email or "missing",
            total_value="invalid" if total_value is None else str(total_value),
        )
        return {"success": True}

    event_key = body_digest("seal", body)
    if not events.claim(event_key):
        log.info("seal_duplicate_delivery", subscription_id=subscription_id)
        return {"success": True, "duplicate": True}

    try:
        available = ledger.total_credit_for(customer_email)
        log.info(
            "seal_subscription_credit",
            subscription_id=subscription_id,
            customer_email=customer_email,
            total_value=str(total_value),
            available=str(available),
        )
        if available <= ZERO:
            return {"success": True, "message": "no-credit"}

        amount = min(available, total_value)
        if amount <= ZERO:
            return {"success": True, "message": "nothing-to-charge"}

        reference = f"{subscription_id}-{event_key[-8:]}"
        code = await _discount_code_for_charge(settings, shopify, amount, reference, customer_email)
        await seal.apply_discount_code(str(subscription_id), code)
        result = await ledger.consume(customer_email, amount)
    except CommissionSyncError as e:
        # a retry must not re-spend credit that was already debited
        if not e.breakdown:
            events.release(event_key)
        raise
    except UpstreamError:
        events.release(event_key)
        raise

    log.info(
        "seal_subscription_processed",
        subscription_id=subscription_id,
        customer_email=customer_email,
        used=str(result.used),
        available_before=str(available),
        breakdown=[line.model_dump(mode="json") for line in result.breakdown],
    )
    return {
        "success": True,
        "usedCredit": result.used,
        "availableBefore": available,
        "breakdown": [line.model_dump() for line in result.breakdown],
    }
