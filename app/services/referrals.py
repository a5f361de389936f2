"""UpPromote referral.approved payloads -> ReferralApproval facts."""

from datetime import datetime
from typing import Any

from app.core.logging import get_logger
from app.models.referral_approval import ReferralApproval

log = get_logger(__name__)


def _nested(payload: dict[str, Any], key: str, field: str) -> Any:
    obj = payload.get(key)
    return obj.get(field) if isinstance(obj, dict) else None


def extract_customer_email(payload: dict[str, Any]) -> tuple[str | None, str]:
    """
    Return (email, source). Customer fields win; the affiliate email is the
    fallback when UpPromote sends no customer identity at all.
    """
    candidates = (
        ("customer_email", payload.get("customer_email")),
        ("customer.email", _nested(payload, "customer", "email")),
        ("email", payload.get("email")),
        ("affiliate.email", _nested(payload, "affiliate", "email")),
    )
    for source, value in candidates:
        if isinstance(value, str) and value.strip():
            return value.strip(), source
    return None, "none"


def _parse_created_at(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_referral_approval(payload: dict[str, Any]) -> ReferralApproval:
    email, source = extract_customer_email(payload)
    referral_id = payload.get("id")
    affiliate_id = _nested(payload, "affiliate", "id")
    commission = payload.get("commission") or payload.get("commission_amount") or "0"
    if email:
        log.info("referral_email_extracted", referral_id=referral_id, source=source)
    else:
        log.info("referral_email_missing", referral_id=referral_id, payload_keys=sorted(payload))
    return ReferralApproval(
        referral_id=str(referral_id) if referral_id not in (None, "") else None,
        customer_key=email,
        customer_key_source=source,
        commission=commission,
        affiliate_id=str(affiliate_id) if affiliate_id is not None else None,
        affiliate_email=_nested(payload, "affiliate", "email"),
        created_at=_parse_created_at(payload.get("created_at")),
    )
