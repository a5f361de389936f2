from fastapi import APIRouter, Depends

from app.deps import get_ledger, require_token
from app.services.ledger import CreditLedger

router = APIRouter()


@router.get("/{customer_key}", dependencies=[Depends(require_token)])
async def customer_credit(customer_key: str, ledger: CreditLedger = Depends(get_ledger)):
    """Available credit for a customer email and the referrals it comes from (oldest first)."""
    records = ledger.records_for(customer_key)
    return {
        "customer_key": customer_key.strip().lower(),
        "total": ledger.total_credit_for(customer_key),
        "referrals": [
            {
                "referral_id": r.referral_id,
                "remaining_commission": r.remaining_commission,
                "affiliate_id": r.affiliate_id,
                "affiliate_email": r.affiliate_email,
                "created_at": r.created_at.isoformat(),
            }
            for r in records
        ],
    }
