from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, Field


class CreditRecord(BaseModel):
    """Remaining credit for one approved referral; mutated only by the ledger."""
    referral_id: str
    customer_key: str  # customer email, or affiliate email as fallback
    remaining_commission: Decimal = Field(ge=0)
    affiliate_id: str | None = None
    affiliate_email: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
