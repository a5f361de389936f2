from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ReferralApproval(BaseModel):
    """Normalized `referral.approved` fact; `commission` is validated by the ledger."""
    referral_id: str | None = None
    customer_key: str | None = None
    customer_key_source: str = "none"  # customer_email | customer.email | email | affiliate.email
    commission: Any = None
    affiliate_id: str | None = None
    affiliate_email: str | None = None
    created_at: datetime | None = None
