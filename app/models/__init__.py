from app.models.consumption import ConsumptionLine, ConsumptionResult, StoreOutcome
from app.models.credit_record import CreditRecord
from app.models.referral_approval import ReferralApproval

__all__ = [
    "CreditRecord",
    "ReferralApproval",
    "ConsumptionLine",
    "ConsumptionResult",
    "StoreOutcome",
]
