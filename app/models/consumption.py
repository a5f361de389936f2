from decimal import Decimal

from pydantic import BaseModel, Field

from app.core.money import ZERO


class ConsumptionLine(BaseModel):
    referral_id: str
    used: Decimal


class ConsumptionResult(BaseModel):
    used: Decimal = ZERO
    breakdown: list[ConsumptionLine] = Field(default_factory=list)


class StoreOutcome(BaseModel):
    """Result of storing a referral approval; a rejection leaves the ledger untouched."""
    referral_id: str | None = None
    customer_key: str | None = None
    remaining_commission: Decimal | None = None
    rejected_reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.rejected_reason is None
