"""
Referral credit ledger: per-referral remaining commission, per-customer totals,
and the FIFO allocator that debits credit and pushes matching commission
adjustments to UpPromote.
"""

import asyncio
from contextlib import AsyncExitStack
from decimal import Decimal
from typing import Any, Protocol

from app.core.exceptions import CommissionSyncError
from app.core.logging import get_logger
from app.core.money import ZERO, to_amount
from app.models.consumption import ConsumptionLine, ConsumptionResult, StoreOutcome
from app.models.credit_record import CreditRecord
from app.models.referral_approval import ReferralApproval

log = get_logger(__name__)


class CommissionSyncAdapter(Protocol):
    """Pushes a signed commission adjustment for one referral. Raises on failure."""

    async def apply_adjustment(self, referral_id: str, signed_amount: Decimal) -> Any:
        ...


def normalize_customer_key(value: str | None) -> str | None:
    if value is None:
        return None
    key = str(value).strip().lower()
    return key or None


class CreditRecordStore:
    """referral_id -> CreditRecord."""

    def __init__(self) -> None:
        self._records: dict[str, CreditRecord] = {}

    def get(self, referral_id: str) -> CreditRecord | None:
        return self._records.get(referral_id)

    def put(self, record: CreditRecord) -> None:
        self._records[record.referral_id] = record

    def __len__(self) -> int:
        return len(self._records)


class CustomerIndex:
    """customer_key -> referral ids in approval order (dict used as an ordered set)."""

    def __init__(self) -> None:
        self._index: dict[str, dict[str, None]] = {}

    def add(self, customer_key: str, referral_id: str) -> bool:
        """Return True if the customer entry was created."""
        created = customer_key not in self._index
        self._index.setdefault(customer_key, {})[referral_id] = None
        return created

    def discard(self, customer_key: str, referral_id: str) -> None:
        ids = self._index.get(customer_key)
        if ids is None:
            return
        ids.pop(referral_id, None)
        if not ids:
            del self._index[customer_key]

    def referral_ids(self, customer_key: str) -> list[str]:
        return list(self._index.get(customer_key, ()))


class CreditLedger:
    """
    In-memory credit ledger. One instance per process (or per test).

    Every mutation of a customer's records happens under that customer's
    asyncio.Lock, including the adjustment call made while consuming, so two
    charges for the same customer can never spend the same credit.

    Locks are created on first use and kept for the ledger's lifetime, like
    the records themselves; nothing is ever evicted.
    """

    def __init__(
        self,
        sync_adapter: CommissionSyncAdapter,
        sync_timeout: float | None = 10.0,
    ) -> None:
        self._sync = sync_adapter
        self._sync_timeout = sync_timeout
        self._store = CreditRecordStore()
        self._index = CustomerIndex()
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, customer_key: str) -> asyncio.Lock:
        return self._locks.setdefault(customer_key, asyncio.Lock())

    @staticmethod
    def _validate(fact: ReferralApproval) -> tuple[str, str, Decimal]:
        referral_id = str(fact.referral_id).strip() if fact.referral_id is not None else ""
        if not referral_id:
            raise ValueError("missing referral id")
        try:
            commission = to_amount(fact.commission if fact.commission is not None else "0")
        except ValueError as e:
            raise ValueError(f"invalid commission: {fact.commission!r}") from e
        if commission < ZERO:
            raise ValueError(f"negative commission: {commission}")
        customer_key = normalize_customer_key(fact.customer_key)
        if not customer_key:
            raise ValueError("no usable customer email")
        return referral_id, customer_key, commission

    async def store_credit(self, fact: ReferralApproval) -> StoreOutcome:
        """
        Upsert credit for an approved referral. Re-approval replaces the remaining
        commission (last write wins). Invalid facts are rejected without raising.
        """
        try:
            referral_id, customer_key, commission = self._validate(fact)
        except ValueError as e:
            log.warning(
                "credit_rejected",
                referral_id=fact.referral_id,
                commission=fact.commission,
                reason=str(e),
            )
            return StoreOutcome(
                referral_id=str(fact.referral_id) if fact.referral_id is not None else None,
                customer_key=fact.customer_key,
                rejected_reason=str(e),
            )

        while True:
            seen = self._store.get(referral_id)
            seen_owner = seen.customer_key if seen else None
            keys = sorted({customer_key, seen_owner} - {None})
            async with AsyncExitStack() as stack:
                for key in keys:
                    await stack.enter_async_context(self._lock_for(key))
                current = self._store.get(referral_id)
                if (current.customer_key if current else None) != seen_owner:
                    # moved to another customer while we waited; lock the new owner
                    continue
                return self._upsert(referral_id, customer_key, commission, fact, current)

    def _upsert(
        self,
        referral_id: str,
        customer_key: str,
        commission: Decimal,
        fact: ReferralApproval,
        current: CreditRecord | None,
    ) -> StoreOutcome:
        if current is not None and current.customer_key != customer_key:
            self._index.discard(current.customer_key, referral_id)
            log.info(
                "credit_reassigned",
                referral_id=referral_id,
                from_customer=current.customer_key,
                to_customer=customer_key,
            )
        record = CreditRecord(
            referral_id=referral_id,
            customer_key=customer_key,
            remaining_commission=commission,
            affiliate_id=fact.affiliate_id,
            affiliate_email=fact.affiliate_email,
        )
        if current is not None:
            record.created_at = current.created_at
        elif fact.created_at is not None:
            record.created_at = fact.created_at
        self._store.put(record)
        if self._index.add(customer_key, referral_id):
            log.info("customer_entry_created", customer_key=customer_key)
        log.info(
            "credit_stored",
            referral_id=referral_id,
            customer_key=customer_key,
            customer_key_source=fact.customer_key_source,
            remaining_commission=str(commission),
            replaced=current is not None,
            referrals_for_customer=len(self._index.referral_ids(customer_key)),
            records_total=len(self._store),
        )
        return StoreOutcome(
            referral_id=referral_id,
            customer_key=customer_key,
            remaining_commission=commission,
        )

    def total_credit_for(self, customer_key: str) -> Decimal:
        """Sum of remaining commission over the customer's referrals (0 if unknown)."""
        key = normalize_customer_key(customer_key)
        if not key:
            return ZERO
        total = ZERO
        for referral_id in self._index.referral_ids(key):
            record = self._store.get(referral_id)
            if record is not None and record.remaining_commission > ZERO:
                total += record.remaining_commission
        log.debug("customer_credit_total", customer_key=key, total=str(total))
        return total

    async def consume(self, customer_key: str, amount_requested: Any) -> ConsumptionResult:
        """
        Debit up to `amount_requested`, oldest referral first, pushing a negative
        adjustment per referral debited.

        Raises CommissionSyncError if an adjustment fails or times out: that
        referral is restored, earlier referrals in this call stay debited and are
        reported in the error's breakdown.
        """
        key = normalize_customer_key(customer_key)
        requested = to_amount(amount_requested)
        if not key or requested <= ZERO:
            return ConsumptionResult()

        async with self._lock_for(key):
            referral_ids = self._index.referral_ids(key)
            if not referral_ids:
                log.info("consume_no_referrals", customer_key=key)
                return ConsumptionResult()

            still_needed = requested
            breakdown: list[ConsumptionLine] = []
            for referral_id in referral_ids:
                if still_needed <= ZERO:
                    break
                record = self._store.get(referral_id)
                if record is None or record.remaining_commission <= ZERO:
                    continue

                use = min(record.remaining_commission, still_needed)
                record.remaining_commission -= use
                try:
                    await self._push_adjustment(referral_id, -use)
                except asyncio.CancelledError:
                    record.remaining_commission += use
                    raise
                except Exception as e:
                    record.remaining_commission += use
                    used = requested - still_needed
                    reason = self._failure_reason(e)
                    log.error(
                        "commission_sync_failed",
                        customer_key=key,
                        referral_id=referral_id,
                        rolled_back=str(use),
                        used=str(used),
                        reason=reason,
                    )
                    raise CommissionSyncError(
                        customer_key=key,
                        referral_id=referral_id,
                        rolled_back=use,
                        used=used,
                        breakdown=[line.model_dump() for line in breakdown],
                        reason=reason,
                    ) from e

                log.info("commission_adjusted", referral_id=referral_id, used=str(use))
                breakdown.append(ConsumptionLine(referral_id=referral_id, used=use))
                still_needed -= use

            result = ConsumptionResult(used=requested - still_needed, breakdown=breakdown)
            log.info(
                "credit_consumed",
                customer_key=key,
                requested=str(requested),
                used=str(result.used),
                referrals=len(breakdown),
            )
            return result

    async def _push_adjustment(self, referral_id: str, signed_amount: Decimal) -> None:
        call = self._sync.apply_adjustment(referral_id, signed_amount)
        if self._sync_timeout is None:
            await call
        else:
            await asyncio.wait_for(call, timeout=self._sync_timeout)

    def _failure_reason(self, exc: Exception) -> str:
        if isinstance(exc, asyncio.TimeoutError):
            return f"timed out after {self._sync_timeout}s"
        return str(exc) or exc.__class__.__name__

    def get_record(self, referral_id: str) -> CreditRecord | None:
        record = self._store.get(str(referral_id))
        return record.model_copy() if record is not None else None

    def records_for(self, customer_key: str) -> list[CreditRecord]:
        key = normalize_customer_key(customer_key)
        if not key:
            return []
        records = (self._store.get(rid) for rid in self._index.referral_ids(key))
        return [r.model_copy() for r in records if r is not None]
