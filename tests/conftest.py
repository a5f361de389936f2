import asyncio
import hashlib
import hmac
import os
from decimal import Decimal
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("UPPROMOTE_API_KEY", "test-uppromote-key")
os.environ.setdefault("SEAL_API_TOKEN", "test-seal-token")

from app.core.config import Settings  # noqa: E402
from app.models.referral_approval import ReferralApproval  # noqa: E402
from app.services.idempotency import ProcessedEvents  # noqa: E402
from app.services.ledger import CreditLedger  # noqa: E402

UPPROMOTE_SECRET = "test-uppromote-webhook-secret"
SHARED_SECRET = "test-shared-secret"


class RecordingSync:
    """Commission sync adapter double: records adjustments, fails for chosen referrals."""

    def __init__(self, fail_on: tuple[str, ...] = (), delay: float = 0.0) -> None:
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls: list[tuple[str, Decimal]] = []
        self.attempts: list[str] = []

    async def apply_adjustment(self, referral_id: str, signed_amount: Decimal) -> dict:
        self.attempts.append(referral_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if referral_id in self.fail_on:
            raise RuntimeError("uppromote unavailable")
        self.calls.append((referral_id, signed_amount))
        return {"success": True}


class FakeSeal:
    def __init__(self) -> None:
        self.discounts: list[tuple[str, str | None]] = []
        self.customer_lookups: list[tuple[str, str | None]] = []

    async def apply_discount_code(self, subscription_id: str, discount_code: str | None) -> Any:
        self.discounts.append((subscription_id, discount_code))
        return {"success": True}

    async def apply_discount_to_customer(self, email: str, discount_code: str | None) -> dict[str, Any]:
        self.customer_lookups.append((email, discount_code))
        return {"success": True, "subscription_ids": ["9001"], "applied": ["9001"], "errors": []}


class FakeShopify:
    is_configured = False


def approval(referral_id: str | None, email: str | None, commission: Any) -> ReferralApproval:
    return ReferralApproval(
        referral_id=referral_id,
        customer_key=email,
        customer_key_source="customer_email",
        commission=commission,
    )


def sign(body: bytes, secret: str = UPPROMOTE_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def sync() -> RecordingSync:
    return RecordingSync()


@pytest.fixture
def ledger(sync: RecordingSync) -> CreditLedger:
    return CreditLedger(sync, sync_timeout=1.0)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        UPPROMOTE_WEBHOOK_SECRET=UPPROMOTE_SECRET,
        WEBHOOK_SHARED_SECRET=SHARED_SECRET,
        SUBSCRIPTION_DISCOUNT_CODE="AFFCREDIT",
    )


@pytest.fixture
def seal() -> FakeSeal:
    return FakeSeal()


@pytest.fixture
def events() -> ProcessedEvents:
    return ProcessedEvents(max_entries=100)


@pytest_asyncio.fixture
async def client(settings, ledger, seal, events) -> AsyncGenerator[AsyncClient, None]:
    from app import deps
    from app.main import app
    app.dependency_overrides.update({
        deps.get_app_settings: lambda: settings,
        deps.get_ledger: lambda: ledger,
        deps.get_seal: lambda: seal,
        deps.get_shopify: lambda: FakeShopify(),
        deps.get_events: lambda: events,
    })
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
