from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import PlainTextResponse

from app.core.config import Settings
from app.core.logging import get_logger
from app.deps import get_app_settings, get_events, get_ledger, get_seal
from app.services import webhooks as webhooks_service
from app.services.idempotency import ProcessedEvents
from app.services.ledger import CreditLedger
from app.services.seal import SealClient

router = APIRouter()
log = get_logger(__name__)


@router.get("/referral-approved", response_class=PlainTextResponse)
async def referral_approved_ping():
    """UpPromote endpoint check (GET / HEAD)."""
    log.info("uppromote_ping")
    return "OK"


@router.post("/referral-approved")
async def referral_approved(
    request: Request,
    x_uppromote_signature: str | None = Header(default=None, alias="X-UpPromote-Signature"),
    settings: Settings = Depends(get_app_settings),
    ledger: CreditLedger = Depends(get_ledger),
    seal: SealClient = Depends(get_seal),
    events: ProcessedEvents = Depends(get_events),
):
    """referral.approved: verify HMAC over the raw body, store credit, discount the customer's subscriptions."""
    body = await request.body()
    result = await webhooks_service.handle_referral_approved(
        body,
        x_uppromote_signature,
        settings=settings,
        ledger=ledger,
        seal=seal,
        events=events,
    )
    if result is None:
        return PlainTextResponse("OK")
    return result
