from fastapi import APIRouter, Depends, Request

from app.core.config import Settings
from app.deps import get_app_settings, get_events, get_ledger, get_seal, get_shopify, require_token
from app.services import webhooks as webhooks_service
from app.services.idempotency import ProcessedEvents
from app.services.ledger import CreditLedger
from app.services.seal import SealClient
from app.services.shopify import ShopifyClient

router = APIRouter()


@router.post("/subscription", dependencies=[Depends(require_token)])
async def subscription_webhook(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    ledger: CreditLedger = Depends(get_ledger),
    seal: SealClient = Depends(get_seal),
    shopify: ShopifyClient = Depends(get_shopify),
    events: ProcessedEvents = Depends(get_events),
):
    """Seal subscription charge: spend available referral credit on it."""
    body = await request.body()
    return await webhooks_service.handle_subscription_charge(
        body,
        settings=settings,
        ledger=ledger,
        seal=seal,
        shopify=shopify,
        events=events,
    )
