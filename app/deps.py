"""Shared FastAPI dependencies: process-wide ledger and partner clients live on app.state."""

from fastapi import Depends, Query, Request

from app.core.config import Settings, get_settings
from app.core.security import require_shared_token
from app.services.idempotency import ProcessedEvents
from app.services.ledger import CreditLedger
from app.services.seal import SealClient
from app.services.shopify import ShopifyClient


def get_app_settings() -> Settings:
    return get_settings()


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_seal(request: Request) -> SealClient:
    return request.app.state.seal


def get_shopify(request: Request) -> ShopifyClient:
    return request.app.state.shopify


def get_events(request: Request) -> ProcessedEvents:
    return request.app.state.events


async def require_token(
    token: str | None = Query(default=None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Dependency: `?token=` must match WEBHOOK_SHARED_SECRET (skipped when unset)."""
    require_shared_token(token, settings.webhook_shared_secret)
