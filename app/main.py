import time
import uuid

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from app.core.logging import bind_request_id, configure_logging, get_logger
from app.routers import credits, seal, uppromote
from app.services.idempotency import ProcessedEvents
from app.services.ledger import CreditLedger
from app.services.seal import SealClient
from app.services.shopify import ShopifyClient
from app.services.uppromote import UpPromoteClient

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="Affiliate Credit Bridge",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(uppromote.router, prefix="/webhooks/uppromote", tags=["uppromote"])
app.include_router(seal.router, prefix="/webhooks/seal", tags=["seal"])
app.include_router(credits.router, prefix="/credits", tags=["credits"])


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    uppromote_client = UpPromoteClient.from_settings(settings)
    app.state.uppromote = uppromote_client
    app.state.seal = SealClient.from_settings(settings)
    app.state.shopify = ShopifyClient.from_settings(settings)
    app.state.ledger = CreditLedger(uppromote_client, sync_timeout=settings.commission_sync_timeout_seconds)
    app.state.events = ProcessedEvents(max_entries=settings.webhook_dedup_max_entries)
    log.info("startup", env=settings.env, port=settings.port, configured=settings.secrets_summary())


@app.on_event("shutdown")
async def shutdown():
    for name in ("uppromote", "seal", "shopify"):
        client = getattr(app.state, name, None)
        if client is not None:
            await client.aclose()
    log.info("shutdown")


@app.get("/")
async def root():
    return {"ok": True, "message": "Affiliate credit bridge running"}


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
