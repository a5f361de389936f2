from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    port: int = Field(default=3000, alias="PORT")

    # UpPromote (referral platform)
    uppromote_api_key: str = Field(default="", alias="UPPROMOTE_API_KEY")
    uppromote_webhook_secret: str = Field(default="", alias="UPPROMOTE_WEBHOOK_SECRET")
    uppromote_base_url: str = Field(
        default="https://aff-api.uppromote.com/api/v2",
        alias="UPPROMOTE_BASE_URL",
    )

    # Seal Subscriptions (billing platform)
    seal_api_token: str = Field(default="", alias="SEAL_API_TOKEN")
    seal_base_url: str = Field(
        default="https://app.sealsubscriptions.com/shopify/merchant/api",
        alias="SEAL_BASE_URL",
    )
    webhook_shared_secret: str = Field(default="", alias="WEBHOOK_SHARED_SECRET")
    subscription_discount_code: str | None = Field(default=None, alias="SUBSCRIPTION_DISCOUNT_CODE")

    # Shopify Admin API (dynamic discount codes)
    shopify_store: str = Field(default="", alias="SHOPIFY_STORE")
    shopify_admin_api_token: str = Field(default="", alias="SHOPIFY_ADMIN_API_TOKEN")
    shopify_api_version: str = Field(default="2024-01", alias="SHOPIFY_API_VERSION")

    # Ledger
    commission_sync_timeout_seconds: float = Field(default=10.0, alias="COMMISSION_SYNC_TIMEOUT_SECONDS")
    webhook_dedup_max_entries: int = Field(default=10_000, alias="WEBHOOK_DEDUP_MAX_ENTRIES")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def shopify_configured(self) -> bool:
        return bool(self.shopify_store and self.shopify_admin_api_token)

    def secrets_summary(self) -> dict[str, bool]:
        """Which credentials are present; never the values themselves."""
        return {
            "uppromote_api_key": bool(self.uppromote_api_key),
            "uppromote_webhook_secret": bool(self.uppromote_webhook_secret),
            "seal_api_token": bool(self.seal_api_token),
            "webhook_shared_secret": bool(self.webhook_shared_secret),
            "shopify": self.shopify_configured,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
