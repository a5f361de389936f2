import hashlib
import hmac

from app.core.exceptions import UnauthorizedError


def verify_uppromote_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """HMAC-SHA256 (hex) over the raw body, as sent in X-UpPromote-Signature."""
    if not signature:
        return False
    expected = hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature.strip())


def verify_shared_token(token: str | None, secret: str) -> bool:
    if not token:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


def require_shared_token(token: str | None, secret: str) -> None:
    """No-op when no secret is configured (local development)."""
    if not secret:
        return
    if not verify_shared_token(token, secret):
        raise UnauthorizedError("Invalid or missing token")


def body_digest(source: str, payload: bytes) -> str:
    """Stable idempotency key for an inbound webhook delivery."""
    return f"{source}:{hashlib.sha256(payload).hexdigest()}"
