from typing import Any

import httpx


def error_details(exc: httpx.HTTPError) -> dict[str, Any]:
    """Loggable summary of an httpx failure (status and body when there was a response)."""
    details: dict[str, Any] = {"message": str(exc) or exc.__class__.__name__}
    if isinstance(exc, httpx.HTTPStatusError):
        details["status"] = exc.response.status_code
        try:
            details["data"] = exc.response.json()
        except ValueError:
            details["data"] = exc.response.text[:500]
    return details


def response_body(res: httpx.Response) -> Any:
    """Decoded JSON body of a successful response, raw text if it is not JSON, None if empty."""
    if not res.content:
        return None
    try:
        return res.json()
    except ValueError:
        return res.text
