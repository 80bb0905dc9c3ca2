"""
Optional shared-secret check for inbound webhooks.
- If WEBHOOK_SECRET is unset, every request is allowed.
- If set, the secret must arrive in the X-Webhook-Secret header, the `secret`
  query parameter, or a top-level `secret` field in the JSON body.
"""

import hmac
from typing import Any, Dict

from fastapi import HTTPException

SECRET_HEADER = "X-Webhook-Secret"
SECRET_FIELD = "secret"


def pop_body_secret(payload: Dict[str, Any]) -> str | None:
    """Remove the secret from the body so it is never logged or forwarded."""
    value = payload.pop(SECRET_FIELD, None)
    return value if isinstance(value, str) else None


def verify_shared_secret(
    expected: str | None,
    header: str | None = None,
    query: str | None = None,
    body: str | None = None,
) -> None:
    if not expected:
        return
    for candidate in (header, query, body):
        if candidate and hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8")):
            return
    raise HTTPException(status_code=401, detail="Invalid or missing webhook secret")
