"""
Small utilities:
- PII redaction (basic regex masking) for console logs
"""

import json
import re
from typing import Any

# Very simple PII masking (emails, phones).
EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(r"\+?\d[\d\-\s().]{7,}\d")


def maybe_redact_pii(text: str) -> str:
    if not text:
        return text
    text = EMAIL_RE.sub("[REDACTED_EMAIL]", text)
    text = PHONE_RE.sub("[REDACTED_PHONE]", text)
    return text


def payload_preview(payload: Any, redact: bool = True, max_chars: int = 2000) -> str:
    """Compact JSON of an inbound payload for log lines."""
    try:
        text = json.dumps(payload, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        text = repr(payload)
    if redact:
        text = maybe_redact_pii(text)
    return text[:max_chars]
