"""Mask secrets in text bound for logs and persisted history.

Keeps the surrounding command structure intact so redacted entries are
still useful for debugging.
"""

import logging
import re

REDACTED = "[REDACTED]"

_COOKIES_RE = re.compile(r"""(?i)(--cookies(?:=|\s+))("[^"]*"|'[^']*'|\S+)""")
_AUTH_BEARER_RE = re.compile(r"(?i)(authorization\s*:\s*bearer\s+)([A-Za-z0-9._~+/=-]+)")
_AUTH_APIKEY_RE = re.compile(r"(?i)(x-api-key\s*:\s*)([A-Za-z0-9._~+/=-]+)")
_QUERY_TOKEN_RE = re.compile(r"""(?i)([?&](?:token|access_token|api_key|apikey|key)=)([^&\s"']+)""")
_KEY_LIKE_RE = re.compile(r"(?i)\b(?:sk|rk)-[A-Za-z0-9_-]{12,}\b")


def redact_sensitive_text(text: str) -> str:
    """Replace credentials, cookies and token-looking values with [REDACTED]."""
    if not text:
        return text
    out = _COOKIES_RE.sub(rf"\1{REDACTED}", text)
    out = _AUTH_BEARER_RE.sub(rf"\1{REDACTED}", out)
    out = _AUTH_APIKEY_RE.sub(rf"\1{REDACTED}", out)
    out = _QUERY_TOKEN_RE.sub(rf"\1{REDACTED}", out)
    return _KEY_LIKE_RE.sub(REDACTED, out)


def truncate_with_notice(text: str, limit: int) -> str:
    """Cut text to at most `limit` characters, appending how much was dropped."""
    if len(text) <= limit:
        return text
    keep = max(0, limit - 64)
    omitted = len(text) - keep
    return f"{text[:keep]}\n...[truncated {omitted} chars]"


class RedactingFilter(logging.Filter):
    """Logging filter that redacts the fully formatted message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_sensitive_text(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True
