"""Redaction module to mask session secrets in logs and error messages."""
import re
from typing import Mapping

REDACTED = "[REDACTED]"

# Headers whose whole value is a secret
SECRET_HEADERS = {"authorization", "x-xsrf-token", "x-csrf-token", "proxy-authorization"}

# Cookie header is rewritten per pair, keeping the names for debugging
COOKIE_HEADERS = {"cookie", "set-cookie"}

PATTERNS = [
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE), r"\1" + REDACTED),
    (re.compile(r"\b(NID_AUT|NID_SES|NID_JKL)=([^;,\s]+)"), r"\1=" + REDACTED),
    (re.compile(r"\b(access_token|refresh_token|sid|session_id)=([^;&,\s]+)", re.IGNORECASE), r"\1=" + REDACTED),
    (re.compile(r"(x-coupang-[a-z-]+[\"']?\s*[:=]\s*[\"']?)([^\"'\s;,]+)", re.IGNORECASE), r"\1" + REDACTED),
]


def redact_cookie(cookie: str) -> str:
    """Keep cookie names, mask every value."""
    if not cookie:
        return cookie
    pairs = []
    for part in cookie.split(";"):
        part = part.strip()
        if not part:
            continue
        name, sep, _ = part.partition("=")
        pairs.append(f"{name}={REDACTED}" if sep else name)
    return "; ".join(pairs)


def redact_string(text: str) -> str:
    """Redact known secret tokens from free text (curl captures, messages)."""
    if not text:
        return text
    result = text
    for pattern, replacement in PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy of a header set that is safe to log."""
    redacted = {}
    for name, value in headers.items():
        lowered = name.lower()
        if lowered in COOKIE_HEADERS:
            redacted[name] = redact_cookie(value)
        elif lowered in SECRET_HEADERS:
            redacted[name] = REDACTED
        else:
            redacted[name] = redact_string(value)
    return redacted
