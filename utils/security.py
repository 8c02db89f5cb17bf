"""Security helpers for response headers and query argument sanitation."""
from typing import Mapping

from flask import request

from utils.complaint_store import clean_text

API_CSP = "default-src 'none'; frame-ancestors 'none'"


def sanitize_args(args: Mapping) -> dict:
    """Return a markup-free copy of query arguments; empty values are dropped."""
    sanitized = {}
    for key, value in args.items():
        text = clean_text(value)
        if text:
            sanitized[str(key)] = text
    return sanitized


def apply_security_headers(response, force_https: bool = False):
    """Apply headers suitable for a JSON-only API."""
    response.headers.setdefault("Content-Security-Policy", API_CSP)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Cache-Control", "no-store")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response
