"""Client IP resolution for rate limiting and security logs.

Forwarding headers are honoured only when TRUST_PROXY is enabled, so a
directly exposed API cannot be tricked into keying limits on a spoofed IP.
"""

from __future__ import annotations

import os

from fastapi import Request

TRUST_PROXY = os.environ.get("TRUST_PROXY", "").lower() in ("1", "true")

# Checked in order; the first present header wins
_PROXY_HEADERS = ("CF-Connecting-IP", "X-Real-IP", "X-Forwarded-For")


def get_client_ip(request: Request) -> str:
    """Best-known client address for `request`."""
    if TRUST_PROXY:
        for header in _PROXY_HEADERS:
            value = request.headers.get(header)
            if value:
                # X-Forwarded-For lists the original client first
                return value.split(",")[0].strip()

    if request.client:
        return request.client.host

    return "unknown"
