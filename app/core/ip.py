"""
Client address resolution behind Cloudflare and reverse proxies.
"""

import ipaddress
from typing import Optional

from fastapi import Request

UNKNOWN_IP = "unknown"

# Checked in order; the first one carrying a valid address wins.
FORWARDING_HEADERS = ("cf-connecting-ip", "x-forwarded-for", "x-real-ip", "x-client-ip")


def _valid_ip(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    candidate = value.strip()
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


def get_client_ip(request: Request) -> str:
    """Best-effort originating IP of the request."""
    for header in FORWARDING_HEADERS:
        raw = request.headers.get(header)
        if raw and header == "x-forwarded-for":
            raw = raw.split(",")[0]
        ip = _valid_ip(raw)
        if ip:
            return ip

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_IP


def get_user_agent(request: Request) -> Optional[str]:
    user_agent = request.headers.get("user-agent")
    return user_agent[:500] if user_agent else None
