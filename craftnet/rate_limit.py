"""Rate limiting for the Craftnet API.

Authenticated requests are limited per user, so clients sharing an office
NAT or a mobile carrier address do not exhaust each other's budget. Anonymous
requests (sign-in, sign-up, health) fall back to the client IP. Forwarded
headers are honoured only from trusted proxy addresses so a client cannot
pick its own bucket.
"""

import ipaddress
import os

from fastapi import HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from .auth import AUTH_COOKIE_NAME, decode_access_token
from .config import get_settings
from .logging_config import get_logger

logger = get_logger("craftnet.rate_limit")

# Private ranges used by the load balancer and local development;
# override with TRUSTED_PROXY_CIDRS (comma-separated)
DEFAULT_PROXY_CIDRS = ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "127.0.0.0/8", "::1/128")

_trusted_networks: list | None = None


def _trusted_proxy_networks() -> list:
    global _trusted_networks
    if _trusted_networks is None:
        raw = os.environ.get("TRUSTED_PROXY_CIDRS", "")
        cidrs = [part.strip() for part in raw.split(",") if part.strip()] or list(DEFAULT_PROXY_CIDRS)
        networks = []
        for cidr in cidrs:
            try:
                networks.append(ipaddress.ip_network(cidr, strict=False))
            except ValueError:
                logger.warning("Ignoring invalid trusted proxy CIDR %r", cidr)
        _trusted_networks = networks
    return _trusted_networks


def is_trusted_proxy(ip_str: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in _trusted_proxy_networks())


def get_client_ip(request) -> str:
    """Client IP, using the leftmost X-Forwarded-For entry only behind a trusted proxy."""
    peer = get_remote_address(request)
    if not is_trusted_proxy(peer):
        return peer
    forwarded = request.headers.get("x-forwarded-for", "")
    client_ip = forwarded.split(",")[0].strip()
    return client_ip or peer


def _bearer_token(request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    cookies = getattr(request, "cookies", None) or {}
    return cookies.get(AUTH_COOKIE_NAME)


def get_rate_limit_key(request) -> str:
    """``user:<id>`` for a verified access token, otherwise ``ip:<address>``.

    The token is verified here as well as in the auth dependency: an
    unverified ``sub`` would let a caller choose any bucket it likes.
    """
    token = _bearer_token(request)
    if token:
        try:
            claims = decode_access_token(token, get_settings())
        except HTTPException:
            claims = {}
        if claims.get("sub"):
            return f"user:{claims['sub']}"
    return f"ip:{get_client_ip(request)}"


limiter = Limiter(key_func=get_rate_limit_key)
