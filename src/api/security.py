"""Client identification for per-client rate limiting at the API boundary."""

from __future__ import annotations

import ipaddress

from fastapi import Request


class ClientIdentityError(ValueError):
    pass


def normalize_client_address(host: str | None) -> str | None:
    text = (host or "").strip()
    if not text:
        return None
    try:
        address = ipaddress.ip_address(text)
    except ValueError:
        return text.lower()
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return str(address.ipv4_mapped)
    return str(address)


def client_key_from_request(request: Request) -> str:
    """Derive the rate-limit key from the peer address only; forwarding headers are ignored."""
    host = request.client.host if request.client is not None else None
    key = normalize_client_address(host)
    if key is None:
        raise ClientIdentityError("Unable to identify client.")
    return key
