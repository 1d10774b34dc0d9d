"""Request helper utilities for resolving the client address behind proxies."""

from __future__ import annotations

import ipaddress

from fastapi import Request

_TRUSTED_PROXY_NETS = (
    ipaddress.ip_network("100.64.0.0/10"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
)


def _is_trusted_proxy(ip_str: str) -> bool:
    try:
        ip_obj = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(ip_obj in net for net in _TRUSTED_PROXY_NETS)


def get_client_ip(request: Request, trust_forwarded_for: bool = True) -> str:
    """
    Determine the client address.

    The first X-Forwarded-For hop is only honoured when the immediate peer is a
    private/CGNAT proxy (Railway, Fly, a local nginx, ...). Otherwise the peer
    address wins, so a public client cannot spoof its own address.

    Returns "unknown" when neither is available.
    """
    peer_ip = request.client.host if request.client else None

    forwarded_ip = None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        forwarded_ip = forwarded.split(",")[0].strip() or None

    if trust_forwarded_for and peer_ip and forwarded_ip and _is_trusted_proxy(peer_ip):
        return forwarded_ip
    if peer_ip:
        return peer_ip
    return "unknown"


__all__ = ["get_client_ip"]
