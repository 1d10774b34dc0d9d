"""
Signal collectors for the risk scorer.

Each collector looks at one weak piece of evidence and returns a
SignalOutcome; none of them raise. A collector that fails internally yields a
DETECTION_ERROR signal and marks the outcome degraded instead of aborting the
whole evaluation.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

logger = logging.getLogger(__name__)


class SignalType(str, Enum):
    PRIVATE_IP = "private_ip"
    BANNED = "banned"
    VPN = "vpn"
    PROXY = "proxy"
    DATACENTER = "datacenter"
    FLAGGED = "flagged"
    VPN_PROVIDER = "vpn_provider"
    DATACENTER_PROVIDER = "datacenter_provider"
    HOSTING_PROVIDER = "hosting_provider"
    VPN_RANGE = "vpn_range"
    SUSPICIOUS_UA = "suspicious_ua"
    MISSING_UA = "missing_ua"
    MISSING_FINGERPRINT = "missing_fingerprint"
    HIGH_VELOCITY = "high_velocity"
    DETECTION_ERROR = "detection_error"


_PENALTIES: dict[SignalType, int] = {
    SignalType.PRIVATE_IP: 90,
    SignalType.BANNED: 100,
    SignalType.VPN: 80,
    SignalType.PROXY: 75,
    SignalType.DATACENTER: 70,
    SignalType.FLAGGED: 50,
    SignalType.VPN_PROVIDER: 80,
    SignalType.DATACENTER_PROVIDER: 70,
    SignalType.HOSTING_PROVIDER: 60,
    SignalType.VPN_RANGE: 75,
    SignalType.SUSPICIOUS_UA: 60,
    SignalType.MISSING_UA: 30,
    SignalType.MISSING_FINGERPRINT: 20,
    SignalType.HIGH_VELOCITY: 30,
    SignalType.DETECTION_ERROR: 40,
}

_REASONS: dict[SignalType, str] = {
    SignalType.PRIVATE_IP: "Private IP detected",
    SignalType.BANNED: "IP is banned",
    SignalType.VPN: "VPN detected",
    SignalType.PROXY: "Proxy detected",
    SignalType.DATACENTER: "Data center IP",
    SignalType.FLAGGED: "Flagged for review",
    SignalType.VPN_PROVIDER: "VPN provider detected",
    SignalType.DATACENTER_PROVIDER: "Data center IP detected",
    SignalType.HOSTING_PROVIDER: "Suspicious hosting provider",
    SignalType.VPN_RANGE: "Common VPN IP range",
    SignalType.SUSPICIOUS_UA: "Suspicious user agent detected",
    SignalType.MISSING_UA: "Missing or suspicious user agent",
    SignalType.MISSING_FINGERPRINT: "Missing browser fingerprint",
    SignalType.HIGH_VELOCITY: "High request velocity",
    SignalType.DETECTION_ERROR: "Detection error - proceed with caution",
}

SUSPICIOUS_UA_MARKERS = ("bot", "crawler", "spider", "headless", "phantom", "selenium", "automation")
BROWSER_UA_MARKER = "Mozilla"
MIN_USER_AGENT_LEN = 10

_PRIVATE_NETS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
)


@dataclass(frozen=True)
class Signal:
    type: SignalType
    penalty: int
    reason: str


def make_signal(kind: SignalType, penalty: Optional[int] = None) -> Signal:
    return Signal(type=kind, penalty=_PENALTIES[kind] if penalty is None else penalty, reason=_REASONS[kind])


@dataclass(frozen=True)
class SignalOutcome:
    signals: tuple[Signal, ...] = ()
    degraded: bool = False

    @classmethod
    def of(cls, *kinds: SignalType) -> "SignalOutcome":
        return cls(signals=tuple(make_signal(kind) for kind in kinds))

    @classmethod
    def detection_error(cls, penalty: Optional[int] = None) -> "SignalOutcome":
        return cls(signals=(make_signal(SignalType.DETECTION_ERROR, penalty),), degraded=True)

    @property
    def penalty(self) -> int:
        return sum(s.penalty for s in self.signals)

    @property
    def types(self) -> tuple[SignalType, ...]:
        return tuple(s.type for s in self.signals)

    @property
    def reasons(self) -> list[str]:
        return [s.reason for s in self.signals]

    def __add__(self, other: "SignalOutcome") -> "SignalOutcome":
        return SignalOutcome(signals=self.signals + other.signals, degraded=self.degraded or other.degraded)


@dataclass(frozen=True)
class ProviderLists:
    vpn: tuple[str, ...] = ("nordvpn", "expressvpn", "surfshark", "protonvpn")
    datacenter: tuple[str, ...] = ("amazonaws", "googlecloud", "googleusercontent", "azure", "digitalocean")
    hosting: tuple[str, ...] = ("vultr", "linode", "ovh", "hetzner")

    def match(self, hostname: str) -> Optional[SignalType]:
        lowered = (hostname or "").lower()
        if not lowered:
            return None
        for fragment in self.vpn:
            if fragment in lowered:
                return SignalType.VPN_PROVIDER
        for fragment in self.datacenter:
            if fragment in lowered:
                return SignalType.DATACENTER_PROVIDER
        for fragment in self.hosting:
            if fragment in lowered:
                return SignalType.HOSTING_PROVIDER
        return None


DEFAULT_VPN_PREFIXES: tuple[str, ...] = ("185.220.", "104.244.", "192.42.", "198.98.")


def _parse_address(address: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        ip_obj = ipaddress.ip_address((address or "").strip())
    except ValueError:
        return None
    if isinstance(ip_obj, ipaddress.IPv6Address) and ip_obj.ipv4_mapped is not None:
        return ip_obj.ipv4_mapped
    return ip_obj


def is_private_address(address: str) -> bool:
    ip_obj = _parse_address(address)
    if ip_obj is None:
        return False
    if isinstance(ip_obj, ipaddress.IPv6Address):
        return ip_obj.is_loopback
    return any(ip_obj in net for net in _PRIVATE_NETS)


def check_private_address(address: str) -> SignalOutcome:
    if is_private_address(address):
        return SignalOutcome.of(SignalType.PRIVATE_IP)
    return SignalOutcome()


def check_vpn_range(address: str, prefixes: Sequence[str] = DEFAULT_VPN_PREFIXES) -> SignalOutcome:
    ip_obj = _parse_address(address)
    if ip_obj is None:
        return SignalOutcome()
    text = str(ip_obj)
    if any(text.startswith(prefix) for prefix in prefixes):
        return SignalOutcome.of(SignalType.VPN_RANGE)
    return SignalOutcome()


def check_user_agent(user_agent: str, fingerprint: str) -> SignalOutcome:
    """Cheap header checks, re-run on every request."""
    user_agent = user_agent or ""
    kinds: list[SignalType] = []
    lowered = user_agent.lower()
    for marker in SUSPICIOUS_UA_MARKERS:
        if marker in lowered:
            kinds.append(SignalType.SUSPICIOUS_UA)
            break
    if len(user_agent) < MIN_USER_AGENT_LEN:
        kinds.append(SignalType.MISSING_UA)
    if not fingerprint and BROWSER_UA_MARKER in user_agent:
        kinds.append(SignalType.MISSING_FINGERPRINT)
    return SignalOutcome.of(*kinds)


def check_velocity(window_request_count: int, limit: int) -> SignalOutcome:
    if limit > 0 and window_request_count > limit:
        return SignalOutcome.of(SignalType.HIGH_VELOCITY)
    return SignalOutcome()


def stored_flag_outcome(
    *,
    is_banned: bool,
    is_vpn: bool = False,
    is_proxy: bool = False,
    is_datacenter: bool = False,
    is_flagged: bool = False,
) -> SignalOutcome:
    kinds = [
        kind
        for enabled, kind in (
            (is_banned, SignalType.BANNED),
            (is_vpn, SignalType.VPN),
            (is_proxy, SignalType.PROXY),
            (is_datacenter, SignalType.DATACENTER),
            (is_flagged, SignalType.FLAGGED),
        )
        if enabled
    ]
    return SignalOutcome.of(*kinds)


class ReverseDnsResolver:
    """Blocking reverse lookup run in a worker thread under a hard timeout."""

    def __init__(
        self,
        timeout_seconds: float = 2.0,
        lookup: Callable[[str], tuple] = socket.gethostbyaddr,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._lookup = lookup

    async def resolve(self, address: str) -> Optional[str]:
        try:
            hostname, _aliases, _addrs = await asyncio.wait_for(
                asyncio.to_thread(self._lookup, address), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.info("[RISK] reverse dns timed out", extra={"timeout_s": self.timeout_seconds})
            return None
        except (OSError, UnicodeError, ValueError):
            return None
        return hostname or None


@dataclass(frozen=True)
class NetworkFindings:
    is_vpn: bool = False
    is_proxy: bool = False
    is_datacenter: bool = False
    outcome: SignalOutcome = field(default_factory=SignalOutcome)


class SignalCollectors:
    """The network-bound collectors, run on first sighting or forced re-check."""

    def __init__(
        self,
        resolver: ReverseDnsResolver,
        providers: ProviderLists | None = None,
        vpn_prefixes: Iterable[str] = DEFAULT_VPN_PREFIXES,
        error_penalty: int = 40,
    ) -> None:
        self.resolver = resolver
        self.providers = providers or ProviderLists()
        self.vpn_prefixes = tuple(vpn_prefixes)
        self.error_penalty = error_penalty

    async def _provider_outcome(self, address: str) -> SignalOutcome:
        if _parse_address(address) is None:
            return SignalOutcome()
        hostname = await self.resolver.resolve(address)
        if not hostname:
            return SignalOutcome()
        kind = self.providers.match(hostname)
        return SignalOutcome.of(kind) if kind else SignalOutcome()

    async def collect_network(self, address: str) -> NetworkFindings:
        try:
            provider = await self._provider_outcome(address)
        except Exception:
            logger.warning("[RISK] provider collector failed", exc_info=True)
            provider = SignalOutcome.detection_error(self.error_penalty)
        try:
            vpn_range = check_vpn_range(address, self.vpn_prefixes)
        except Exception:
            logger.warning("[RISK] vpn range collector failed", exc_info=True)
            vpn_range = SignalOutcome.detection_error(self.error_penalty)

        outcome = provider + vpn_range
        kinds = set(outcome.types)
        return NetworkFindings(
            is_vpn=bool(kinds & {SignalType.VPN_PROVIDER, SignalType.VPN_RANGE}),
            is_proxy=SignalType.HOSTING_PROVIDER in kinds,
            is_datacenter=SignalType.DATACENTER_PROVIDER in kinds,
            outcome=outcome,
        )


__all__ = [
    "SignalType",
    "Signal",
    "SignalOutcome",
    "ProviderLists",
    "ReverseDnsResolver",
    "NetworkFindings",
    "SignalCollectors",
    "make_signal",
    "is_private_address",
    "check_private_address",
    "check_vpn_range",
    "check_user_agent",
    "check_velocity",
    "stored_flag_outcome",
    "SUSPICIOUS_UA_MARKERS",
    "DEFAULT_VPN_PREFIXES",
]
