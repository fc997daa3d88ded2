"""Outbound-request policy checks run before any capture work (SSRF guard)."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import Literal, Mapping
from urllib.parse import urlsplit

MAX_URL_LENGTH = 2048
MAX_HOSTNAME_LENGTH = 253

ALLOWED_SCHEMES = frozenset({"http", "https"})
ALLOWED_FORMATS = frozenset({"webp", "png", "jpeg", "jpg"})

# SSH, Telnet, SMTP, POP3, IMAP, SMB, MSSQL, MySQL, RDP, PostgreSQL, Redis, MongoDB
BLOCKED_PORTS = frozenset({22, 23, 25, 110, 143, 445, 1433, 3306, 3389, 5432, 6379, 27017})

_BLOCKED_HOST_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^localhost$", re.IGNORECASE),
    re.compile(r"^127\."),
    re.compile(r"^0\."),
    re.compile(r"^10\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^169\.254\."),
    re.compile(r"^::1$"),
    re.compile(r"^f[cd][0-9a-f]{2}:", re.IGNORECASE),
    re.compile(r"^fe[89ab][0-9a-f]:", re.IGNORECASE),
    re.compile(r"^metadata\.google\.internal$", re.IGNORECASE),
    re.compile(r"^169\.254\.169\.254$"),
)

_BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "127.0.0.0/8",
        "0.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",
        "::1/128",
        "::/128",
        "fc00::/7",
        "fe80::/10",
    )
)

_IPV4_PART = re.compile(r"^(?:0x[0-9a-f]*|0[0-7]*|[1-9][0-9]*)$")

_SUSPICIOUS_SCHEME = re.compile(r"(javascript|data|vbscript|file|about):", re.IGNORECASE)
_TRAVERSAL_MARKERS = ("..", "%2e%2e", "%252e")

PRIVATE_NETWORK_REASON = "Access to private networks and cloud metadata endpoints is blocked"


@dataclass(frozen=True, slots=True)
class ScreenshotLimits:
    """Numeric parameter bounds for capture requests."""

    min_width: int = 320
    max_width: int = 3840
    min_height: int = 240
    max_height: int = 2160
    max_delay_ms: int = 10_000
    min_quality: int = 1
    max_quality: int = 100


@dataclass(frozen=True, slots=True)
class SafetyVerdict:
    """Outcome of a gate evaluation. ``kind`` separates URL from parameter rejections."""

    allowed: bool
    reason: str | None = None
    kind: Literal["url", "params"] | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = SafetyVerdict(allowed=True)


def _reject_url(reason: str) -> SafetyVerdict:
    return SafetyVerdict(allowed=False, reason=reason, kind="url")


def _reject_params(reason: str) -> SafetyVerdict:
    return SafetyVerdict(allowed=False, reason=reason, kind="params")


def parse_ipv4_host(host: str) -> ipaddress.IPv4Address | None:
    """Read ``host`` the way browsers do: 1-4 dotted parts, each decimal, ``0x`` hex
    or leading-zero octal, the last part filling the remaining bytes.

    ``0x7f000001``, ``0177.0.0.1`` and ``2130706433`` all become ``127.0.0.1``.
    Returns None for anything that is not an IPv4 literal.
    """

    parts = host.lower().split(".")
    if len(parts) > 1 and parts[-1] == "":
        parts.pop()
    if len(parts) > 4 or not all(_IPV4_PART.match(part) for part in parts):
        return None

    numbers = []
    for part in parts:
        if part.startswith("0x"):
            numbers.append(int(part[2:] or "0", 16))
        elif part.startswith("0"):
            numbers.append(int(part, 8))
        else:
            numbers.append(int(part))

    *leading, last = numbers
    if any(number > 255 for number in leading) or last >= 256 ** (4 - len(leading)):
        return None
    value = last
    for index, number in enumerate(leading):
        value += number << (8 * (3 - index))
    return ipaddress.IPv4Address(value)


def is_blocked_host(hostname: str) -> bool:
    """Return True when the hostname names a private, loopback, or metadata target."""

    host = hostname.strip().lower().rstrip(".")
    if not host:
        return True
    if any(pattern.search(host) for pattern in _BLOCKED_HOST_PATTERNS):
        return True
    address: ipaddress.IPv4Address | ipaddress.IPv6Address | None = parse_ipv4_host(host)
    if address is None:
        try:
            address = ipaddress.ip_address(host)
        except ValueError:
            return False
    mapped = getattr(address, "ipv4_mapped", None)
    if mapped is not None:
        address = mapped
    return any(address in network for network in _BLOCKED_NETWORKS if address.version == network.version)


def check_url(url: str) -> SafetyVerdict:
    """Validate a candidate URL, short-circuiting on the first failed rule."""

    try:
        parts = urlsplit(url)
        hostname = parts.hostname or ""
        port = parts.port
    except ValueError:
        return _reject_url("Invalid URL format")

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        return _reject_url("Only HTTP and HTTPS protocols allowed")
    if not hostname:
        return _reject_url("Invalid URL format")

    if is_blocked_host(hostname):
        return _reject_url(PRIVATE_NETWORK_REASON)

    if port is not None and port in BLOCKED_PORTS:
        return _reject_url("Access to sensitive ports is blocked")

    if parts.username is not None or parts.password is not None:
        return _reject_url("URLs with credentials are not allowed")

    if _SUSPICIOUS_SCHEME.search(url):
        return _reject_url("Suspicious URL scheme detected")

    for segment in parts.path.split("/"):
        lowered = segment.lower()
        if any(marker in lowered for marker in _TRAVERSAL_MARKERS):
            return _reject_url("Path traversal detected")

    if len(hostname) > MAX_HOSTNAME_LENGTH or len(url) > MAX_URL_LENGTH:
        return _reject_url("URL too long")

    return ALLOWED


def check_params(
    params: Mapping[str, object],
    *,
    limits: ScreenshotLimits = ScreenshotLimits(),
) -> SafetyVerdict:
    """Validate numeric/format parameters. Missing keys are treated as defaults."""

    width = params.get("width")
    if width is not None and not limits.min_width <= int(width) <= limits.max_width:  # type: ignore[call-overload]
        return _reject_params(f"Width must be between {limits.min_width} and {limits.max_width}")

    height = params.get("height")
    if height is not None and not limits.min_height <= int(height) <= limits.max_height:  # type: ignore[call-overload]
        return _reject_params(f"Height must be between {limits.min_height} and {limits.max_height}")

    delay = params.get("delay")
    if delay is not None and not 0 <= int(delay) <= limits.max_delay_ms:  # type: ignore[call-overload]
        return _reject_params(f"Delay must be between 0 and {limits.max_delay_ms}ms")

    quality = params.get("quality")
    if quality is not None and not limits.min_quality <= int(quality) <= limits.max_quality:  # type: ignore[call-overload]
        return _reject_params(
            f"Quality must be between {limits.min_quality} and {limits.max_quality}"
        )

    fmt = params.get("format")
    if fmt is not None and str(fmt).lower() not in ALLOWED_FORMATS:
        return _reject_params("Format must be webp, png, or jpeg")

    return ALLOWED


class SafetyGate:
    """Stateless policy gate: URL rules first, then parameter bounds."""

    def __init__(self, limits: ScreenshotLimits | None = None) -> None:
        self.limits = limits or ScreenshotLimits()

    def evaluate(self, url: str, params: Mapping[str, object] | None = None) -> SafetyVerdict:
        verdict = check_url(url)
        if not verdict:
            return verdict
        if params:
            return check_params(params, limits=self.limits)
        return ALLOWED

    def check_url(self, url: str) -> SafetyVerdict:
        return check_url(url)

    def check_params(self, params: Mapping[str, object]) -> SafetyVerdict:
        return check_params(params, limits=self.limits)
