"""URL canonicalization and SSRF host filtering for artifact ingestion."""

import ipaddress
import re
import socket
from typing import Optional, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

INVALID_URL = "INVALID_URL"
HOST_BLOCKED = "HOST_BLOCKED"

_URL_IN_TEXT = re.compile(r"https?://[^\s<>\"')\]]+", re.IGNORECASE)

# Shorthand IPv4 the resolver still accepts: 2130706433, 127.1, 0x7f000001, 0177.0.0.1
_NUMERIC_HOST = re.compile(r"^(0x[0-9a-f]*|[0-9]+)(\.(0x[0-9a-f]*|[0-9]+)){0,3}$")

_PRIVATE_V4 = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("0.0.0.0/8"),
)


def _normalize_host(host: str) -> str:
    host = (host or "").strip().lower().rstrip(".")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host


def numeric_ipv4(host: str) -> Optional[ipaddress.IPv4Address]:
    """
    Decode a numeric host the way the system resolver would. Returns None
    for ordinary hostnames; raises ValueError for numeric hosts that do not
    decode to an address.
    """
    host = _normalize_host(host)
    if not _NUMERIC_HOST.match(host):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError as e:
        raise ValueError(f"Undecodable numeric host {host!r}") from e


def is_blocked_host(host: str) -> bool:
    """True for loopback, link-local, private, and local-only hostnames."""
    host = _normalize_host(host)
    if not host:
        return True
    if host == "localhost" or host.endswith(".localhost") or host.endswith(".local"):
        return True

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        try:
            address = numeric_ipv4(host)
        except ValueError:
            return True
        if address is None:
            return False

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    if isinstance(address, ipaddress.IPv4Address):
        return any(address in network for network in _PRIVATE_V4)
    return (
        address.is_loopback
        or address.is_link_local
        or address.is_private
        or address.is_unspecified
        or address.is_site_local
    )


def canonicalize_url(raw: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Returns (canonical_url, error_code). Exactly one of the two is set.

    https only; fragment dropped; empty path becomes "/"; host lowercased.
    """
    candidate = (raw or "").strip()
    if not candidate:
        return None, INVALID_URL
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return None, INVALID_URL

    if parts.scheme.lower() != "https" or not parts.netloc:
        return None, INVALID_URL

    host = (parts.hostname or "").lower()
    if is_blocked_host(host):
        return None, HOST_BLOCKED
    if parts.username or parts.password:
        return None, INVALID_URL

    numeric = numeric_ipv4(host)
    if numeric is not None:
        host = str(numeric)

    netloc = f"[{host}]" if ":" in host else host
    if port and port != 443:
        netloc = f"{netloc}:{port}"
    path = parts.path or "/"
    return urlunsplit(("https", netloc, path, parts.query, "")), None


def resolve_redirect(current_url: str, location: str) -> Tuple[Optional[str], Optional[str]]:
    """Resolve a Location header against the current URL and re-validate it."""
    return canonicalize_url(urljoin(current_url, location.strip()))


def extract_first_url(text: str) -> Optional[str]:
    """First http(s) URL mentioned in free text, trailing punctuation stripped."""
    match = _URL_IN_TEXT.search(text or "")
    if not match:
        return None
    return match.group(0).rstrip(".,;:!?")
