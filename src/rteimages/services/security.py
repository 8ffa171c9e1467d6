"""Checks guarding external fetches and local file access."""

import ipaddress
import logging
import os
import socket
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

import filetype

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})

# Cloud metadata endpoints, matched as substrings of the host or resolved IP
BLOCKED_HOSTS = (
    "169.254.169.254",
    "fd00:ec2::254",
    "metadata.google.internal",
    "metadata.goog",
    "instance-data",
)

ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})
ALLOWED_EXTENSIONS = frozenset({"jpg", "jpeg", "gif", "png", "webp"})

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def sanitize_url_for_log(url: str) -> str:
    """Drop credentials from a URL before it is logged."""
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        return "[invalid URL]"
    if not parts.scheme or not host:
        return "[invalid URL]"

    netloc = host if ":" not in host else f"[{host}]"
    try:
        if parts.port:
            netloc = f"{netloc}:{parts.port}"
    except ValueError:
        return "[invalid URL]"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, ""))


def _is_blocked_ip(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv6Address):
        # IPv4 embedded by mapping, 6to4 or Teredo is checked as IPv4
        embedded = [ip.ipv4_mapped, ip.sixtofour, ip.teredo[1] if ip.teredo else None]
        if any(inner is not None and _is_blocked_ip(inner) for inner in embedded):
            return True
    return (
        not ip.is_global
        or ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def _is_metadata_target(value: str) -> bool:
    value = value.lower()
    return any(blocked in value for blocked in BLOCKED_HOSTS)


def _resolve_host(host: str) -> list[IPAddress]:
    """Resolve a host to its addresses in canonical form."""
    try:
        return [ipaddress.ip_address(host)]
    except ValueError:
        pass

    # getaddrinfo also expands decimal, octal and hex IPv4 spellings
    try:
        info = socket.getaddrinfo(host, None)
    except (socket.gaierror, UnicodeError, OSError):
        return []

    addresses: list[IPAddress] = []
    for entry in info:
        ip_text = str(entry[4][0]).split("%", 1)[0]
        try:
            ip = ipaddress.ip_address(ip_text)
        except ValueError:
            continue
        if ip not in addresses:
            addresses.append(ip)
    return addresses


class SecurityValidator:
    """SSRF, MIME type and path traversal checks. Failures return None or False."""

    def get_validated_ip_for_url(self, url: str) -> str | None:
        """
        Resolve the host of an http(s) URL to an IP that is safe to connect to.

        Every resolved address must be public. The returned IP is what the
        caller should connect to, so a second DNS answer cannot redirect the
        request somewhere else.
        """
        try:
            parts = urlsplit(url.strip())
            host = parts.hostname
        except ValueError:
            return None

        if parts.scheme.lower() not in ALLOWED_SCHEMES or not host:
            return None

        if _is_metadata_target(host):
            return None

        addresses = _resolve_host(host)
        if not addresses:
            return None

        for ip in addresses:
            if _is_blocked_ip(ip) or _is_metadata_target(str(ip)):
                return None

        return str(addresses[0])

    def is_allowed_image_mime_type(self, content: bytes) -> bool:
        """Sniff the content's MIME type from magic bytes and check the allow-list."""
        if not content:
            return False
        kind = filetype.guess(content)
        if kind is None:
            return False
        return kind.mime in ALLOWED_MIME_TYPES

    def validate_local_path(self, path: str, public_root: str) -> str | None:
        """Return the canonical absolute path if it exists inside public_root."""
        if not path or not public_root:
            return None

        cleaned = path.replace("../", "").replace("..\\", "").replace("\0", "")
        try:
            root = Path(public_root).resolve(strict=True)
        except (OSError, RuntimeError):
            return None

        candidate = public_root.rstrip("/") + "/" + cleaned.lstrip("/")
        try:
            resolved = Path(os.path.realpath(candidate))
        except (OSError, ValueError):
            return None

        if not resolved.exists():
            return None
        if not resolved.is_relative_to(root):
            logger.warning("Path escapes public root: %s", path)
            return None

        return str(resolved)

    def is_allowed_extension(self, extension: str) -> bool:
        return extension.lower().lstrip(".") in ALLOWED_EXTENSIONS

    @property
    def allowed_mime_types(self) -> frozenset[str]:
        return ALLOWED_MIME_TYPES

    @property
    def allowed_extensions(self) -> frozenset[str]:
        return ALLOWED_EXTENSIONS
