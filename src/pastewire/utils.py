"""
Pastewire - Utility functions.

Created by orpheus497
Version: 1.0.0

Provides formatting and validation helpers shared by the transport,
the configuration layer and the user interfaces.
"""

import ipaddress
import logging
import re
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def format_timestamp(iso_timestamp: str, format_str: str = "%H:%M:%S") -> str:
    """
    Format an ISO timestamp to a human-readable local time string.

    Args:
        iso_timestamp: ISO 8601 timestamp string
        format_str: strftime format string

    Returns:
        Formatted timestamp string, or original if parsing fails
    """
    try:
        dt = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
        if dt.tzinfo is not None:
            dt = dt.astimezone()
        return dt.strftime(format_str)
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Failed to parse timestamp '{iso_timestamp}': {e}")
        return iso_timestamp


def validate_port(port: int) -> bool:
    """
    Validate a port number.

    Args:
        port: Port number to validate

    Returns:
        True if valid, False otherwise
    """
    return 1024 <= port <= 65535


def validate_ip(ip: str, allow_private: bool = True, allow_loopback: bool = False) -> bool:
    """
    Validate an IP address (IPv4 or IPv6) with proper range checking.

    Rejects invalid IPs, loopback addresses (unless allow_loopback=True),
    unspecified addresses (0.0.0.0, ::), reserved addresses, link-local,
    and multicast addresses.

    Args:
        ip: IP address string (IPv4 or IPv6)
        allow_private: Whether to allow private IP ranges (default: True)
        allow_loopback: Whether to allow loopback addresses (default: False)

    Returns:
        True if valid IP address, False otherwise
    """
    try:
        ip_obj = ipaddress.ip_address(ip)
    except ValueError:
        return False

    if ip_obj.is_loopback:
        return allow_loopback

    if ip_obj.is_unspecified or ip_obj.is_reserved or ip_obj.is_link_local or ip_obj.is_multicast:
        return False

    return not (not allow_private and ip_obj.is_private)


def validate_hostname(hostname: str) -> bool:
    """
    Validate a hostname.

    Args:
        hostname: Hostname string

    Returns:
        True if valid hostname, False otherwise
    """
    if not hostname or len(hostname) > 255:
        return False

    if hostname[-1] == ".":
        hostname = hostname[:-1]

    if not hostname:
        return False

    pattern = r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
    return bool(re.match(pattern, hostname))


def format_fingerprint(fingerprint: Optional[str]) -> str:
    """
    Format a fingerprint for display with spaces every 4 characters.

    Args:
        fingerprint: Hex fingerprint string

    Returns:
        Formatted fingerprint, or a dash when there is none
    """
    if not fingerprint:
        return "-"
    return " ".join(fingerprint[i : i + 4] for i in range(0, len(fingerprint), 4))
