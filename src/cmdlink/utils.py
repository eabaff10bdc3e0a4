"""
Cmdlink - Utility functions.

Provides logging setup, address validation and small formatting helpers.
"""

import ipaddress
import logging
import re
from typing import Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler

from .constants import LOG_DATE_FORMAT, LOG_FORMAT


def configure_logging(level: str = "INFO", use_rich: bool = True, console: Optional[Console] = None) -> logging.Handler:
    """
    Install a single handler on the "cmdlink" logger.

    Only entry points call this; library modules just create loggers.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ...)
        use_rich: Render with rich instead of a plain StreamHandler
        console: rich Console to write to (defaults to stderr)

    Returns:
        The installed handler
    """
    root = logging.getLogger("cmdlink")
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if use_rich:
        handler: logging.Handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            log_time_format=f"[{LOG_DATE_FORMAT}]",
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))

    root.addHandler(handler)
    root.setLevel(level.upper())
    # Module loggers pin INFO; let the chosen level through
    for name, child in logging.Logger.manager.loggerDict.items():
        if name.startswith("cmdlink.") and isinstance(child, logging.Logger):
            child.setLevel(logging.NOTSET)
    return handler


def validate_port(port: int) -> bool:
    """
    Validate a port number.

    Args:
        port: Port number to validate

    Returns:
        True if valid, False otherwise
    """
    return 1024 <= port <= 65535


def validate_ip(ip: str, allow_loopback: bool = False, allow_unspecified: bool = False) -> bool:
    """
    Validate an IP address (IPv4 or IPv6) usable for bind/connect.

    Rejects invalid IPs, loopback addresses (unless allow_loopback=True),
    unspecified addresses (unless allow_unspecified=True) and multicast.

    Returns:
        True if valid IP address, False otherwise
    """
    try:
        ip_obj = ipaddress.ip_address(ip)
    except ValueError:
        return False

    if ip_obj.is_loopback:
        return allow_loopback

    # 0.0.0.0 / :: are valid bind addresses only
    if ip_obj.is_unspecified:
        return allow_unspecified

    return not ip_obj.is_multicast


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

    # Check again after stripping trailing dot
    if not hostname:
        return False

    pattern = r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
    return bool(re.match(pattern, hostname))


def truncate_string(s: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate a string to a maximum length.

    Args:
        s: String to truncate
        max_length: Maximum length including suffix
        suffix: Suffix to add if truncated

    Returns:
        Truncated string
    """
    if len(s) <= max_length:
        return s
    return s[: max_length - len(suffix)] + suffix


def format_args(args: Sequence[str], max_length: int = 80) -> str:
    """Render command arguments for a console summary."""
    return truncate_string(", ".join(args), max_length) if args else "-"
