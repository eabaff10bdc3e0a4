"""
Unit tests for cmdlink.utils module.

Tests validation, formatting and logging setup helpers.
"""

import io
import logging

from rich.console import Console
from rich.logging import RichHandler

from cmdlink.utils import (
    configure_logging,
    format_args,
    truncate_string,
    validate_hostname,
    validate_ip,
    validate_port,
)


class TestPortValidation:
    """Test port number validation."""

    def test_valid_ports(self):
        """Test that valid port numbers are accepted."""
        assert validate_port(1024) is True
        assert validate_port(4098) is True
        assert validate_port(65535) is True

    def test_invalid_ports(self):
        """Test that invalid port numbers are rejected."""
        assert validate_port(0) is False
        assert validate_port(1023) is False
        assert validate_port(65536) is False


class TestIPValidation:
    """Test IP address validation."""

    def test_valid_ipv4(self):
        """Test that valid IPv4 addresses are accepted."""
        assert validate_ip("192.168.1.1") is True
        assert validate_ip("10.0.0.1") is True

    def test_valid_ipv6(self):
        """Test that valid IPv6 addresses are accepted."""
        assert validate_ip("2001:0db8:85a3:0000:0000:8a2e:0370:7334") is True

    def test_invalid_ips(self):
        """Test that invalid IP addresses are rejected."""
        assert validate_ip("256.1.1.1") is False
        assert validate_ip("not_an_ip") is False
        assert validate_ip("") is False
        assert validate_ip("224.0.0.1") is False

    def test_loopback(self):
        """Loopback is rejected unless allowed."""
        assert validate_ip("127.0.0.1") is False
        assert validate_ip("127.0.0.1", allow_loopback=True) is True
        assert validate_ip("::1", allow_loopback=True) is True

    def test_unspecified(self):
        """Wildcard bind addresses need allow_unspecified."""
        assert validate_ip("0.0.0.0") is False
        assert validate_ip("0.0.0.0", allow_unspecified=True) is True
        assert validate_ip("::", allow_unspecified=True) is True


class TestHostnameValidation:
    """Test hostname validation."""

    def test_valid_hostnames(self):
        """Test that valid hostnames are accepted."""
        assert validate_hostname("localhost") is True
        assert validate_hostname("sub.example.com.") is True
        assert validate_hostname("example-site.com") is True

    def test_invalid_hostnames(self):
        """Test that invalid hostnames are rejected."""
        assert validate_hostname("") is False
        assert validate_hostname(".") is False
        assert validate_hostname("-example.com") is False
        assert validate_hostname("a" * 256) is False


class TestStringUtilities:
    """Test string utility functions."""

    def test_truncate_string(self):
        """Test string truncation."""
        assert truncate_string("short", 10) == "short"
        assert truncate_string("this is a long string", 10) == "this is..."
        assert truncate_string("test", 10, "~") == "test"

    def test_format_args(self):
        assert format_args([]) == "-"
        assert format_args(["1", "2"]) == "1, 2"
        assert format_args(["x" * 50, "y" * 50], 20) == "x" * 17 + "..."


class TestConfigureLogging:
    """Test handler installation on the package logger."""

    def teardown_method(self):
        root = logging.getLogger("cmdlink")
        for handler in list(root.handlers):
            root.removeHandler(handler)

    def test_rich_handler(self):
        buffer = io.StringIO()
        handler = configure_logging("debug", console=Console(file=buffer, width=200))

        assert isinstance(handler, RichHandler)
        assert logging.getLogger("cmdlink").level == logging.DEBUG
        logging.getLogger("cmdlink.network.test").debug("frame ready")
        assert "frame ready" in buffer.getvalue()

    def test_plain_handler_replaces_previous(self):
        configure_logging("INFO")
        handler = configure_logging("WARNING", use_rich=False)

        root = logging.getLogger("cmdlink")
        assert root.handlers == [handler]
        assert type(handler) is logging.StreamHandler
        assert root.level == logging.WARNING

    def test_module_loggers_follow_level(self):
        child = logging.getLogger("cmdlink.network")
        child.setLevel(logging.INFO)
        configure_logging("DEBUG", use_rich=False)

        assert child.level == logging.NOTSET
        assert child.isEnabledFor(logging.DEBUG)
