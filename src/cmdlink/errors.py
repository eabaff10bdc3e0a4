"""
Cmdlink - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
Cmdlink. Each error has a unique code for logging and debugging.

Version: 1.0.0
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all Cmdlink error codes."""

    # Crypto Errors (E100-E199)
    E100_CRYPTO_ERROR = "E100"
    E101_ENCRYPTION_FAILED = "E101"
    E102_DECRYPTION_FAILED = "E102"
    E103_INVALID_KEY = "E103"
    E104_KEY_GENERATION_FAILED = "E104"
    E109_KEY_UNAVAILABLE = "E109"
    E110_PAYLOAD_TOO_LARGE = "E110"

    # Transport Errors (E200-E299)
    E200_TRANSPORT_ERROR = "E200"
    E201_CONNECTION_FAILED = "E201"
    E203_CONNECTION_CLOSED = "E203"
    E204_SEND_FAILED = "E204"
    E206_INVALID_FRAME = "E206"
    E207_FRAME_TOO_LARGE = "E207"
    E208_BIND_FAILED = "E208"
    E210_CONNECTION_NOT_FOUND = "E210"
    E211_RESERVED_TOKEN = "E211"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E701_CONFIG_LOAD_FAILED = "E701"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"


class CmdlinkError(Exception):
    """Base exception class for all Cmdlink errors.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {"code": self.code.value, "message": self.message, "details": self.details}


class TransportError(CmdlinkError):
    """Exception raised for socket level failures.

    This includes bind, accept, connect, read and write errors.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_TRANSPORT_ERROR,
        message: str = "Transport operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ConnectionNotFound(TransportError, KeyError):
    """Raised when a connection id is not present in the registry."""

    def __init__(self, connection_id: int):
        super().__init__(
            ErrorCode.E210_CONNECTION_NOT_FOUND,
            f"No live connection with id {connection_id}",
            {"connection_id": connection_id},
        )
        self.connection_id = connection_id

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return Exception.__str__(self)


class FramingError(CmdlinkError):
    """Exception raised for malformed, oversized or unencodable frames."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E206_INVALID_FRAME,
        message: str = "Invalid frame",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class CryptoError(CmdlinkError):
    """Exception raised for cryptographic operation failures.

    This includes encryption, decryption, key generation and key import.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E100_CRYPTO_ERROR,
        message: str = "Cryptographic operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class KeyUnavailableError(CryptoError):
    """A required key has not been received or loaded yet."""

    def __init__(self, message: str = "Key material is not available", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.E109_KEY_UNAVAILABLE, message, details)


class PayloadTooLargeError(CryptoError):
    """Plaintext exceeds what a single RSA-OAEP block can carry."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            ErrorCode.E110_PAYLOAD_TOO_LARGE,
            f"Payload of {size} bytes exceeds the {limit} byte cipher limit",
            {"size": size, "max_size": limit},
        )


class BadKeyMaterialError(CryptoError):
    """PEM text could not be imported as an RSA key."""

    def __init__(self, message: str = "Invalid key material", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.E103_INVALID_KEY, message, details)


class ConfigError(CmdlinkError):
    """Exception raised for configuration failures.

    This includes loading, parsing, and validating configuration files.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
