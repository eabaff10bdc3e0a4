"""
Cmdlink - Encrypted command messaging over TCP

A minimal bidirectional messaging layer: peers exchange named commands
with string arguments over a delimiter-based framing, optionally secured
by an RSA public key handshake and per-frame RSA-OAEP encryption.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__license__ = "MIT"

# Import core modules for easy access
from .config import Config
from .constants import ALL, APP_NAME, BOOTSTRAP_COMMAND, VERSION
from .errors import (
    BadKeyMaterialError,
    CmdlinkError,
    ConfigError,
    ConnectionNotFound,
    CryptoError,
    ErrorCode,
    FramingError,
    KeyUnavailableError,
    PayloadTooLargeError,
    TransportError,
)
from .handshake import ClientCipherGateway, PeerKeyStore, ServerCipherGateway
from .network import CommandClient, CommandServer, Connection, Hooks
from .protocol import Command, FrameBuffer, decode, encode
from .registry import ConnectionRegistry

__all__ = [
    "ALL",
    "APP_NAME",
    "BOOTSTRAP_COMMAND",
    "VERSION",
    "BadKeyMaterialError",
    "ClientCipherGateway",
    "CmdlinkError",
    "Command",
    "CommandClient",
    "CommandServer",
    "Config",
    "ConfigError",
    "Connection",
    "ConnectionNotFound",
    "ConnectionRegistry",
    "CryptoError",
    "ErrorCode",
    "FrameBuffer",
    "FramingError",
    "Hooks",
    "KeyUnavailableError",
    "PayloadTooLargeError",
    "PeerKeyStore",
    "ServerCipherGateway",
    "TransportError",
    "__license__",
    "__version__",
    "decode",
    "encode",
]
