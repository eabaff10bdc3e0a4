"""
Cmdlink - Global Constants and Configuration Values

This module defines all constants used throughout the Cmdlink package.
Wire tokens, network defaults and logging formats are centralized here.

Version: 1.0.0
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "Cmdlink"

# Wire Tokens (out-of-band sentinels, never escaped)
END_SIGN = "<|EOM|>"  # terminates a frame
ARG_SIGN = "<|EON|>"  # separates the command name from its arguments
SEP_SIGN = "<|EOA|>"  # separates consecutive arguments
RESERVED_TOKENS = (END_SIGN, ARG_SIGN, SEP_SIGN)

# Handshake
BOOTSTRAP_COMMAND = "public_key"
BOOTSTRAP_PREFIX = BOOTSTRAP_COMMAND.encode("utf-8")

# Broadcast target for CommandServer.execute
ALL = -1

# Network Constants
DEFAULT_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 4098
DEFAULT_BACKLOG = 10
DEFAULT_MAX_CONNECTIONS = 10
RECV_SIZE = 1024  # bytes per blocking read

# Message Limits
MAX_FRAME_SIZE = 64 * 1024  # 64 KB without a terminator is treated as garbage

# Pacing (seconds slept after each execute, 0 disables)
DEFAULT_PACING_DELAY = 0.0

# Cryptography Constants
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537
OAEP_HASH_SIZE = 32  # SHA-256 digest length in bytes

# File Paths
DEFAULT_DATA_DIR = "~/.cmdlink"
CONFIG_FILENAME = "config.toml"
PUBLIC_KEY_FILENAME = "public.pem"
PRIVATE_KEY_FILENAME = "private.pem"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
BOOTSTRAP_LOG_MARKER = "<public key>"
