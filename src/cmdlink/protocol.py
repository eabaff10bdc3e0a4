"""
Cmdlink - Wire protocol definitions.

This module defines the delimiter-based framing used on every connection.
A frame is the UTF-8 encoding of:

    <name>[<|EON|><arg0><|EOA|><arg1>...]<|EOM|>

There is no escaping: names and arguments must never contain one of the
three reserved tokens. Frames are not length-prefixed, so a receiver keeps
a FrameBuffer per connection and extracts complete frames as bytes arrive.

When a link is encrypted every frame except the bootstrap key exchange is
carried as one RSA-OAEP block of fixed size ("sealed frame").
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from .constants import (
    ARG_SIGN,
    BOOTSTRAP_COMMAND,
    BOOTSTRAP_PREFIX,
    END_SIGN,
    MAX_FRAME_SIZE,
    RESERVED_TOKENS,
    SEP_SIGN,
)
from .errors import ErrorCode, FramingError

_END_BYTES = END_SIGN.encode("utf-8")


@dataclass(frozen=True)
class Command:
    """A named command with an ordered list of string arguments."""

    name: str
    args: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        # Accept any sequence but store a tuple so commands stay hashable
        object.__setattr__(self, "args", tuple(self.args))

    @property
    def is_bootstrap(self) -> bool:
        return self.name == BOOTSTRAP_COMMAND


def encode(name: str, args: Sequence[str] = ()) -> bytes:
    """
    Encode a command into a single frame.

    Raises:
        FramingError: If the name or an argument contains a reserved token
    """
    for value in (name, *args):
        for token in RESERVED_TOKENS:
            if token in value:
                raise FramingError(
                    ErrorCode.E211_RESERVED_TOKEN,
                    f"Field contains reserved token {token!r}",
                    {"token": token},
                )

    text = name
    if args:
        text += ARG_SIGN + SEP_SIGN.join(args)
    return (text + END_SIGN).encode("utf-8")


def decode(data: bytes) -> Optional[Tuple[Command, int]]:
    """
    Decode the first frame found in data.

    Returns:
    - The decoded Command
    - Total bytes consumed (frame including its terminator)

    Returns None if no terminator is present yet. Bytes after the
    terminator are left for the next call.

    Raises:
        FramingError: If the frame is not valid UTF-8
    """
    end = data.find(_END_BYTES)
    if end < 0:
        return None

    try:
        text = bytes(data[:end]).decode("utf-8")
    except UnicodeDecodeError as e:
        raise FramingError(
            ErrorCode.E206_INVALID_FRAME, f"Frame is not valid UTF-8: {e}", {"error": str(e)}
        )

    parts = text.split(ARG_SIGN, 1)
    name = parts[0]
    args: List[str] = parts[1].split(SEP_SIGN) if len(parts) > 1 else []

    return Command(name, tuple(args)), end + len(_END_BYTES)


def decode_all(data: bytes) -> List[Command]:
    """Decode every complete frame in data, in order. Trailing partial bytes are ignored."""
    commands = []
    offset = 0
    while True:
        result = decode(data[offset:])
        if result is None:
            return commands
        command, consumed = result
        commands.append(command)
        offset += consumed


def is_bootstrap_frame(data: bytes) -> bool:
    """Cheap check on raw, possibly encrypted, bytes for the clear-text key exchange."""
    return bytes(data[: len(BOOTSTRAP_PREFIX)]) == BOOTSTRAP_PREFIX


class FrameBuffer:
    """
    Accumulates bytes read from one connection and yields whole frames.

    A frame may span several reads and one read may hold several frames;
    both cases are handled by keeping unconsumed bytes between calls.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE):
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()

    def feed(self, data: bytes) -> None:
        self._buffer.extend(data)

    def __len__(self) -> int:
        return len(self._buffer)

    def next_frame(self, sealed_size: Optional[int] = None) -> Optional[bytes]:
        """
        Remove and return the raw bytes of the next complete frame.

        Args:
            sealed_size: Ciphertext block size when the link is encrypted,
                None for a clear-text link

        Returns:
            Frame bytes, or None if more data is needed

        Raises:
            FramingError: If the buffer grows past max_frame_size without a terminator
        """
        buf = self._buffer
        if not buf:
            return None

        # A short buffer that could still turn into the bootstrap prefix must wait
        prefix_len = min(len(buf), len(BOOTSTRAP_PREFIX))
        maybe_bootstrap = bytes(buf[:prefix_len]) == BOOTSTRAP_PREFIX[:prefix_len]

        if sealed_size is not None and not maybe_bootstrap:
            if len(buf) < sealed_size:
                return None
            frame = bytes(buf[:sealed_size])
            del buf[:sealed_size]
            return frame

        end = buf.find(_END_BYTES)
        if end < 0:
            if len(buf) > self.max_frame_size:
                raise FramingError(
                    ErrorCode.E207_FRAME_TOO_LARGE,
                    f"No frame terminator within {self.max_frame_size} bytes",
                    {"buffered": len(buf), "max_size": self.max_frame_size},
                )
            return None

        end += len(_END_BYTES)
        frame = bytes(buf[:end])
        del buf[:end]
        return frame

    def frames(self, sealed_size: Optional[int] = None) -> Iterable[bytes]:
        """Yield every complete frame currently buffered."""
        while True:
            frame = self.next_frame(sealed_size)
            if frame is None:
                return
            yield frame
