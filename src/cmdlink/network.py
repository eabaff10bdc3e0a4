"""
Cmdlink - Threaded TCP transport for named commands.

This module implements:
- CommandServer: bind/listen, accept loop on its own thread, one receive
  thread per accepted connection, registry-backed unicast and broadcast
- CommandClient: single outgoing connection with its own receive thread
- Hooks: immutable, composable extension points (connected, sent, received,
  closed, encrypt, decrypt) injected at construction time

All I/O is blocking. execute() runs on the caller's thread and returns once
every write has completed. Faults on one connection close that connection
only; setup faults are logged and leave the component inert.
"""

import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .config import Config
from .connection_fsm import ConnectionEvent, ConnectionState, ConnectionStateMachine
from .constants import (
    ALL,
    BOOTSTRAP_LOG_MARKER,
    DEFAULT_BACKLOG,
    DEFAULT_HOST,
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_PACING_DELAY,
    DEFAULT_SERVER_PORT,
    RECV_SIZE,
)
from .errors import (
    CmdlinkError,
    ConnectionNotFound,
    ErrorCode,
    FramingError,
    KeyUnavailableError,
    TransportError,
)
from .protocol import Command, FrameBuffer, decode, encode, is_bootstrap_frame
from .registry import ConnectionRegistry

# Configure logging for connection diagnostics
logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

ConnectionHook = Callable[["Connection"], None]
CommandHook = Callable[["Connection", Command], None]
SentHook = Callable[[Command, int], None]
CipherHook = Callable[["Connection", bytes], bytes]
SealedSizeHook = Callable[["Connection"], Optional[int]]


@dataclass(frozen=True)
class Hooks:
    """
    Extension points called by the transport.

    Observers run in tuple order. Compose hook sets with merge() instead of
    mutating them, so a handshake layer can be placed ahead of application
    observers:

        hooks = gateway.hooks().merge(Hooks(on_received=(print_command,)))

    encrypt/decrypt transform whole frames right before a write and right
    after a read. sealed_size reports the ciphertext block length the local
    side expects, or None while the local key does not exist yet.
    """

    on_connected: Tuple[ConnectionHook, ...] = ()
    on_sent: Tuple[SentHook, ...] = ()
    on_received: Tuple[CommandHook, ...] = ()
    on_closed: Tuple[ConnectionHook, ...] = ()
    encrypt: Optional[CipherHook] = None
    decrypt: Optional[CipherHook] = None
    sealed_size: Optional[SealedSizeHook] = None

    def merge(self, other: "Hooks") -> "Hooks":
        """
        Combine two hook sets; self's observers run first.

        Raises:
            ValueError: If both sets define a cipher
        """
        for attr in ("encrypt", "decrypt", "sealed_size"):
            if getattr(self, attr) is not None and getattr(other, attr) is not None:
                raise ValueError(f"Both hook sets define {attr}")

        return Hooks(
            on_connected=self.on_connected + other.on_connected,
            on_sent=self.on_sent + other.on_sent,
            on_received=self.on_received + other.on_received,
            on_closed=self.on_closed + other.on_closed,
            encrypt=self.encrypt or other.encrypt,
            decrypt=self.decrypt or other.decrypt,
            sealed_size=self.sealed_size or other.sealed_size,
        )

    @property
    def encrypted(self) -> bool:
        return self.encrypt is not None or self.decrypt is not None


def describe(command: Command) -> str:
    """Render a command for logs, hiding bootstrap key material."""
    if command.is_bootstrap:
        return f"{command.name} {BOOTSTRAP_LOG_MARKER}"
    if not command.args:
        return command.name
    return f"{command.name} {list(command.args)}"


class Connection:
    """One live socket plus its lifecycle state and receive buffer."""

    def __init__(
        self,
        connection_id: int,
        sock: socket.socket,
        address: Tuple = (),
        label: str = "",
    ):
        self.id = connection_id
        self.sock = sock
        self.address = address
        self.fsm = ConnectionStateMachine(label=f"{label}#{connection_id}" if label else "")
        self.frames = FrameBuffer()
        self._send_lock = threading.Lock()
        self._close_callbacks: List[ConnectionHook] = []

    @property
    def state(self) -> ConnectionState:
        return self.fsm.get_state()

    @property
    def is_established(self) -> bool:
        return self.fsm.is_established()

    def add_close_callback(self, callback: ConnectionHook) -> None:
        self._close_callbacks.append(callback)

    def send(self, data: bytes) -> None:
        """
        Write all bytes to the socket.

        Raises:
            TransportError: If the connection is not established or the write fails
        """
        if not self.is_established:
            raise TransportError(
                ErrorCode.E203_CONNECTION_CLOSED,
                f"Connection {self.id} is {self.state.name}",
                {"connection_id": self.id},
            )
        try:
            with self._send_lock:
                self.sock.sendall(data)
        except OSError as e:
            raise TransportError(
                ErrorCode.E204_SEND_FAILED,
                f"Write to connection {self.id} failed: {e}",
                {"connection_id": self.id, "error": str(e)},
            )

    def close(
        self,
        event: ConnectionEvent = ConnectionEvent.CLOSE_REQUESTED,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Close the connection once. Later calls return False and do nothing.

        Close callbacks (registry removal, key eviction) run exactly once.
        """
        if not self.fsm.transition(event, reason):
            return False

        try:
            # Wakes a receive thread blocked in recv()
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Shutdown of connection {self.id} reported: {e}")
        self.sock.close()
        self.fsm.transition(ConnectionEvent.CLOSED)

        for callback in self._close_callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Close callback error for connection {self.id}: {e}", exc_info=True)
        return True

    def __repr__(self) -> str:
        return f"Connection(id={self.id}, state={self.state.name}, address={self.address})"


class _Endpoint:
    """Receive loop and hook plumbing shared by server and client."""

    def __init__(
        self,
        name: str,
        hooks: Optional[Hooks] = None,
        pacing_delay: float = DEFAULT_PACING_DELAY,
        recv_size: int = RECV_SIZE,
    ):
        self.name = name
        self.hooks = hooks or Hooks()
        self.pacing_delay = pacing_delay
        self.recv_size = recv_size
        self.log = logging.getLogger(f"{__name__}.{name}")

    def _start_receive_loop(self, conn: Connection) -> threading.Thread:
        thread = threading.Thread(
            target=self._receive_loop,
            args=(conn,),
            name=f"{self.name}-recv-{conn.id}",
            daemon=True,
        )
        thread.start()
        return thread

    def _receive_loop(self, conn: Connection) -> None:
        """Read, reassemble, decrypt, decode and dispatch until the connection ends."""
        self.log.debug(f"Receive loop started for connection {conn.id}")
        try:
            while conn.is_established:
                data = conn.sock.recv(self.recv_size)
                if not data:
                    self.log.info(f"Connection {conn.id} closed by peer.")
                    conn.close(ConnectionEvent.CONNECTION_LOST, "peer disconnected")
                    break

                conn.frames.feed(data)
                while conn.is_established:
                    command = self._next_command(conn)
                    if command is None:
                        break
                    self._dispatch_received(conn, command)

        except OSError as e:
            if conn.is_established:
                self.log.warning(f"One client had disconnected: connection {conn.id}, {e}.")
                conn.close(ConnectionEvent.CONNECTION_LOST, str(e))
        except CmdlinkError as e:
            # Framing, crypto and handshake faults are isolated to this connection
            self.log.error(f"Dropping connection {conn.id}: {e}")
            conn.close(ConnectionEvent.ERROR_OCCURRED, str(e))
        except Exception as e:
            # Faults raised by injected cipher hooks
            self.log.error(f"Unexpected error on connection {conn.id}: {e}", exc_info=True)
            conn.close(ConnectionEvent.ERROR_OCCURRED, str(e))
        finally:
            self.log.debug(f"Receive loop ended for connection {conn.id}")

    def _next_command(self, conn: Connection) -> Optional[Command]:
        """
        Pull one command out of the connection's buffer.

        Bootstrap frames always travel in the clear; everything else is
        decrypted first when a decrypt hook is attached.
        """
        hooks = self.hooks
        sealed_size = None
        if hooks.decrypt is not None and hooks.sealed_size is not None:
            sealed_size = hooks.sealed_size(conn)

        raw = conn.frames.next_frame(sealed_size)
        if raw is None:
            return None

        if hooks.decrypt is not None and not is_bootstrap_frame(raw):
            raw = hooks.decrypt(conn, raw)

        result = decode(raw)
        if result is None or result[1] != len(raw):
            raise FramingError(
                ErrorCode.E206_INVALID_FRAME,
                f"Frame from connection {conn.id} is not exactly one command",
                {"connection_id": conn.id, "size": len(raw)},
            )
        return result[0]

    def _dispatch_received(self, conn: Connection, command: Command) -> None:
        self.log.info(f"Received a command from {conn.id}: {describe(command)}.")
        for hook in self.hooks.on_received:
            try:
                hook(conn, command)
            except CmdlinkError:
                raise
            except Exception as e:
                self.log.error(f"Received hook failed for {command.name}: {e}", exc_info=True)

    def _fire_connected(self, conn: Connection) -> bool:
        """Run connected hooks. A Cmdlink fault here closes the connection."""
        for hook in self.hooks.on_connected:
            try:
                hook(conn)
            except CmdlinkError as e:
                self.log.error(f"Connected hook failed for connection {conn.id}: {e}")
                conn.close(ConnectionEvent.ERROR_OCCURRED, str(e))
                return False
            except Exception as e:
                self.log.error(f"Connected hook error for connection {conn.id}: {e}", exc_info=True)
        return True

    def _fire_sent(self, command: Command, target: int) -> None:
        for hook in self.hooks.on_sent:
            try:
                hook(command, target)
            except Exception as e:
                self.log.error(f"Sent hook error for {command.name}: {e}", exc_info=True)

    def _handle_closed(self, conn: Connection) -> None:
        self.log.info(f"Connection {conn.id} closed.")
        for hook in self.hooks.on_closed:
            try:
                hook(conn)
            except Exception as e:
                self.log.error(f"Closed hook error for connection {conn.id}: {e}", exc_info=True)

    def _seal(self, conn: Connection, command: Command, frame: bytes) -> bytes:
        if self.hooks.encrypt is None or command.is_bootstrap:
            return frame
        return self.hooks.encrypt(conn, frame)

    def _pace(self) -> None:
        if self.pacing_delay > 0:
            time.sleep(self.pacing_delay)


class CommandServer(_Endpoint):
    """TCP server that accepts up to max_connections clients and exchanges commands."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_SERVER_PORT,
        backlog: int = DEFAULT_BACKLOG,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        hooks: Optional[Hooks] = None,
        name: str = "server",
        pacing_delay: float = DEFAULT_PACING_DELAY,
        recv_size: int = RECV_SIZE,
    ):
        super().__init__(name, hooks, pacing_delay, recv_size)
        self.host = host
        self.port = port
        self.backlog = backlog
        self.max_connections = max_connections
        self.connections = ConnectionRegistry()

        self._next_id = 0
        self._sock: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._closing = False
        self._lifecycle_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config, hooks: Optional[Hooks] = None, name: str = "server") -> "CommandServer":
        return cls(
            host=config.get("server", "host"),
            port=config.get("server", "port"),
            backlog=config.get("server", "backlog"),
            max_connections=config.get("server", "max_connections"),
            hooks=hooks,
            name=name,
            pacing_delay=config.get("transport", "pacing_delay"),
            recv_size=config.get("transport", "recv_size"),
        )

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """Bound (host, port); useful after binding port 0."""
        if self._sock is None:
            return None
        return self._sock.getsockname()[:2]

    @property
    def running(self) -> bool:
        return self._sock is not None

    def establish(self) -> bool:
        """
        Bind, listen and start the accept loop.

        Returns:
            True if the server is listening, False if setup failed
        """
        if self._sock is not None:
            self.log.warning("Server is already established.")
            return True

        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.listen(self.backlog)
        except OSError as e:
            sock.close()
            error = TransportError(
                ErrorCode.E208_BIND_FAILED,
                f"Failed to establish a server on {self.host}:{self.port}, {e}.",
                {"host": self.host, "port": self.port},
            )
            self.log.error(str(error))
            return False

        self._sock = sock
        self._closing = False
        self.log.info(f"Listening on {self.address[0]}:{self.address[1]} (backlog {self.backlog}).")

        self._accept_thread = threading.Thread(
            target=self._accept_loop, args=(sock,), name=f"{self.name}-accept", daemon=True
        )
        self._accept_thread.start()
        return True

    def _accept_loop(self, listener: socket.socket) -> None:
        """Accept sockets until max_connections have been registered or the server closes."""
        accepted = 0
        while accepted < self.max_connections and not self._closing:
            try:
                client_sock, address = listener.accept()
            except OSError as e:
                if not self._closing:
                    self.log.error(f"Accept failed: {e}")
                break

            conn = None
            with self._lifecycle_lock:
                # close() snapshots the registry under the same lock
                if not self._closing:
                    connection_id = self._next_id
                    self._next_id += 1
                    accepted += 1

                    conn = Connection(connection_id, client_sock, address, label=self.name)
                    conn.fsm.transition(ConnectionEvent.TCP_CONNECTED)
                    conn.add_close_callback(self._handle_closed)

                    # Registered before hooks fire so execute() can already target it
                    self.connections.insert(connection_id, conn)

            if conn is None:
                self.log.debug(f"Dropping socket from {address}, server is closing.")
                client_sock.close()
                break

            self.log.info(f"Established a connection with client: {conn.id}.")
            self._start_receive_loop(conn)
            self._fire_connected(conn)

        self.log.info(f"Accept loop finished after {accepted} connection(s).")

    def _handle_closed(self, conn: Connection) -> None:
        self.connections.remove(conn.id)
        super()._handle_closed(conn)

    def execute(self, name: str, args: Sequence[str] = (), target: int = ALL) -> int:
        """
        Send a command to one client or, with target=ALL, to every client.

        Returns:
            Number of connections the frame was written to

        Raises:
            FramingError: If a field contains a reserved token
            PayloadTooLargeError: If the encrypted frame exceeds one cipher block
        """
        command = Command(name, tuple(args))
        frame = encode(command.name, command.args)

        if target == ALL:
            recipients = self.connections.snapshot()
        else:
            try:
                recipients = [(target, self.connections.get(target))]
            except ConnectionNotFound as e:
                self.log.warning(f"Cannot send {name}: {e}")
                return 0

        delivered = 0
        for connection_id, conn in recipients:
            try:
                conn.send(self._seal(conn, command, frame))
                delivered += 1
            except KeyUnavailableError as e:
                self.log.error(f"Cannot encrypt {name} for client {connection_id}: {e}")
            except TransportError as e:
                self.log.warning(f"Send to client {connection_id} failed: {e}")
                conn.close(ConnectionEvent.ERROR_OCCURRED, str(e))

        where = "all clients" if target == ALL else f"client {target}"
        self.log.info(f"Sent a command to {where}: {describe(command)}.")
        self._fire_sent(command, target)
        self._pace()
        return delivered

    def close(self) -> None:
        """Stop accepting and close every live connection."""
        with self._lifecycle_lock:
            self._closing = True
            live = self.connections.snapshot()
        if self._sock is not None:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                self.log.debug(f"Listener shutdown reported: {e}")
            self._sock.close()
            self._sock = None

        for _, conn in live:
            conn.close()

        if self._accept_thread is not None:
            self._accept_thread.join(timeout=1.0)
            self._accept_thread = None
        self.log.info("Server closed.")


class CommandClient(_Endpoint):
    """TCP client holding a single connection to a CommandServer."""

    CONNECTION_ID = 0

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_SERVER_PORT,
        hooks: Optional[Hooks] = None,
        name: str = "client",
        pacing_delay: float = DEFAULT_PACING_DELAY,
        recv_size: int = RECV_SIZE,
    ):
        super().__init__(name, hooks, pacing_delay, recv_size)
        self.host = host
        self.port = port
        self.connection: Optional[Connection] = None

    @classmethod
    def from_config(cls, config: Config, hooks: Optional[Hooks] = None, name: str = "client") -> "CommandClient":
        return cls(
            host=config.get("client", "host"),
            port=config.get("client", "port"),
            hooks=hooks,
            name=name,
            pacing_delay=config.get("transport", "pacing_delay"),
            recv_size=config.get("transport", "recv_size"),
        )

    @property
    def connected(self) -> bool:
        return self.connection is not None and self.connection.is_established

    def connect(self) -> bool:
        """
        Connect, start the receive loop, then run connected hooks.

        Returns:
            True if connected, False if the connection could not be made
        """
        if self.connected:
            self.log.warning("Client is already connected.")
            return True

        try:
            sock = socket.create_connection((self.host, self.port))
        except OSError as e:
            error = TransportError(
                ErrorCode.E201_CONNECTION_FAILED,
                f"Failed to connect to a server, {e}.",
                {"host": self.host, "port": self.port},
            )
            self.log.error(str(error))
            return False

        conn = Connection(self.CONNECTION_ID, sock, (self.host, self.port), label=self.name)
        conn.fsm.transition(ConnectionEvent.TCP_CONNECTED)
        conn.add_close_callback(self._handle_closed)
        self.connection = conn
        self.log.info(f"Connected to the server with address, port: {self.host}, {self.port}.")

        self._start_receive_loop(conn)
        return self._fire_connected(conn)

    def execute(self, name: str, args: Sequence[str] = ()) -> bool:
        """
        Send a command to the server.

        Returns:
            True if the frame was written

        Raises:
            FramingError: If a field contains a reserved token
            PayloadTooLargeError: If the encrypted frame exceeds one cipher block
        """
        conn = self.connection
        if conn is None or not conn.is_established:
            self.log.error(f"Cannot send {name}: not connected.")
            return False

        command = Command(name, tuple(args))
        frame = encode(command.name, command.args)

        try:
            conn.send(self._seal(conn, command, frame))
        except KeyUnavailableError as e:
            self.log.error(f"Cannot encrypt {name}: {e}")
            return False
        except TransportError as e:
            self.log.warning(f"Send failed: {e}")
            conn.close(ConnectionEvent.ERROR_OCCURRED, str(e))
            return False

        self.log.info(f"Sent a command: {describe(command)}.")
        self._fire_sent(command, conn.id)
        self._pace()
        return True

    def close(self) -> None:
        """Close the client connection."""
        if self.connection is not None:
            self.connection.close()
