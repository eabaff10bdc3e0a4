"""
Cmdlink - Public key handshake and per-frame cipher gateway.

Handshake flow (both directions run concurrently):
1. Connection becomes established
2. Each side sends "public_key<|EON|><PEM><|EOM|>" in the clear
3. The receiving side imports the PEM and stores it for that connection
4. Every later frame is RSA-OAEP encrypted with the recipient's key

The server uses one long-lived key pair loaded from PEM files and sends the
same public key to every client. A client generates a fresh key pair for
each connection.

Gateways never touch sockets directly except to push the bootstrap frame;
everything else flows through the Hooks they hand to the transport.
"""

import logging
import threading
from typing import Dict, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from . import crypto
from .constants import BOOTSTRAP_COMMAND, RSA_KEY_SIZE
from .crypto import KeyPair, PathLike
from .errors import BadKeyMaterialError, CryptoError, KeyUnavailableError
from .network import Connection, Hooks
from .protocol import Command, encode

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def _import_peer_key(command: Command) -> rsa.RSAPublicKey:
    if len(command.args) != 1:
        raise BadKeyMaterialError(
            f"Bootstrap frame carries {len(command.args)} arguments, expected 1",
            {"args": len(command.args)},
        )
    return crypto.load_public_key_pem(command.args[0])


def _send_bootstrap(conn: Connection, public_pem: str) -> None:
    conn.send(encode(BOOTSTRAP_COMMAND, [public_pem]))


class PeerKeyStore:
    """Thread-safe mapping of connection id to the peer's public key."""

    def __init__(self):
        self._keys: Dict[int, rsa.RSAPublicKey] = {}
        self._cond = threading.Condition()

    def put(self, connection_id: int, key: rsa.RSAPublicKey) -> None:
        with self._cond:
            self._keys[connection_id] = key
            self._cond.notify_all()

    def get(self, connection_id: int) -> Optional[rsa.RSAPublicKey]:
        with self._cond:
            return self._keys.get(connection_id)

    def pop(self, connection_id: int) -> Optional[rsa.RSAPublicKey]:
        with self._cond:
            return self._keys.pop(connection_id, None)

    def wait_for(self, connection_id: int, timeout: Optional[float] = None) -> bool:
        """Block until a key for connection_id is stored. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: connection_id in self._keys, timeout)

    def clear(self) -> None:
        with self._cond:
            self._keys.clear()

    def __contains__(self, connection_id: object) -> bool:
        with self._cond:
            return connection_id in self._keys

    def __len__(self) -> int:
        with self._cond:
            return len(self._keys)


class ServerCipherGateway:
    """
    Server side of the handshake.

    Holds the server key pair and one public key per connected client.
    Without a key pair the gateway is inert: no bootstrap frame is sent and
    every encrypt/decrypt raises KeyUnavailableError.
    """

    def __init__(self, keypair: Optional[KeyPair]):
        self.keypair = keypair
        self.peer_keys = PeerKeyStore()
        self._public_pem = keypair.public_pem() if keypair else None

    @classmethod
    def from_pem_files(cls, public_path: PathLike, private_path: PathLike) -> "ServerCipherGateway":
        """
        Load the server key pair from two PEM files.

        A missing or malformed file is logged and yields an inert gateway.
        """
        try:
            keypair = crypto.load_keypair(public_path, private_path)
        except BadKeyMaterialError as e:
            logger.error(f"Failed to set up a cipher gateway for server: {e}")
            return cls(None)

        logger.info(f"Loaded server key ({keypair.key_size} bits, {crypto.fingerprint(keypair.public_key)}).")
        return cls(keypair)

    @property
    def ready(self) -> bool:
        return self.keypair is not None

    def hooks(self) -> Hooks:
        return Hooks(
            on_connected=(self._on_connected,),
            on_received=(self._on_received,),
            on_closed=(self._on_closed,),
            encrypt=self.encrypt,
            decrypt=self.decrypt,
            sealed_size=self.sealed_size,
        )

    def _on_connected(self, conn: Connection) -> None:
        """Provide a newly connected client with the server's public key."""
        if self._public_pem is None:
            logger.error(f"No server key loaded, skipping key exchange with client {conn.id}.")
            return
        logger.info(f"public key => client {conn.id}.")
        _send_bootstrap(conn, self._public_pem)

    def _on_received(self, conn: Connection, command: Command) -> None:
        """Capture a client's public key."""
        if not command.is_bootstrap:
            return
        key = _import_peer_key(command)
        self.peer_keys.put(conn.id, key)
        logger.info(f"public key received from client {conn.id} ({crypto.fingerprint(key)}).")

    def _on_closed(self, conn: Connection) -> None:
        self.peer_keys.pop(conn.id)

    def encrypt(self, conn: Connection, data: bytes) -> bytes:
        """Encrypt a frame with the public key of the client behind conn."""
        key = self.peer_keys.get(conn.id)
        if key is None:
            raise KeyUnavailableError(
                f"No public key received from client {conn.id} yet", {"connection_id": conn.id}
            )
        return crypto.encrypt(key, data)

    def decrypt(self, conn: Connection, data: bytes) -> bytes:
        """Decrypt a frame with the server's private key."""
        if self.keypair is None:
            raise KeyUnavailableError("Server private key is not loaded")
        return crypto.decrypt(self.keypair.private_key, data)

    def sealed_size(self, conn: Connection) -> Optional[int]:
        return self.keypair.block_size if self.keypair else None

    def wait_for_peer(self, connection_id: int, timeout: Optional[float] = None) -> bool:
        """Block until the client's public key has arrived."""
        return self.peer_keys.wait_for(connection_id, timeout)

    def close(self) -> None:
        """Drop all key material."""
        self.peer_keys.clear()
        self.keypair = None
        self._public_pem = None


class ClientCipherGateway:
    """
    Client side of the handshake.

    Generates a fresh key pair when the connection comes up and keeps the
    server's public key in a single slot.
    """

    def __init__(self, key_size: int = RSA_KEY_SIZE):
        self.key_size = key_size
        self.keypair: Optional[KeyPair] = None
        self._server_key: Optional[rsa.RSAPublicKey] = None
        self._ready = threading.Event()

    @property
    def server_public_key(self) -> Optional[rsa.RSAPublicKey]:
        return self._server_key

    @property
    def ready(self) -> bool:
        return self._ready.is_set() and self.keypair is not None

    def hooks(self) -> Hooks:
        return Hooks(
            on_connected=(self._on_connected,),
            on_received=(self._on_received,),
            on_closed=(self._on_closed,),
            encrypt=self.encrypt,
            decrypt=self.decrypt,
            sealed_size=self.sealed_size,
        )

    def _on_connected(self, conn: Connection) -> None:
        """Generate this connection's key pair and send the public half to the server."""
        try:
            self.keypair = KeyPair.generate(self.key_size)
        except CryptoError as e:
            logger.error(f"Failed to set up a cipher gateway for client: {e}")
            raise
        logger.info("public key => server.")
        _send_bootstrap(conn, self.keypair.public_pem())

    def _on_received(self, conn: Connection, command: Command) -> None:
        """Capture the server's public key."""
        if not command.is_bootstrap:
            return
        try:
            key = _import_peer_key(command)
        except BadKeyMaterialError as e:
            logger.error(f"Failed to set up a cipher gateway for client: {e}")
            raise
        self._server_key = key
        self._ready.set()
        logger.info(f"public key received ({crypto.fingerprint(key)}).")

    def _on_closed(self, conn: Connection) -> None:
        self._ready.clear()
        self._server_key = None
        self.keypair = None

    def encrypt(self, conn: Connection, data: bytes) -> bytes:
        """Encrypt a frame with the server's public key."""
        if self._server_key is None:
            raise KeyUnavailableError("Server public key has not been received")
        return crypto.encrypt(self._server_key, data)

    def decrypt(self, conn: Connection, data: bytes) -> bytes:
        """Decrypt a frame with this connection's private key."""
        if self.keypair is None:
            raise KeyUnavailableError("Client private key has not been generated")
        return crypto.decrypt(self.keypair.private_key, data)

    def sealed_size(self, conn: Connection) -> Optional[int]:
        return self.keypair.block_size if self.keypair else None

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the server's public key has arrived."""
        return self._ready.wait(timeout)

    def close(self) -> None:
        """Drop all key material."""
        self._ready.clear()
        self._server_key = None
        self.keypair = None
