"""
Cmdlink - Integration tests.

End-to-end tests for the encrypted handshake, broadcast and the CLI.
"""

import pytest

from cmdlink.constants import ALL, BOOTSTRAP_COMMAND, DEFAULT_MAX_CONNECTIONS
from cmdlink.errors import PayloadTooLargeError
from cmdlink.handshake import ClientCipherGateway, ServerCipherGateway
from cmdlink.main import main, run_demo
from cmdlink.network import CommandClient, CommandServer, Hooks
from cmdlink.protocol import Command


class Inbox:
    """Records arrival order and keeps every non-bootstrap command."""

    def __init__(self):
        self.commands = []
        self.arrivals = []

    def __call__(self, conn, command):
        self.arrivals.append(command.name)
        if command.name != BOOTSTRAP_COMMAND:
            self.commands.append((conn.id, command))

    def names(self):
        return [command.name for _, command in self.commands]


@pytest.fixture
def encrypted_server(server_keypair):
    gateway = ServerCipherGateway(server_keypair)
    inbox = Inbox()
    server = CommandServer(
        "127.0.0.1", 0, max_connections=10, hooks=gateway.hooks().merge(Hooks(on_received=(inbox,)))
    )
    assert server.establish()
    server.gateway = gateway
    server.inbox = inbox
    yield server
    server.close()


@pytest.fixture
def connect_client(encrypted_server):
    clients = []

    def _connect(name="client"):
        gateway = ClientCipherGateway()
        inbox = Inbox()
        client = CommandClient(
            *encrypted_server.address, hooks=gateway.hooks().merge(Hooks(on_received=(inbox,))), name=name
        )
        assert client.connect()
        assert gateway.wait_until_ready(timeout=10.0)
        client.gateway = gateway
        client.inbox = inbox
        clients.append(client)
        return client

    yield _connect
    for client in clients:
        client.close()


def test_handshake_then_broadcast(encrypted_server, connect_client, wait_until):
    """Three clients finish the exchange and each receives ten hellos in order."""
    clients = [connect_client(f"client-{i}") for i in range(3)]
    assert wait_until(lambda: len(encrypted_server.connections) == 3)
    for connection_id in encrypted_server.connections.ids():
        assert encrypted_server.gateway.wait_for_peer(connection_id, timeout=10.0)

    for client in clients:
        assert client.gateway.ready

    for _ in range(10):
        assert encrypted_server.execute("hello", [], target=ALL) == 3

    for client in clients:
        assert wait_until(lambda: len(client.inbox.commands) == 10, timeout=10.0)
        assert [command for _, command in client.inbox.commands] == [Command("hello")] * 10
        # The server key arrived before the first hello
        assert client.inbox.arrivals == [BOOTSTRAP_COMMAND] + ["hello"] * 10


def test_client_to_server_encrypted(encrypted_server, connect_client, wait_until):
    """Client frames are sealed with the server key and decoded by the server."""
    client = connect_client()
    assert client.execute("say", ["hi there", "✓"])

    assert wait_until(lambda: encrypted_server.inbox.commands)
    assert encrypted_server.inbox.commands == [(0, Command("say", ("hi there", "✓")))]


def test_oversized_command_rejected(encrypted_server, connect_client, wait_until):
    """A frame larger than one block raises and leaves the link usable."""
    client = connect_client()
    with pytest.raises(PayloadTooLargeError):
        client.execute("big", ["x" * 300])

    assert client.connected
    assert client.execute("small")
    assert wait_until(lambda: encrypted_server.inbox.names() == ["small"])


def test_disconnect_evicts_peer_key(encrypted_server, connect_client, wait_until):
    """A closed client's key is dropped and later broadcasts skip it."""
    first = connect_client("first")
    second = connect_client("second")
    assert wait_until(lambda: len(encrypted_server.gateway.peer_keys) == 2)

    first.close()
    assert wait_until(lambda: 0 not in encrypted_server.gateway.peer_keys)
    assert wait_until(lambda: encrypted_server.connections.ids() == [1])

    assert encrypted_server.execute("after") == 1
    assert wait_until(lambda: second.inbox.names() == ["after"])


def test_plain_client_on_encrypted_server(encrypted_server, wait_until):
    """A client that never sends its key gets nothing it cannot read."""
    client = CommandClient(*encrypted_server.address)
    try:
        assert client.connect()
        assert wait_until(lambda: len(encrypted_server.connections) == 1)
        assert encrypted_server.execute("hello") == 0
    finally:
        client.close()


@pytest.mark.slow
def test_run_demo():
    """The demo delivers every hello to every client."""
    received = run_demo(clients=2, count=5, port=0)

    assert sorted(received) == ["client-1", "client-2"]
    for commands in received.values():
        assert commands == [Command("hello")] * 5


def test_run_demo_plain(monkeypatch):
    """The demo server accepts up to the default ten connections."""
    limits = []

    class RecordingServer(CommandServer):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            limits.append(self.max_connections)

    monkeypatch.setattr("cmdlink.main.CommandServer", RecordingServer)
    received = run_demo(clients=3, count=3, port=0, encrypted=False)

    assert limits == [DEFAULT_MAX_CONNECTIONS] == [10]
    assert all(len(commands) == 3 for commands in received.values())


def test_run_demo_too_many_clients():
    with pytest.raises(ValueError):
        run_demo(clients=3, max_connections=2, encrypted=False)


def test_cli_keygen(temp_dir):
    """keygen writes both files and refuses to overwrite without --force."""
    assert main(["--plain-logs", "keygen", "--out-dir", str(temp_dir), "--key-size", "1024"]) == 0
    assert (temp_dir / "public.pem").exists()
    assert (temp_dir / "private.pem").exists()

    assert main(["--plain-logs", "keygen", "--out-dir", str(temp_dir)]) == 1
