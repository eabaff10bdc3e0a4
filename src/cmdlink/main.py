"""
Cmdlink - Command line entry point.

Sub-commands:
  keygen   Write a server key pair as public.pem / private.pem
  serve    Run a server and log every command it receives
  send     Connect to a server, send one command and exit
  demo     One server, several clients, a burst of broadcast commands
"""

import argparse
import sys
import threading
import time
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .config import Config
from .constants import (
    ALL,
    BOOTSTRAP_COMMAND,
    DEFAULT_DATA_DIR,
    DEFAULT_HOST,
    DEFAULT_MAX_CONNECTIONS,
    PRIVATE_KEY_FILENAME,
    PUBLIC_KEY_FILENAME,
    RSA_KEY_SIZE,
)
from .crypto import KeyPair, save_keypair
from .errors import CmdlinkError
from .handshake import ClientCipherGateway, ServerCipherGateway
from .network import CommandClient, CommandServer, Connection, Hooks
from .protocol import Command
from .utils import configure_logging, format_args

console = Console()


def cmd_keygen(args: argparse.Namespace) -> int:
    out_dir = Path(args.out_dir).expanduser()
    public_path = out_dir / PUBLIC_KEY_FILENAME
    private_path = out_dir / PRIVATE_KEY_FILENAME

    if private_path.exists() and not args.force:
        console.print(f"[red]{private_path} already exists, use --force to overwrite[/red]")
        return 1

    keypair = KeyPair.generate(args.key_size)
    save_keypair(keypair, public_path, private_path)
    console.print(f"Wrote {public_path} and {private_path} ({args.key_size} bits)")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    config = Config(Path(args.config) if args.config else None)

    hooks = Hooks()
    if not args.plain:
        paths = config.key_paths()
        gateway = ServerCipherGateway.from_pem_files(paths["public"], paths["private"])
        if not gateway.ready:
            return 1
        hooks = gateway.hooks()

    server_ref: List[CommandServer] = []

    def echo(conn: Connection, command: Command) -> None:
        if args.echo and not command.is_bootstrap:
            server_ref[0].execute(command.name, command.args, target=conn.id)

    server = CommandServer.from_config(config, hooks=hooks.merge(Hooks(on_received=(echo,))))
    server_ref.append(server)
    if not server.establish():
        return 1

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        console.print("Shutting down server!")
    finally:
        server.close()
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    gateway = None if args.plain else ClientCipherGateway()
    replies: List[Command] = []

    def collect(conn: Connection, command: Command) -> None:
        if not command.is_bootstrap:
            replies.append(command)

    hooks = Hooks(on_received=(collect,))
    if gateway is not None:
        hooks = gateway.hooks().merge(hooks)

    client = CommandClient(args.host, args.port, hooks=hooks)
    if not client.connect():
        return 1

    try:
        if gateway is not None and not gateway.wait_until_ready(args.timeout):
            console.print("[red]Handshake did not complete in time[/red]")
            return 1
        if not client.execute(args.name, args.args):
            return 1
        # Give the server a moment to answer
        time.sleep(args.wait)
    except CmdlinkError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    finally:
        client.close()

    for reply in replies:
        console.print(f"{reply.name}  {format_args(reply.args)}")
    return 0


def run_demo(
    clients: int = 3,
    count: int = 10,
    host: str = DEFAULT_HOST,
    port: int = 0,
    encrypted: bool = True,
    timeout: float = 10.0,
    max_connections: int = DEFAULT_MAX_CONNECTIONS,
) -> Dict[str, List[Command]]:
    """
    Start one server and several clients, broadcast "hello" count times.

    Returns:
        Mapping of client name to the non-bootstrap commands it received

    Raises:
        ValueError: If clients exceeds max_connections
    """
    if clients > max_connections:
        raise ValueError(f"{clients} clients exceed the server limit of {max_connections}")

    received: Dict[str, List[Command]] = defaultdict(list)
    done = threading.Condition()

    server_gateway = ServerCipherGateway(KeyPair.generate()) if encrypted else None
    server = CommandServer(
        host,
        port,
        max_connections=max_connections,
        hooks=server_gateway.hooks() if server_gateway else Hooks(),
    )
    if not server.establish():
        raise RuntimeError("Server could not be established")

    bound_host, bound_port = server.address
    fleet = []
    try:
        for i in range(1, clients + 1):
            name = f"client-{i}"

            def record(conn: Connection, command: Command, name=name) -> None:
                if command.name == BOOTSTRAP_COMMAND:
                    return
                with done:
                    received[name].append(command)
                    done.notify_all()

            gateway = ClientCipherGateway() if encrypted else None
            hooks = Hooks(on_received=(record,))
            if gateway is not None:
                hooks = gateway.hooks().merge(hooks)

            client = CommandClient(bound_host, bound_port, hooks=hooks, name=name)
            if not client.connect():
                raise RuntimeError(f"{name} could not connect")
            fleet.append((client, gateway))

        # Every client must finish the handshake before the first encrypted frame
        deadline = time.monotonic() + timeout
        while len(server.connections) < clients and time.monotonic() < deadline:
            time.sleep(0.01)
        if server_gateway is not None:
            for connection_id in server.connections.ids():
                server_gateway.wait_for_peer(connection_id, timeout)
            for _, gateway in fleet:
                gateway.wait_until_ready(timeout)

        for i in range(count):
            console.print(f"<=== {i + 1} ===>")
            server.execute("hello", [], target=ALL)

        with done:
            done.wait_for(
                lambda: all(len(received[c.name]) >= count for c, _ in fleet),
                timeout,
            )
    finally:
        for client, _ in fleet:
            client.close()
        server.close()

    return dict(received)


def cmd_demo(args: argparse.Namespace) -> int:
    try:
        received = run_demo(args.clients, args.count, args.host, args.port, not args.plain)
    except (RuntimeError, ValueError, CmdlinkError) as e:
        console.print(f"[red]{e}[/red]")
        return 1

    table = Table(title="Commands received")
    table.add_column("Client")
    table.add_column("Count", justify="right")
    table.add_column("Commands")
    for name in sorted(received):
        commands = received[name]
        table.add_row(name, str(len(commands)), format_args([c.name for c in commands], 60))
    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmdlink",
        description="Cmdlink - encrypted command messaging over TCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cmdlink keygen                         # Write ~/.cmdlink/public.pem and private.pem
  cmdlink serve --echo                   # Serve with settings from ~/.cmdlink/config.toml
  cmdlink send 127.0.0.1 4098 hello a b  # Send one command
  cmdlink demo --clients 3 --count 10    # Local broadcast demo
        """,
    )
    parser.add_argument("--version", action="version", version=f"Cmdlink {__version__}")
    parser.add_argument("--log-level", default=None, help="Override logging level (default from config)")
    parser.add_argument("--plain-logs", action="store_true", help="Plain log lines instead of rich output")

    sub = parser.add_subparsers(dest="command", required=True)

    keygen = sub.add_parser("keygen", help="Generate a server key pair")
    keygen.add_argument("--out-dir", default=DEFAULT_DATA_DIR)
    keygen.add_argument("--key-size", type=int, default=RSA_KEY_SIZE)
    keygen.add_argument("--force", action="store_true", help="Overwrite existing key files")
    keygen.set_defaults(func=cmd_keygen)

    serve = sub.add_parser("serve", help="Run a server")
    serve.add_argument("--config", default=None, help="Path to config.toml")
    serve.add_argument("--plain", action="store_true", help="Disable the key exchange and encryption")
    serve.add_argument("--echo", action="store_true", help="Send every command back to its sender")
    serve.set_defaults(func=cmd_serve)

    send = sub.add_parser("send", help="Send one command to a server")
    send.add_argument("host")
    send.add_argument("port", type=int)
    send.add_argument("name")
    send.add_argument("args", nargs="*")
    send.add_argument("--plain", action="store_true", help="Disable the key exchange and encryption")
    send.add_argument("--timeout", type=float, default=10.0, help="Handshake timeout in seconds")
    send.add_argument("--wait", type=float, default=0.5, help="Seconds to wait for replies")
    send.set_defaults(func=cmd_send)

    demo = sub.add_parser("demo", help="Run the local broadcast demo")
    demo.add_argument("--clients", type=int, default=3)
    demo.add_argument("--count", type=int, default=10)
    demo.add_argument("--host", default=DEFAULT_HOST)
    demo.add_argument("--port", type=int, default=0, help="0 picks a free port")
    demo.add_argument("--plain", action="store_true", help="Disable the key exchange and encryption")
    demo.set_defaults(func=cmd_demo)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the cmdlink command."""
    args = build_parser().parse_args(argv)

    config_path = getattr(args, "config", None)
    try:
        config = Config(Path(config_path) if config_path else None, validate=False)
    except CmdlinkError as e:
        console.print(f"[red]{e}[/red]")
        return 1

    configure_logging(
        args.log_level or config.get("logging", "level"),
        use_rich=config.get("logging", "rich") and not args.plain_logs,
    )

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
