#!/usr/bin/env python3
"""
rpcctl - ReflectRPC CLI

Command-line interface for invoking methods on a ReflectRPC server.

Usage:
    rpcctl call         - Invoke a remote method
    rpcctl discover     - Find a server by name on the local network
"""

import sys
import argparse
from pathlib import Path
from typing import List, Optional

from reflectrpc import __version__
from reflectrpc.config import Config, DEFAULT_CONFIG_PATH
from reflectrpc.errors import RPCError, TransportError
from reflectrpc.net import discover_server
from reflectrpc.protocol import InvokeMessage, InvokeStatusCode, split_parameters
from reflectrpc.rpc import RPCClient


class RpcCtl:
    """rpcctl CLI application."""

    def __init__(self, config: Config):
        """Initialize CLI with loaded configuration."""
        self.config = config

    def call(
        self,
        object_name: str,
        method_name: str,
        params: List[str],
        shorthand: Optional[str] = None,
        asynchronous: bool = False,
    ) -> int:
        """Invoke a remote method and print the result."""
        c = self.config.client
        values = list(params)
        if shorthand:
            values.extend(split_parameters(shorthand))

        try:
            message = InvokeMessage(object_name, method_name, values, asynchronous)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        client = RPCClient(
            c.host,
            c.port,
            framing=c.framing,
            read_timeout=c.read_timeout,
            connect_timeout=c.connect_timeout,
        )
        try:
            result = client.call_message(message)
        except TransportError as e:
            print(f"Failed to connect to {c.host}:{c.port}: {e.message}", file=sys.stderr)
            return 1
        except RPCError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        finally:
            client.close()

        print(f"{result.object_method or message.object_method}: {result.status_code.name}")
        if result.status_code == InvokeStatusCode.SUCCESS_AND_RETURN:
            print(f"  Type:    {result.return_type}")
            print(f"  Value:   {result.return_value!r}")
        elif result.exception_message:
            print(f"  Error:   {result.exception_message}")

        return 0 if result.succeeded else 2

    def discover(self, server_name: str, timeout: float) -> int:
        """Broadcast for a named server and print its address."""
        d = self.config.discovery
        found = discover_server(
            server_name,
            self.config.client.port,
            timeout=timeout,
            broadcast_address=d.broadcast_address,
        )
        if found is None:
            print(f"Server '{server_name}' not found", file=sys.stderr)
            return 1

        print(f"{server_name}: {found[0]}:{found[1]}")
        return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="ReflectRPC CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  call        Invoke a remote method
  discover    Find a server by name

Examples:
  rpcctl call Calc Add 2 3
  rpcctl call Calc Sum --params "[1,2,3]"
  rpcctl call Player Play --async
  rpcctl -H 192.168.1.10 -p 2023 call Calc Add 0x10 0B11
  rpcctl discover demo
""",
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Configuration file path",
    )
    parser.add_argument("-H", "--host", help="Server address")
    parser.add_argument("-p", "--port", type=int, help="Server port")
    parser.add_argument(
        "--framing",
        choices=["raw", "length"],
        help="Message framing (must match the server)",
    )
    parser.add_argument(
        "-t", "--timeout",
        type=float,
        help="Response timeout in seconds",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"rpcctl {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # call command
    call_parser = subparsers.add_parser("call", help="Invoke a remote method")
    call_parser.add_argument("object", help="Registered object name")
    call_parser.add_argument("method", help="Method name")
    call_parser.add_argument("params", nargs="*", help="Parameters")
    call_parser.add_argument(
        "--params",
        dest="shorthand",
        metavar="LIST",
        help="Shorthand parameter list, e.g. \"'a b',[1,2],3\"",
    )
    call_parser.add_argument(
        "--async",
        dest="asynchronous",
        action="store_true",
        help="Don't wait for the method to finish",
    )

    # discover command
    discover_parser = subparsers.add_parser("discover", help="Find a server by name")
    discover_parser.add_argument("name", help="Server name")
    discover_parser.add_argument(
        "--broadcast",
        metavar="ADDR",
        help="Broadcast address",
    )

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = Config.load(args.config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if args.host:
        config.client.host = args.host
    if args.port is not None:
        config.client.port = args.port
    if args.framing:
        config.client.framing = args.framing
    if args.timeout is not None:
        config.client.read_timeout = args.timeout
        config.discovery.timeout = args.timeout

    try:
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    cli = RpcCtl(config)

    # Dispatch command
    if args.command == "call":
        return cli.call(
            args.object,
            args.method,
            args.params,
            shorthand=args.shorthand,
            asynchronous=args.asynchronous,
        )
    elif args.command == "discover":
        if args.broadcast:
            config.discovery.broadcast_address = args.broadcast
        return cli.discover(args.name, config.discovery.timeout)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
