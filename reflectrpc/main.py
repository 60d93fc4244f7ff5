"""
ReflectRPC Server Daemon Entry Point

Runs an RPCServer exposing the objects listed in the configuration:

    [server]
    name = "demo"
    port = 2023

    [objects]
    Calc = "mypackage.calc:Calculator"

An "objects" entry naming a class registers a new instance of it when
the class can be built without arguments, otherwise the class itself
(exposing its static methods).
"""

import argparse
import importlib
import inspect
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Optional

from . import __version__
from .config import Config, DEFAULT_CONFIG_PATH
from .rpc import RPCServer


logger = logging.getLogger("reflectrpc")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Configure root logging once for the process."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def load_object(target: str) -> Any:
    """
    Import "module:attribute" (attribute may be dotted).

    Raises:
        ValueError: If the target is malformed
        ImportError: If the module cannot be imported
        AttributeError: If the attribute does not exist
    """
    module_name, _, attr_path = target.partition(":")
    if not module_name or not attr_path:
        raise ValueError(f"Expected 'module:attribute', got '{target}'")

    obj: Any = importlib.import_module(module_name)
    for part in attr_path.split("."):
        obj = getattr(obj, part)

    if inspect.isclass(obj) and _default_constructible(obj):
        return obj()
    return obj


def _default_constructible(cls: type) -> bool:
    try:
        signature = inspect.signature(cls)
    except (TypeError, ValueError):
        return False
    return all(
        p.default is not p.empty or p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD)
        for p in signature.parameters.values()
    )


def build_server(config: Config) -> RPCServer:
    """Create a server from configuration and register its objects."""
    server = RPCServer(
        host=config.server.host,
        port=config.server.port,
        name=config.server.name,
        framing=config.server.framing,
        method_filters=config.server.method_filters,
        discovery=config.discovery.enabled,
        advertise_host=config.discovery.advertise_host,
    )
    for name, target in config.objects.items():
        server.register_object(name, load_object(target))
        logger.info(f"Exposing '{name}' from {target}")
    return server


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="ReflectRPC server daemon")
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Configuration file path",
    )
    parser.add_argument(
        "-o", "--object",
        action="append",
        default=[],
        metavar="NAME=MODULE:ATTR",
        help="Expose an object (repeatable)",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        help="Override the server port",
    )
    parser.add_argument(
        "--discovery",
        action="store_true",
        help="Answer UDP discovery broadcasts",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"reflectrpcd {__version__}",
    )

    args = parser.parse_args()

    try:
        config = Config.load(args.config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    for item in args.object:
        name, sep, target = item.partition("=")
        if not sep:
            print(f"Invalid --object '{item}', expected NAME=MODULE:ATTR", file=sys.stderr)
            return 1
        config.objects[name.strip()] = target.strip()
    if args.port is not None:
        config.server.port = args.port
    if args.discovery:
        config.discovery.enabled = True
    if args.verbose:
        config.log_level = "DEBUG"

    try:
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_file)

    try:
        server = build_server(config)
    except (ValueError, ImportError, AttributeError) as e:
        logger.error(f"Cannot expose objects: {e}")
        return 1

    shutdown = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}")
        shutdown.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        server.start()
    except OSError as e:
        logger.error(f"Cannot start server: {e}")
        return 1

    try:
        while not shutdown.wait(1.0):
            pass
    finally:
        server.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
