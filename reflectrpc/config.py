"""
ReflectRPC Configuration Management

Handles loading and validation of configuration from TOML file.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

import toml

from . import DEFAULT_PORT
from .dispatch.resolver import DEFAULT_METHOD_FILTERS
from .net.framing import FRAMINGS
from .net.discovery import DEFAULT_BROADCAST_ADDRESS


# Default configuration path
DEFAULT_CONFIG_PATH = Path("/etc/reflectrpc/config.toml")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ServerConfig:
    """RPC server configuration."""
    name: str = "ReflectRPC"
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    framing: str = "raw"  # raw | length
    method_filters: List[str] = field(default_factory=lambda: list(DEFAULT_METHOD_FILTERS))


@dataclass
class ClientConfig:
    """RPC client configuration."""
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    framing: str = "raw"
    read_timeout: float = 5.0  # seconds
    connect_timeout: float = 5.0  # seconds
    reconnect_interval: float = 5.0  # seconds
    reconnect_interval_long: float = 10.0  # seconds
    reconnect_threshold: int = 120  # attempts


@dataclass
class DiscoveryConfig:
    """UDP discovery configuration."""
    enabled: bool = False
    advertise_host: Optional[str] = None
    broadcast_address: str = DEFAULT_BROADCAST_ADDRESS
    timeout: float = 5.0  # seconds, client side


@dataclass
class Config:
    """
    Complete ReflectRPC configuration.
    """
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)

    # Objects to expose: name -> "module:attribute"
    objects: Dict[str, str] = field(default_factory=dict)

    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """
        Load configuration from file.

        A missing file yields the defaults.

        Args:
            config_path: Path to config file (default: /etc/reflectrpc/config.toml)

        Returns:
            Loaded configuration

        Raises:
            ValueError: If the file is not valid TOML
        """
        path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        config = cls()
        config.config_path = path

        if not path.exists():
            return config

        try:
            data = toml.load(path)
        except toml.TomlDecodeError as e:
            raise ValueError(f"Invalid config file {path}: {e}") from e

        config._apply_dict(data)
        return config

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary data to config."""
        # Top-level settings
        if "log_level" in data:
            self.log_level = str(data["log_level"]).upper()
        if "log_file" in data:
            self.log_file = Path(data["log_file"])

        # Server config
        if "server" in data:
            s = data["server"]
            if "name" in s:
                self.server.name = str(s["name"])
            if "host" in s:
                self.server.host = str(s["host"])
            if "port" in s:
                self.server.port = int(s["port"])
            if "framing" in s:
                self.server.framing = str(s["framing"]).lower()
            if "method_filters" in s:
                self.server.method_filters = [str(p) for p in s["method_filters"]]

        # Client config
        if "client" in data:
            c = data["client"]
            if "host" in c:
                self.client.host = str(c["host"])
            if "port" in c:
                self.client.port = int(c["port"])
            if "framing" in c:
                self.client.framing = str(c["framing"]).lower()
            if "read_timeout" in c:
                self.client.read_timeout = float(c["read_timeout"])
            if "connect_timeout" in c:
                self.client.connect_timeout = float(c["connect_timeout"])
            if "reconnect_interval" in c:
                self.client.reconnect_interval = float(c["reconnect_interval"])
            if "reconnect_interval_long" in c:
                self.client.reconnect_interval_long = float(c["reconnect_interval_long"])
            if "reconnect_threshold" in c:
                self.client.reconnect_threshold = int(c["reconnect_threshold"])

        # Discovery config
        if "discovery" in data:
            d = data["discovery"]
            if "enabled" in d:
                self.discovery.enabled = bool(d["enabled"])
            if "advertise_host" in d:
                self.discovery.advertise_host = str(d["advertise_host"])
            if "broadcast_address" in d:
                self.discovery.broadcast_address = str(d["broadcast_address"])
            if "timeout" in d:
                self.discovery.timeout = float(d["timeout"])

        # Exposed objects
        if "objects" in data:
            self.objects = {str(k): str(v) for k, v in data["objects"].items()}

    def validate(self) -> None:
        """
        Validate configuration.

        Raises:
            ValueError: If configuration is invalid
        """
        # Validate ports (0 = ephemeral, server only)
        if self.server.port < 0 or self.server.port > 65535:
            raise ValueError(f"Invalid server port: {self.server.port}")
        if self.client.port < 1 or self.client.port > 65535:
            raise ValueError(f"Invalid client port: {self.client.port}")

        # Validate framing
        for framing in (self.server.framing, self.client.framing):
            if framing not in FRAMINGS:
                raise ValueError(f"Invalid framing: {framing}")

        # Validate timeouts
        if self.client.read_timeout <= 0:
            raise ValueError(f"Invalid read timeout: {self.client.read_timeout}")
        if self.client.connect_timeout <= 0:
            raise ValueError(f"Invalid connect timeout: {self.client.connect_timeout}")
        if self.client.reconnect_interval <= 0 or self.client.reconnect_interval_long <= 0:
            raise ValueError("Reconnect intervals must be positive")
        if self.client.reconnect_threshold < 1:
            raise ValueError(f"Invalid reconnect threshold: {self.client.reconnect_threshold}")

        # Validate object specs
        for name, target in self.objects.items():
            if ":" not in target:
                raise ValueError(f"Object '{name}' must be 'module:attribute', got '{target}'")

        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level}")
