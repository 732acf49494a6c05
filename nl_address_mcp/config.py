from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

DEFAULT_BASE_URL = "https://berthub.eu/pcode"
DEFAULT_HTTP_ADDR = ":8080"
SSE_PATH = "/sse"


class ConfigError(Exception):
    """Invalid or unreadable server configuration."""


def load_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Server config not found at {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping")
    return data


def split_host_port(addr: str) -> Tuple[str, int]:
    """
    Split a listen address of the form ``host:port`` or ``[ipv6]:port``.

    The host may be empty (``:8080`` listens on all interfaces). The port
    must be numeric.
    """
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or addr[end + 1:end + 2] != ":":
            raise ConfigError(f"Failed to split host and port: {addr!r}")
        host, port_str = addr[1:end], addr[end + 2:]
    else:
        host, sep, port_str = addr.rpartition(":")
        if not sep:
            raise ConfigError(f"Failed to split host and port: missing port in address {addr!r}")
        if ":" in host:
            raise ConfigError(f"Failed to split host and port: too many colons in address {addr!r}")
    if not port_str.isdigit() or int(port_str) > 65535:
        raise ConfigError(f"Failed to split host and port: invalid port in address {addr!r}")
    return host, int(port_str)


@dataclass(frozen=True)
class ServerSettings:
    """Process-wide settings, fixed at startup."""

    name: str = "nl-address-mcp"
    http_addr: str = DEFAULT_HTTP_ADDR
    use_stdio: bool = True
    use_sse: bool = False
    log_level: str = "INFO"
    shutdown_timeout: float = 5.0
    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 5.0
    max_connections: int = 100
    max_keepalive_connections: int = 20

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ServerSettings":
        server_cfg = config.get("server") or {}
        service_cfg = config.get("address_service") or {}
        http_limits = service_cfg.get("http_limits") or {}
        defaults = cls()
        try:
            return cls(
                name=str(server_cfg.get("name", defaults.name)),
                http_addr=str(server_cfg.get("http", defaults.http_addr)),
                use_stdio=bool(server_cfg.get("stdio", defaults.use_stdio)),
                use_sse=bool(server_cfg.get("sse", defaults.use_sse)),
                log_level=str(server_cfg.get("log_level", defaults.log_level)).upper(),
                shutdown_timeout=float(server_cfg.get("shutdown_timeout", defaults.shutdown_timeout)),
                base_url=str(service_cfg.get("base_url", defaults.base_url)).rstrip("/"),
                request_timeout=float(service_cfg.get("timeout", defaults.request_timeout)),
                max_connections=int(http_limits.get("max_connections", defaults.max_connections)),
                max_keepalive_connections=int(
                    http_limits.get("max_keepalive_connections", defaults.max_keepalive_connections)
                ),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid config value: {exc}") from exc

    def with_overrides(self, **overrides: Optional[Any]) -> "ServerSettings":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "base_url" in changes:
            changes["base_url"] = str(changes["base_url"]).rstrip("/")
        if "log_level" in changes:
            changes["log_level"] = str(changes["log_level"]).upper()
        return replace(self, **changes)

    def listen_host_port(self) -> Tuple[str, int]:
        return split_host_port(self.http_addr)


def sse_endpoint(settings: ServerSettings) -> str:
    """Public URL of the SSE endpoint; an empty listen host becomes ``localhost``."""
    host, port = settings.listen_host_port()
    if not host:
        host = "localhost"
    if ":" in host:
        host = f"[{host}]"
    return f"http://{host}:{port}{SSE_PATH}"
