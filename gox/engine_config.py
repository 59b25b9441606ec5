"""
Xray engine configuration.

Builds the engine's JSON document from a ServerDescriptor and writes it to
disk. The document always has two local inbounds (SOCKS and HTTP) and three
outbounds in a fixed order: "proxy", "direct", "block". Routing sends
regional and private traffic to "direct"; everything else falls through to
the first outbound, so "proxy" must stay first.
"""

import copy
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigWriteError
from .models import ServerDescriptor

logger = logging.getLogger(__name__)

SNIFFING = {"enabled": True, "destOverride": ["http", "tls"]}

ROUTING = {
    "domainStrategy": "IPIfNonMatch",
    "rules": [
        {"type": "field", "outboundTag": "direct", "domain": ["geosite:cn"]},
        {"type": "field", "outboundTag": "direct", "ip": ["geoip:cn", "geoip:private"]},
    ],
}


@dataclass(frozen=True)
class VmessSettings:
    address: str
    port: int
    user_id: str

    def to_settings(self) -> dict:
        return {
            "vnext": [
                {
                    "address": self.address,
                    "port": self.port,
                    "users": [{"id": self.user_id, "alterId": 0, "security": "auto"}],
                }
            ]
        }


@dataclass(frozen=True)
class VlessSettings:
    address: str
    port: int
    user_id: str

    def to_settings(self) -> dict:
        return {
            "vnext": [
                {
                    "address": self.address,
                    "port": self.port,
                    "users": [{"id": self.user_id, "encryption": "none"}],
                }
            ]
        }


@dataclass(frozen=True)
class TrojanSettings:
    address: str
    port: int
    password: str

    def to_settings(self) -> dict:
        return {
            "servers": [
                {"address": self.address, "port": self.port, "password": self.password}
            ]
        }


@dataclass(frozen=True)
class ShadowsocksSettings:
    address: str
    port: int
    method: str
    password: str

    def to_settings(self) -> dict:
        return {
            "servers": [
                {
                    "address": self.address,
                    "port": self.port,
                    "method": self.method,
                    "password": self.password,
                }
            ]
        }


@dataclass(frozen=True)
class UnknownProtocol:
    """A protocol tag outside the supported set. Produces no settings."""

    protocol: str

    def to_settings(self) -> dict:
        return {}


def protocol_settings(server: ServerDescriptor):
    """Pick the settings variant for the descriptor's protocol tag."""
    if server.protocol == "vmess":
        return VmessSettings(server.address, server.port, server.uuid)
    if server.protocol == "vless":
        return VlessSettings(server.address, server.port, server.uuid)
    if server.protocol == "trojan":
        return TrojanSettings(server.address, server.port, server.password)
    if server.protocol == "shadowsocks":
        return ShadowsocksSettings(server.address, server.port, server.method, server.password)
    return UnknownProtocol(server.protocol)


def stream_settings(server: ServerDescriptor) -> dict | None:
    """Transport settings, or None for the bare TCP default."""
    if not server.network or server.network == "tcp":
        return None

    stream = {"network": server.network}
    if server.tls:
        stream["security"] = "tls"
        stream["tlsSettings"] = {"serverName": server.sni}
    if server.network == "ws":
        stream["wsSettings"] = {"path": server.path, "headers": {"Host": server.host}}
    return stream


def proxy_outbound(server: ServerDescriptor) -> dict:
    """Build the "proxy" outbound for a server."""
    variant = protocol_settings(server)
    if isinstance(variant, UnknownProtocol):
        logger.warning(
            f"Unknown protocol '{variant.protocol}' for server {server.name}, "
            "proxy outbound will have no settings"
        )

    outbound = {"tag": "proxy", "protocol": server.protocol}
    settings = variant.to_settings()
    if settings:
        outbound["settings"] = settings
    stream = stream_settings(server)
    if stream:
        outbound["streamSettings"] = stream
    return outbound


def synthesize(
    server: ServerDescriptor,
    *,
    socks_port: int = 1080,
    http_port: int = 1081,
    log_level: str = "warning",
) -> dict:
    """
    Build the engine configuration document for a server.

    Never fails: an unknown protocol yields a proxy outbound without
    settings rather than an error.
    """
    return {
        "log": {"loglevel": log_level},
        "inbounds": [
            {
                "tag": "socks-in",
                "port": socks_port,
                "protocol": "socks",
                "settings": {"auth": "noauth", "udp": True},
                "sniffing": copy.deepcopy(SNIFFING),
            },
            {
                "tag": "http-in",
                "port": http_port,
                "protocol": "http",
                "sniffing": copy.deepcopy(SNIFFING),
            },
        ],
        "outbounds": [
            proxy_outbound(server),
            {"tag": "direct", "protocol": "freedom"},
            {"tag": "block", "protocol": "blackhole"},
        ],
        "routing": copy.deepcopy(ROUTING),
    }


def write_config(document: dict, path) -> Path:
    """
    Write the document as two-space indented UTF-8 JSON.

    The file is written next to its destination, synced, then renamed into
    place, so a concurrent reader never sees a partial document.

    Raises:
        ConfigWriteError: on any filesystem failure.
    """
    path = Path(path)
    content = json.dumps(document, indent=2, ensure_ascii=False)
    tmp_name = None

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise ConfigWriteError(f"Failed to write engine config to {path}: {e}") from e
    finally:
        if tmp_name:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass

    logger.debug(f"Wrote engine config to {path}")
    return path
