"""Tests for engine configuration synthesis and writing."""

import json
import stat
import sys

import pytest
from helpers import make_server

from gox.engine_config import (
    ShadowsocksSettings,
    UnknownProtocol,
    VmessSettings,
    protocol_settings,
    synthesize,
    write_config,
)
from gox.errors import ConfigWriteError
from gox.models import ServerDescriptor


def proxy_outbound(document: dict) -> dict:
    return document["outbounds"][0]


class TestDocumentShape:
    """Every document has the same skeleton regardless of protocol."""

    @pytest.mark.parametrize("protocol", ["vmess", "vless", "trojan", "shadowsocks"])
    def test_outbounds_and_inbounds_are_fixed(self, protocol: str) -> None:
        doc = synthesize(make_server(protocol=protocol, password="pw", method="aes-128-gcm"))

        assert [o["tag"] for o in doc["outbounds"]] == ["proxy", "direct", "block"]
        assert len(doc["inbounds"]) == 2
        assert proxy_outbound(doc)["protocol"] == protocol

    def test_section_order(self) -> None:
        assert list(synthesize(make_server())) == ["log", "inbounds", "outbounds", "routing"]

    def test_inbounds(self) -> None:
        socks, http = synthesize(make_server())["inbounds"]

        assert socks == {
            "tag": "socks-in",
            "port": 1080,
            "protocol": "socks",
            "settings": {"auth": "noauth", "udp": True},
            "sniffing": {"enabled": True, "destOverride": ["http", "tls"]},
        }
        assert http == {
            "tag": "http-in",
            "port": 1081,
            "protocol": "http",
            "sniffing": {"enabled": True, "destOverride": ["http", "tls"]},
        }

    def test_listener_ports_and_log_level_are_configurable(self) -> None:
        doc = synthesize(make_server(), socks_port=2080, http_port=2081, log_level="debug")

        assert [i["port"] for i in doc["inbounds"]] == [2080, 2081]
        assert doc["log"] == {"loglevel": "debug"}

    def test_static_outbounds(self) -> None:
        _, direct, block = synthesize(make_server())["outbounds"]

        assert direct == {"tag": "direct", "protocol": "freedom"}
        assert block == {"tag": "block", "protocol": "blackhole"}

    def test_routing(self) -> None:
        routing = synthesize(make_server())["routing"]

        assert routing["domainStrategy"] == "IPIfNonMatch"
        assert routing["rules"] == [
            {"type": "field", "outboundTag": "direct", "domain": ["geosite:cn"]},
            {"type": "field", "outboundTag": "direct", "ip": ["geoip:cn", "geoip:private"]},
        ]

    def test_documents_do_not_share_mutable_sections(self) -> None:
        first = synthesize(make_server())
        first["routing"]["rules"].clear()
        first["inbounds"][0]["sniffing"]["destOverride"].append("quic")

        second = synthesize(make_server())
        assert len(second["routing"]["rules"]) == 2
        assert second["inbounds"][0]["sniffing"]["destOverride"] == ["http", "tls"]


class TestProtocolSettings:
    """The proxy outbound carries only the credentials its protocol uses."""

    def test_vmess(self) -> None:
        outbound = proxy_outbound(synthesize(make_server(address="1.2.3.4", port=443, uuid="U")))

        assert outbound["settings"] == {
            "vnext": [
                {
                    "address": "1.2.3.4",
                    "port": 443,
                    "users": [{"id": "U", "alterId": 0, "security": "auto"}],
                }
            ]
        }

    def test_vless(self) -> None:
        outbound = proxy_outbound(synthesize(make_server(protocol="vless", uuid="V")))

        (endpoint,) = outbound["settings"]["vnext"]
        assert endpoint["users"] == [{"id": "V", "encryption": "none"}]

    def test_trojan(self) -> None:
        outbound = proxy_outbound(synthesize(make_server(protocol="trojan", password="secret")))

        assert outbound["settings"] == {
            "servers": [{"address": "1.2.3.4", "port": 443, "password": "secret"}]
        }

    def test_shadowsocks(self) -> None:
        server = make_server(protocol="shadowsocks", password="secret", method="chacha20-poly1305")
        outbound = proxy_outbound(synthesize(server))

        assert outbound["settings"] == {
            "servers": [
                {
                    "address": "1.2.3.4",
                    "port": 443,
                    "method": "chacha20-poly1305",
                    "password": "secret",
                }
            ]
        }

    def test_missing_credentials_do_not_fail(self) -> None:
        server = ServerDescriptor(id="x", name="bare", protocol="shadowsocks", address="h", port=1)

        settings = proxy_outbound(synthesize(server))["settings"]

        assert settings["servers"][0]["password"] == ""
        assert settings["servers"][0]["method"] == ""

    def test_variant_selection(self) -> None:
        assert isinstance(protocol_settings(make_server()), VmessSettings)
        assert isinstance(protocol_settings(make_server(protocol="shadowsocks")), ShadowsocksSettings)
        assert protocol_settings(make_server(protocol="hysteria")) == UnknownProtocol("hysteria")

    def test_unknown_protocol_has_no_settings(self, caplog: pytest.LogCaptureFixture) -> None:
        doc = synthesize(make_server(protocol="hysteria"))

        outbound = proxy_outbound(doc)
        assert outbound == {"tag": "proxy", "protocol": "hysteria"}
        assert [o["tag"] for o in doc["outbounds"]] == ["proxy", "direct", "block"]
        assert "Unknown protocol 'hysteria'" in caplog.text


class TestStreamSettings:
    """Transport settings are attached only for non-default transports."""

    def test_websocket_with_tls(self) -> None:
        server = make_server(
            network="ws", tls=True, sni="example.com", path="/p", host="h.example.com"
        )

        stream = proxy_outbound(synthesize(server))["streamSettings"]

        assert stream == {
            "network": "ws",
            "security": "tls",
            "tlsSettings": {"serverName": "example.com"},
            "wsSettings": {"path": "/p", "headers": {"Host": "h.example.com"}},
        }

    @pytest.mark.parametrize("network", ["", "tcp"])
    def test_default_transport_has_no_stream_settings(self, network: str) -> None:
        outbound = proxy_outbound(synthesize(make_server(network=network, tls=True)))

        assert "streamSettings" not in outbound

    def test_grpc_without_tls(self) -> None:
        stream = proxy_outbound(synthesize(make_server(network="grpc", path="/ignored")))["streamSettings"]

        assert stream == {"network": "grpc"}


class TestWriteConfig:
    """The document is written as two-space indented UTF-8 JSON."""

    def test_writes_indented_json(self, tmp_path) -> None:
        doc = synthesize(make_server(network="ws", host="例え.jp"))
        path = tmp_path / "xray_config.json"

        write_config(doc, path)

        text = path.read_text(encoding="utf-8")
        assert text == json.dumps(doc, indent=2, ensure_ascii=False)
        assert json.loads(text) == doc
        assert "例え.jp" in text
        assert '\n  "inbounds": [' in text

    def test_creates_parent_directory_and_overwrites(self, tmp_path) -> None:
        path = tmp_path / "nested" / "dir" / "config.json"

        write_config({"first": 1}, path)
        write_config({"second": 2}, path)

        assert json.loads(path.read_text()) == {"second": 2}
        assert [p.name for p in path.parent.iterdir()] == ["config.json"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_world_readable(self, tmp_path) -> None:
        path = write_config({}, tmp_path / "config.json")

        assert stat.S_IMODE(path.stat().st_mode) == 0o644

    def test_failure_raises_config_write_error(self, tmp_path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")

        with pytest.raises(ConfigWriteError) as exc_info:
            write_config({}, blocker / "config.json")

        assert isinstance(exc_info.value.__cause__, OSError)
