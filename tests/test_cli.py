from __future__ import annotations

import sys
import types

import pytest

from wamux.bootstrap import BootstrapArtifact
from wamux.cli import _build_parser, build_config, load_transport, print_artifact
from wamux.config import GatewayConfig


class _Transport:
    def __init__(self, config: GatewayConfig | None = None) -> None:
        self.config = config

    def create(self, phone, credentials):
        raise NotImplementedError


@pytest.fixture
def transport_module(monkeypatch):
    mod = types.ModuleType("wamux_test_transport")
    mod.instance = _Transport()

    def build(config: GatewayConfig) -> _Transport:
        return _Transport(config)

    mod.build = build
    mod.not_a_transport = 42
    monkeypatch.setitem(sys.modules, "wamux_test_transport", mod)
    return mod


def test_load_transport_instance(transport_module) -> None:
    assert load_transport("wamux_test_transport:instance", GatewayConfig()) is (
        transport_module.instance
    )


def test_load_transport_factory_gets_config(transport_module) -> None:
    cfg = GatewayConfig()
    transport = load_transport("wamux_test_transport:build", cfg)

    assert isinstance(transport, _Transport)
    assert transport.config is cfg


def test_load_transport_errors(transport_module) -> None:
    with pytest.raises(ValueError):
        load_transport("wamux_test_transport", GatewayConfig())
    with pytest.raises(TypeError):
        load_transport("wamux_test_transport:not_a_transport", GatewayConfig())


def test_flags_override_env(monkeypatch) -> None:
    monkeypatch.setenv("WAMUX_AUTH_FOLDER", "/from/env")
    monkeypatch.setenv("WAMUX_COLLECTOR_URL", "http://env.test")
    args = _build_parser().parse_args(
        [
            "--transport",
            "x:y",
            "--auth",
            "/from/flag",
            "--pairing-code",
            "--bootstrap-timeout",
            "3",
            "628111",
            "628222",
        ]
    )

    cfg = build_config(args)

    assert args.phones == ["628111", "628222"]
    assert cfg.auth_folder == "/from/flag"
    assert cfg.collector_url == "http://env.test"
    assert cfg.bootstrap_mode == "pairing_code"
    assert cfg.bootstrap_timeout_s == 3.0


def test_print_pairing_code(capsys) -> None:
    art = BootstrapArtifact(kind="pairing_code", value="ABCD-1234", raw="ABCD-1234")

    print_artifact("628111", art)

    assert "ABCD-1234" in capsys.readouterr().out


def test_print_qr_as_text(capsys) -> None:
    art = BootstrapArtifact(kind="qr", value="data:image/svg+xml;base64,", raw="2@abc,def")

    print_artifact("628111", art)

    out = capsys.readouterr().out
    assert "628111" in out
    assert len(out.splitlines()) > 10
