from __future__ import annotations

import random

import pytest

from wamux.config import GatewayConfig, ReconnectPolicy


def test_defaults() -> None:
    cfg = GatewayConfig()

    assert cfg.auth_folder == "./auth_info"
    assert cfg.collector_url is None
    assert cfg.bootstrap_timeout_s == 10.0
    assert cfg.bootstrap_mode == "qr"


def test_from_env() -> None:
    cfg = GatewayConfig.from_env(
        {
            "WAMUX_AUTH_FOLDER": "/var/lib/wamux",
            "WAMUX_COLLECTOR_URL": "http://collector.test/api",
            "WAMUX_COLLECTOR_TIMEOUT": "5",
            "WAMUX_BOOTSTRAP_TIMEOUT": "2.5",
            "WAMUX_BOOTSTRAP_MODE": "pairing_code",
            "WAMUX_RECONNECT_INITIAL_DELAY": "0.5",
            "WAMUX_RECONNECT_MAX_DELAY": "30",
            "WAMUX_BREAKER_THRESHOLD": "4",
            "WAMUX_BREAKER_COOLDOWN": "120",
        }
    )

    assert cfg.auth_folder == "/var/lib/wamux"
    assert cfg.collector_url == "http://collector.test/api"
    assert cfg.collector_timeout_s == 5.0
    assert cfg.bootstrap_timeout_s == 2.5
    assert cfg.bootstrap_mode == "pairing_code"
    assert cfg.reconnect.initial_delay_s == 0.5
    assert cfg.reconnect.max_delay_s == 30.0
    assert cfg.reconnect.breaker_threshold == 4
    assert cfg.reconnect.breaker_cooldown_s == 120.0


def test_from_env_rejects_unknown_mode() -> None:
    with pytest.raises(ValueError):
        GatewayConfig.from_env({"WAMUX_BOOTSTRAP_MODE": "sms"})


def test_backoff_grows_and_caps() -> None:
    policy = ReconnectPolicy(initial_delay_s=1.0, max_delay_s=10.0, jitter=0.0)

    assert [policy.delay_for(n) for n in (1, 2, 3, 4, 5, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


def test_circuit_breaker_cooldown() -> None:
    policy = ReconnectPolicy(jitter=0.0, breaker_threshold=3, breaker_cooldown_s=90.0)

    assert not policy.circuit_open(3)
    assert policy.circuit_open(4)
    assert policy.delay_for(4) == 90.0
    assert not ReconnectPolicy(breaker_threshold=0).circuit_open(1000)


def test_jitter_stays_within_bounds() -> None:
    policy = ReconnectPolicy(initial_delay_s=10.0, max_delay_s=10.0, jitter=0.2)
    rng = random.Random(7)

    delays = [policy.delay_for(1, rng=rng) for _ in range(50)]

    assert all(8.0 <= d <= 12.0 for d in delays)
    assert len(set(delays)) > 1


def test_zero_initial_delay_means_immediate_retry() -> None:
    assert ReconnectPolicy(initial_delay_s=0.0).delay_for(5) == 0.0
