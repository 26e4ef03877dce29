from __future__ import annotations

import os
import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

from .constants import DEFAULT_AUTH_FOLDER

BootstrapMode = Literal["qr", "pairing_code"]


@dataclass(slots=True)
class ReconnectPolicy:
    """
    Backoff applied between a dropped connection and its replacement.

    `attempt` counts consecutive drops since the session was last connected.
    Once it exceeds `breaker_threshold` the session is parked in the
    circuit-open state and retried every `breaker_cooldown_s`.
    """

    initial_delay_s: float = 1.0
    max_delay_s: float = 60.0
    multiplier: float = 2.0
    jitter: float = 0.2
    breaker_threshold: int = 8
    breaker_cooldown_s: float = 300.0

    def circuit_open(self, attempt: int) -> bool:
        return self.breaker_threshold > 0 and attempt > self.breaker_threshold

    def delay_for(self, attempt: int, *, rng: random.Random | None = None) -> float:
        if self.circuit_open(attempt):
            base = self.breaker_cooldown_s
        else:
            exp = max(attempt - 1, 0)
            base = min(self.max_delay_s, self.initial_delay_s * (self.multiplier**exp))
        if base <= 0:
            return 0.0
        if self.jitter <= 0:
            return base
        spread = base * self.jitter
        r = rng or random
        return max(0.0, base + r.uniform(-spread, spread))


@dataclass(slots=True)
class GatewayConfig:
    auth_folder: str = DEFAULT_AUTH_FOLDER

    # No collector => messages are normalized and logged but not sent.
    collector_url: str | None = None
    collector_timeout_s: float = 15.0

    bootstrap_timeout_s: float = 10.0
    bootstrap_mode: BootstrapMode = "qr"

    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> GatewayConfig:
        """
        Build a config from `WAMUX_*` environment variables.

        Unset variables keep their defaults.
        """

        e = os.environ if env is None else env
        cfg = cls()

        if e.get("WAMUX_AUTH_FOLDER"):
            cfg.auth_folder = e["WAMUX_AUTH_FOLDER"]
        if e.get("WAMUX_COLLECTOR_URL"):
            cfg.collector_url = e["WAMUX_COLLECTOR_URL"]
        if e.get("WAMUX_COLLECTOR_TIMEOUT"):
            cfg.collector_timeout_s = float(e["WAMUX_COLLECTOR_TIMEOUT"])
        if e.get("WAMUX_BOOTSTRAP_TIMEOUT"):
            cfg.bootstrap_timeout_s = float(e["WAMUX_BOOTSTRAP_TIMEOUT"])

        mode = e.get("WAMUX_BOOTSTRAP_MODE")
        if mode:
            if mode not in ("qr", "pairing_code"):
                raise ValueError(
                    f"WAMUX_BOOTSTRAP_MODE must be 'qr' or 'pairing_code', got {mode!r}"
                )
            cfg.bootstrap_mode = mode  # type: ignore[assignment]

        if e.get("WAMUX_RECONNECT_INITIAL_DELAY"):
            cfg.reconnect.initial_delay_s = float(e["WAMUX_RECONNECT_INITIAL_DELAY"])
        if e.get("WAMUX_RECONNECT_MAX_DELAY"):
            cfg.reconnect.max_delay_s = float(e["WAMUX_RECONNECT_MAX_DELAY"])
        if e.get("WAMUX_BREAKER_THRESHOLD"):
            cfg.reconnect.breaker_threshold = int(e["WAMUX_BREAKER_THRESHOLD"])
        if e.get("WAMUX_BREAKER_COOLDOWN"):
            cfg.reconnect.breaker_cooldown_s = float(e["WAMUX_BREAKER_COOLDOWN"])

        return cfg
