"""
`wamux` command: run the gateway against a transport implementation.

    wamux --transport mypkg.transport:build --collector-url https://... 628123456789

Phones with stored credentials are resumed first; phones given on the command
line are registered and their QR (or pairing code) is printed.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import importlib
import logging
from collections.abc import Sequence
from typing import Any

import qrcode

from .bootstrap import BootstrapArtifact
from .config import GatewayConfig
from .exceptions import WamuxError
from .registry import EV_SESSION_UPDATE, SessionRegistry
from .session import SessionView
from .transport import Transport
from .util.log import configure_logging

logger = logging.getLogger(__name__)


def load_transport(spec: str, config: GatewayConfig) -> Transport:
    """
    Resolve `module:attr` to a transport.

    `attr` may be a transport instance or a factory called with the config.
    """

    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"transport must look like 'package.module:factory', got {spec!r}")
    target: Any = getattr(importlib.import_module(module_name), attr)
    if callable(target) and not hasattr(target, "create"):
        target = target(config)
    if not hasattr(target, "create"):
        raise TypeError(f"{spec} did not resolve to a transport (missing create())")
    return target  # type: ignore[no-any-return]


def print_artifact(phone: str, artifact: BootstrapArtifact) -> None:
    if artifact.kind == "pairing_code":
        print(f"\n[{phone}] enter this code in WhatsApp -> Linked devices: {artifact.value}\n")
        return

    print(f"\n[{phone}] scan this QR in WhatsApp -> Settings -> Linked devices -> Link a device\n")
    qr = qrcode.QRCode(border=1)
    qr.add_data(artifact.raw)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="wamux", description="Run the multi-session WhatsApp gateway."
    )
    ap.add_argument("phones", nargs="*", help="phone numbers to register")
    ap.add_argument(
        "--transport", required=True, help="transport factory as 'package.module:attr'"
    )
    ap.add_argument("--auth", help="auth folder (default: $WAMUX_AUTH_FOLDER or ./auth_info)")
    ap.add_argument("--collector-url", help="collector endpoint (default: $WAMUX_COLLECTOR_URL)")
    ap.add_argument(
        "--pairing-code",
        action="store_true",
        help="link with a pairing code instead of a QR",
    )
    ap.add_argument("--bootstrap-timeout", type=float, help="seconds to wait for a code")
    ap.add_argument("--log-level", default="INFO", help="logging level (default: INFO)")
    ap.add_argument("--log-json", action="store_true", help="log as JSON lines")
    return ap


def build_config(args: argparse.Namespace) -> GatewayConfig:
    cfg = GatewayConfig.from_env()
    if args.auth:
        cfg.auth_folder = args.auth
    if args.collector_url:
        cfg.collector_url = args.collector_url
    if args.pairing_code:
        cfg.bootstrap_mode = "pairing_code"
    if args.bootstrap_timeout is not None:
        cfg.bootstrap_timeout_s = args.bootstrap_timeout
    return cfg


async def run(config: GatewayConfig, transport: Transport, phones: Sequence[str]) -> None:
    registry = SessionRegistry(transport, config=config)

    last_shown: dict[str, str] = {}

    def on_update(view: SessionView) -> None:
        # Refreshed codes after the initial register() wait are printed as they come.
        if not view.has_artifact or view.phone not in registry:
            return
        artifact = registry.bootstrap_artifact(view.phone)
        if artifact is not None and last_shown.get(view.phone) != artifact.raw:
            last_shown[view.phone] = artifact.raw
            print_artifact(view.phone, artifact)

    registry.events.on(EV_SESSION_UPDATE, on_update)

    try:
        resumed = await registry.rehydrate()
        if resumed:
            logger.info("event=sessions_resumed count=%d", len(resumed))

        for phone in phones:
            if phone in registry:
                logger.info("event=register_skipped phone=%s reason=already_live", phone)
                continue
            try:
                artifact = await registry.register(phone)
            except WamuxError as e:
                logger.error("event=register_failed phone=%s error=%s", phone, e)
                continue
            if artifact is None:
                logger.info("event=register_resumed phone=%s", phone)

        await asyncio.Event().wait()
    finally:
        await registry.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(args.log_level.upper(), json_lines=args.log_json)

    config = build_config(args)
    transport = load_transport(args.transport, config)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run(config, transport, args.phones))
    return 0
