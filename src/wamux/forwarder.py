from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import urllib.error
import urllib.request
from typing import Any

from .constants import COLLECTOR_SUCCESS_STATUS
from .exceptions import ForwardingError
from .messages.normalize import CanonicalMessage

logger = logging.getLogger(__name__)


class CollectorForwarder:
    """
    Fire-and-forget delivery of canonical messages to the collector endpoint.

    Delivery is at-most-once: a rejected or failed POST is logged and the
    message is dropped. `forward()` never raises.
    """

    def __init__(
        self,
        url: str | None,
        *,
        timeout_s: float = 15.0,
        success_status: str = COLLECTOR_SUCCESS_STATUS,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self.success_status = success_status

    def _post_json(self, payload: dict[str, Any]) -> Any:
        assert self.url is not None
        req = urllib.request.Request(
            self.url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", "User-Agent": "wamux/0.1"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            body = b""
            with contextlib.suppress(Exception):
                body = e.read()
            raise ForwardingError(f"collector http error {e.code}: {body[:200]!r}") from e
        except (urllib.error.URLError, OSError) as e:
            raise ForwardingError(f"collector unreachable: {e}") from e

        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ForwardingError(f"collector returned non-JSON body: {raw[:200]!r}") from e

    def _check_ack(self, ack: Any) -> None:
        status = ack.get("status") if isinstance(ack, dict) else None
        if status != self.success_status:
            detail = ack.get("message") if isinstance(ack, dict) else ack
            raise ForwardingError(f"collector rejected message (status={status!r}): {detail}")

    async def forward(self, message: CanonicalMessage) -> bool:
        if not self.url:
            logger.info(
                "event=forward_disabled message_id=%s sender=%s",
                message.message_id,
                message.sender_phone,
            )
            return False

        try:
            ack = await asyncio.to_thread(self._post_json, message.to_payload())
            self._check_ack(ack)
        except ForwardingError as e:
            logger.error("event=forward_failed message_id=%s error=%s", message.message_id, e)
            return False
        except Exception:
            logger.exception("event=forward_failed message_id=%s", message.message_id)
            return False

        logger.debug("event=forwarded message_id=%s", message.message_id)
        return True
