from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from ..constants import DEFAULT_SENDER_NAME, QUOTED_PLACEHOLDER
from ..jid import is_group_jid, is_newsletter_jid, is_status_broadcast, phone_from_jid

logger = logging.getLogger(__name__)

GroupResolver = Callable[[str], Awaitable[str | None]]

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Content slots that ride along with the real payload and say nothing about its type.
_ENVELOPE_KEYS = frozenset({"messageContextInfo", "senderKeyDistributionMessage"})

_CAPTIONED = ("imageMessage", "videoMessage", "documentMessage")


@dataclass(frozen=True, slots=True)
class ReplyContext:
    original_message_id: str | None
    original_sender_phone: str | None
    quoted_body: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "originalMessageId": self.original_message_id,
            "originalSender": self.original_sender_phone,
            "repliedMessage": self.quoted_body,
        }


@dataclass(frozen=True, slots=True)
class CanonicalMessage:
    message_id: str
    sender_phone: str
    sender_name: str
    receiver: str
    body: str | None
    timestamp: str
    is_group: bool
    from_self: bool
    group_name: str | None = None
    reply: ReplyContext | None = None

    @property
    def forwardable(self) -> bool:
        return bool(self.body)

    def to_payload(self) -> dict[str, Any]:
        """Collector wire shape."""

        out: dict[str, Any] = {
            "messageId": self.message_id,
            "sender": self.sender_phone,
            "senderName": self.sender_name,
            "receiver": self.receiver,
            "message": self.body,
            "datetime": self.timestamp,
            "isGroup": self.is_group,
            "groupName": self.group_name,
            "fromMe": self.from_self,
        }
        if self.reply is not None:
            out["replyDetails"] = self.reply.to_payload()
        return out


def _field(obj: Any, name: str) -> Any:
    """Read `name` from a mapping or an attribute-style (protobuf) object."""

    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _text(obj: Any, name: str) -> str | None:
    v = _field(obj, name)
    return v if isinstance(v, str) and v else None


def _content_keys(message: Any) -> list[str]:
    if isinstance(message, Mapping):
        return [k for k, v in message.items() if v is not None]
    list_fields = getattr(message, "ListFields", None)
    if callable(list_fields):
        return [fd.name for fd, _ in list_fields()]
    return []


def is_reaction(message: Any) -> bool:
    keys = [k for k in _content_keys(message) if k not in _ENVELOPE_KEYS]
    return bool(keys) and keys[0] == "reactionMessage"


def extract_body(message: Any) -> str | None:
    """
    User-visible text of a message, or None for content without text.

    Priority: plain conversation, extended text, then the caption of an
    image, video or document.
    """

    body = _text(message, "conversation")
    if body:
        return body
    body = _text(_field(message, "extendedTextMessage"), "text")
    if body:
        return body
    for slot in _CAPTIONED:
        body = _text(_field(message, slot), "caption")
        if body:
            return body
    return None


def _context_info(message: Any) -> Any:
    for slot in ("extendedTextMessage", *_CAPTIONED):
        ctx = _field(_field(message, slot), "contextInfo")
        if ctx is not None:
            return ctx
    return None


def extract_reply(message: Any) -> ReplyContext | None:
    ctx = _context_info(message)
    quoted = _field(ctx, "quotedMessage")
    if quoted is None:
        return None

    quoted_body = (
        _text(quoted, "conversation")
        or _text(_field(quoted, "extendedTextMessage"), "text")
        or QUOTED_PLACEHOLDER
    )
    participant = _text(ctx, "participant")
    return ReplyContext(
        original_message_id=_text(ctx, "stanzaId"),
        original_sender_phone=phone_from_jid(participant) if participant else None,
        quoted_body=quoted_body,
    )


def epoch_seconds(value: Any) -> int:
    """
    Coerce a transport timestamp to int seconds.

    Accepts ints, numeric strings, and protobuf-JSON longs (`{"low", "high"}`).
    """

    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        return int(float(value)) if value.strip() else 0
    low = _field(value, "low")
    if low is not None:
        high = _field(value, "high") or 0
        return (int(high) << 32) | (int(low) & 0xFFFFFFFF)
    return int(value)


def format_timestamp(seconds: int, *, tz: dt.tzinfo | None = None) -> str:
    if tz is None:
        moment = dt.datetime.fromtimestamp(seconds)
    else:
        moment = dt.datetime.fromtimestamp(seconds, tz=tz)
    return moment.strftime(TIMESTAMP_FORMAT)


def skip_reason(raw: Any) -> str | None:
    """
    Why `raw` yields no canonical message, or None if it should be normalized.

    Checked in order: no payload, status/newsletter origin, pure reaction.
    """

    message = _field(raw, "message")
    if not message:
        return "no_payload"
    chat = _text(_field(raw, "key"), "remoteJid")
    if is_status_broadcast(chat) or is_newsletter_jid(chat):
        return "broadcast"
    if is_reaction(message):
        return "reaction"
    return None


class MessageNormalizer:
    def __init__(self, *, tz: dt.tzinfo | None = None) -> None:
        self.tz = tz

    async def normalize(
        self,
        raw: Any,
        own_identity: str | None,
        *,
        resolve_group: GroupResolver | None = None,
    ) -> CanonicalMessage | None:
        reason = skip_reason(raw)
        if reason is not None:
            logger.debug("event=message_skipped reason=%s", reason)
            return None

        key = _field(raw, "key")
        message = _field(raw, "message")
        chat = _text(key, "remoteJid") or ""
        from_self = bool(_field(key, "fromMe"))

        if from_self:
            sender_phone = phone_from_jid(own_identity)
        else:
            sender_phone = phone_from_jid(_text(key, "participant") or chat)

        is_group = is_group_jid(chat)
        group_name: str | None = None
        if is_group and resolve_group is not None:
            try:
                group_name = await resolve_group(chat)
            except Exception as e:
                logger.warning("event=group_name_failed chat=%s error=%r", chat, e)

        return CanonicalMessage(
            message_id=_text(key, "id") or "",
            sender_phone=sender_phone,
            sender_name=_text(raw, "pushName") or DEFAULT_SENDER_NAME,
            receiver=chat,
            body=extract_body(message),
            timestamp=format_timestamp(epoch_seconds(_field(raw, "messageTimestamp")), tz=self.tz),
            is_group=is_group,
            from_self=from_self,
            group_name=group_name,
            reply=extract_reply(message),
        )
