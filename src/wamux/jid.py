from __future__ import annotations

from dataclasses import dataclass

from .constants import GROUP_SERVER, NEWSLETTER_SERVER, S_WHATSAPP_NET, STATUS_BROADCAST_JID


@dataclass(frozen=True, slots=True)
class Address:
    """
    A decoded transport address (`user[_agent][:device]@server`).
    """

    user: str
    server: str
    device: int | None = None
    agent: str | None = None


def decode_address(jid: str | None) -> Address | None:
    if not jid:
        return None
    sep = jid.find("@")
    if sep < 0:
        return None

    user_combined = jid[:sep]
    user_agent, _, device_raw = user_combined.partition(":")
    user, _, agent = user_agent.partition("_")

    device: int | None = None
    if device_raw:
        try:
            device = int(device_raw)
        except ValueError:
            device = None

    return Address(user=user, server=jid[sep + 1 :], device=device, agent=agent or None)


def phone_from_jid(jid: str | None) -> str:
    """
    User part of an address with any agent/device suffix stripped.

    `628123456789:12@s.whatsapp.net` -> `628123456789`. A value without a
    server part is returned as-is, minus the device suffix.
    """

    if not jid:
        return ""
    decoded = decode_address(jid)
    if decoded is None:
        return jid.split(":", 1)[0]
    return decoded.user


def phone_to_jid(phone: str) -> str:
    return f"{phone}@{S_WHATSAPP_NET}"


def is_group_jid(jid: str | None) -> bool:
    return bool(jid and jid.endswith("@" + GROUP_SERVER))


def is_status_broadcast(jid: str | None) -> bool:
    return jid == STATUS_BROADCAST_JID


def is_newsletter_jid(jid: str | None) -> bool:
    return bool(jid and jid.endswith("@" + NEWSLETTER_SERVER))
