from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class CredentialRecord:
    """
    Persisted authentication material for one phone number.

    `data` is owned by the transport and treated as opaque here, apart from
    reading the linked identity (`me.id`) once pairing has completed.
    `version` advances on every persisted update.
    """

    phone: str
    data: dict[str, Any] = field(default_factory=dict)
    version: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.data

    @property
    def identity(self) -> str | None:
        me = self.data.get("me")
        if isinstance(me, dict):
            ident = me.get("id")
            if isinstance(ident, str) and ident:
                return ident
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"phone": self.phone, "version": self.version, "data": self.data}


def record_from_dict(phone: str, d: Any) -> CredentialRecord:
    if not isinstance(d, dict):
        raise TypeError("credential file did not contain an object")
    data = d.get("data")
    if not isinstance(data, dict):
        raise TypeError("credential file is missing its data object")
    return CredentialRecord(phone=phone, data=data, version=int(d.get("version", 0)))
