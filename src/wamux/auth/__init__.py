from __future__ import annotations

from .record import CredentialRecord
from .store import CredentialStore, MultiFileCredentialStore

__all__ = [
    "CredentialRecord",
    "CredentialStore",
    "MultiFileCredentialStore",
]
