from __future__ import annotations

import asyncio
import logging
import os
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from ..constants import CREDS_FILENAME
from ..exceptions import CredentialStoreError
from ..util import json as bufferjson
from ..util.asyncio import KeyedLock
from .record import CredentialRecord, record_from_dict

logger = logging.getLogger(__name__)

_PATH_LOCKS = KeyedLock()


class CredentialStore(Protocol):
    async def load(self, phone: str) -> CredentialRecord: ...

    async def on_update(self, phone: str, data: Mapping[str, Any]) -> CredentialRecord: ...

    async def delete(self, phone: str) -> None: ...

    async def list_phones(self) -> list[str]: ...


def _fix_dirname(phone: str) -> str:
    return phone.replace("/", "__").replace(":", "-")


def _write_durable(path: Path, data: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as fh:
        fh.write(data)
        fh.flush()
        os.fsync(fh.fileno())
    os.replace(tmp, path)


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text("utf-8")
    except FileNotFoundError:
        return None


def _list_dirs(root: Path) -> list[str]:
    if not root.is_dir():
        return []
    return sorted(p.name for p in root.iterdir() if p.is_dir() and not p.is_symlink())


class MultiFileCredentialStore:
    """
    One folder per phone number under `root`, holding `creds.json`.

    The folder layout matches a Baileys-style multi-file auth state so existing
    auth directories can be rehydrated as-is: every sub-folder is a phone.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    def folder_for(self, phone: str) -> Path:
        return self.root / _fix_dirname(phone)

    def _creds_path(self, phone: str) -> Path:
        return self.folder_for(phone) / CREDS_FILENAME

    async def load(self, phone: str) -> CredentialRecord:
        path = self._creds_path(phone)
        async with _PATH_LOCKS.hold(path):
            raw = await asyncio.to_thread(_read_text, path)
        if raw is None:
            logger.debug("event=creds_new phone=%s", phone)
            return CredentialRecord(phone=phone)
        try:
            return record_from_dict(phone, bufferjson.loads(raw))
        except (ValueError, TypeError) as e:
            raise CredentialStoreError(f"failed to load creds from {path}: {e}") from e

    async def on_update(self, phone: str, data: Mapping[str, Any]) -> CredentialRecord:
        """
        Persist a new credential blob and return the stored record.

        The write is flushed and atomically swapped in before this returns.
        """

        path = self._creds_path(phone)
        async with _PATH_LOCKS.hold(path):
            raw = await asyncio.to_thread(_read_text, path)
            version = 0
            if raw is not None:
                try:
                    version = record_from_dict(phone, bufferjson.loads(raw)).version
                except (ValueError, TypeError):
                    logger.warning("event=creds_overwrite_corrupt phone=%s path=%s", phone, path)
            record = CredentialRecord(phone=phone, data=dict(data), version=version + 1)
            try:
                await asyncio.to_thread(
                    _write_durable, path, bufferjson.dumps(record.to_dict(), indent=2)
                )
            except (OSError, TypeError) as e:
                raise CredentialStoreError(f"failed to save creds to {path}: {e}") from e
        logger.debug("event=creds_saved phone=%s version=%d", phone, record.version)
        return record

    async def delete(self, phone: str) -> None:
        folder = self.folder_for(phone)
        async with _PATH_LOCKS.hold(folder / CREDS_FILENAME):
            if not folder.exists():
                logger.info("event=creds_delete_absent phone=%s", phone)
                return
            await asyncio.to_thread(shutil.rmtree, folder, True)
        logger.info("event=creds_deleted phone=%s", phone)

    async def list_phones(self) -> list[str]:
        return await asyncio.to_thread(_list_dirs, self.root)
