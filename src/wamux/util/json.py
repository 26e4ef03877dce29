from __future__ import annotations

import base64
import dataclasses
import json
from typing import Any

# Transports keep key material as bytes; these are stored the same way
# Baileys' BufferJSON does so auth folders stay interchangeable.
_BUFFER_TAG = "Buffer"


def _default(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return {"type": _BUFFER_TAG, "data": base64.b64encode(bytes(obj)).decode("ascii")}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _object_hook(obj: dict[str, Any]) -> Any:
    if obj.get("type") == _BUFFER_TAG and isinstance(obj.get("data"), str):
        return base64.b64decode(obj["data"].encode("ascii"))
    return obj


def dumps(obj: Any, *, indent: int | None = None) -> str:
    return json.dumps(obj, default=_default, indent=indent, sort_keys=True)


def loads(data: str) -> Any:
    return json.loads(data, object_hook=_object_hook)
