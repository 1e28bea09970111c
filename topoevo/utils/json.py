from __future__ import annotations

from typing import Any

import orjson

__all__ = ["dumps", "dumps_bytes", "loads"]

_OPTIONS = orjson.OPT_SERIALIZE_NUMPY | orjson.OPT_NON_STR_KEYS


def dumps(obj: Any) -> str:
    """Serialize *obj* to a ``str`` using orjson (bytes → str)."""
    return orjson.dumps(obj, option=_OPTIONS).decode()


def dumps_bytes(obj: Any, *, indent: bool = False) -> bytes:
    option = _OPTIONS | orjson.OPT_INDENT_2 if indent else _OPTIONS
    return orjson.dumps(obj, option=option)


loads = orjson.loads
