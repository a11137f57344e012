from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional
import collections.abc

import yaml

from pile.pile_datatypes import Block, HostHandle
from pile.pile_printer import Printer


# --------------------------
# Helpers
# --------------------------

def _to_builtin(obj: Any) -> Any:
    """Converts PILE values into plain JSON/YAML-friendly Python data."""
    if isinstance(obj, list):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, collections.abc.Mapping):
        return {str(k): _to_builtin(v) for k, v in obj.items()}
    # bool is a subclass of int, so check it before numbers
    if obj is None or isinstance(obj, (bool, str)):
        return obj
    if isinstance(obj, float):
        # Integral numbers read as ints (3 not 3.0)
        if obj.is_integer() and abs(obj) < 1e16:
            return int(obj)
        return obj
    if isinstance(obj, int):
        return obj
    if isinstance(obj, (Block, HostHandle)):
        return Printer().pformat(obj)
    return str(obj)


def detect_format(path: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name among: 'json', 'yaml'.
    Uses the file extension first; falls back to simple data sniffing.
    """
    if path:
        ext = Path(path).suffix.lower()
        if ext == ".json":
            return 'json'
        if ext in (".yaml", ".yml"):
            return 'yaml'
    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
        return 'yaml'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(text: str, *, fmt: Optional[str] = None, path: Optional[str] = None) -> Any:
    """
    Convert JSON or YAML text to native Python structures.
    If fmt is None, uses the path extension, then sniffing. YAML is a
    superset of JSON, so anything unrecognised is read as YAML.
    """
    f = (fmt or detect_format(path, text) or 'yaml').lower()
    if f == 'json':
        return json.loads(text)
    if f == 'yaml':
        return yaml.safe_load(text)
    raise ValueError(f"Unsupported data format: {fmt!r}")


def serialize(value: Any, *, fmt: str, pretty: bool = True) -> str:
    """
    Convert a PILE value (or a list of them, such as a final stack) into text.
    - fmt: 'pile' | 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    if f == 'pile':
        if isinstance(value, list):
            return "\n".join(Printer().pformat(v) for v in value)
        return Printer().pformat(value)
    built = _to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
]
