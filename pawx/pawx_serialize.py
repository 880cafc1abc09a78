from __future__ import annotations

import datetime
import json
import math
import re
from typing import Any, Optional

import yaml

from pawx.pawx_errors import PawxRuntimeError, PawxTypeError

ENCODINGS = {
    "utf8": "utf-8",
    "utf-8": "utf-8",
    "ascii": "ascii",
    "latin1": "latin-1",
    "latin-1": "latin-1",
}


# --------------------------
# Helpers
# --------------------------

def normalize_encoding(encoding: Optional[str]) -> str:
    if encoding is None:
        return "utf-8"
    if not isinstance(encoding, str) or encoding.lower() not in ENCODINGS:
        raise PawxTypeError(f"unsupported encoding {encoding!r} (use utf8, ascii or latin1)")
    return ENCODINGS[encoding.lower()]


def decode_bytes(data: bytes, encoding: Optional[str] = None) -> str:
    enc = normalize_encoding(encoding)
    try:
        return bytes(data).decode(enc)
    except UnicodeDecodeError as e:
        raise PawxRuntimeError(f"cannot decode bytes as {enc}: {e.reason} at position {e.start}")


def encode_text(text: str, encoding: Optional[str] = None) -> bytes:
    enc = normalize_encoding(encoding)
    try:
        return text.encode(enc)
    except UnicodeEncodeError as e:
        raise PawxRuntimeError(f"cannot encode text as {enc}: {e.reason} at position {e.start}")


def bytes_from_array(items: list) -> bytes:
    out = bytearray()
    for b in items:
        if isinstance(b, bool) or not isinstance(b, (int, float)) or not 0 <= b <= 255 \
                or float(b) != int(b):
            raise PawxTypeError("expected an array of integers 0..255")
        out.append(int(b))
    return bytes(out)


def _encoding_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = re.search(r'charset\s*=\s*([^\s;]+)', content_type, re.IGNORECASE)
    if m:
        return m.group(1).strip('"').strip("'")
    return None


def to_builtin(value: Any, _active: Optional[set] = None) -> Any:
    """Convert a PAWX value into plain Python data for json/yaml."""
    from pawx.pawx_datatypes import PawxObject, PawxInstance, ErrorValue
    active = _active or set()
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, float) and not math.isfinite(value):
            raise PawxTypeError("cannot serialize NaN or Infinity")
        return value
    if isinstance(value, ErrorValue):
        return {"name": value.kind, "message": value.message}
    if isinstance(value, (list, tuple, PawxObject, PawxInstance)):
        if id(value) in active:
            raise PawxTypeError("cannot serialize a cyclic structure")
        active = active | {id(value)}
        if isinstance(value, (list, tuple)):
            return [to_builtin(x, active) for x in value]
        items = value.props if isinstance(value, PawxObject) else value.fields
        return {k: to_builtin(v, active) for k, v in items.items()}
    from pawx.pawx_interpreter import type_name
    raise PawxTypeError(f"cannot serialize a value of type {type_name(value)}")


def from_builtin(obj: Any) -> Any:
    """Convert parsed json/yaml data into PAWX values (numbers become floats)."""
    from pawx.pawx_datatypes import PawxObject
    if isinstance(obj, dict):
        return PawxObject({str(k): from_builtin(v) for k, v in obj.items()})
    if isinstance(obj, (list, tuple)):
        return [from_builtin(x) for x in obj]
    if isinstance(obj, bool) or obj is None or isinstance(obj, str):
        return obj
    if isinstance(obj, (int, float)):
        return float(obj)
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, bytes):
        return obj
    return str(obj)


def detect_format(content_type: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns 'json' or 'yaml' from a Content-Type, falling back to sniffing the data.
    """
    ct = (content_type or "").lower()
    if 'json' in ct:
        return 'json'
    if 'yaml' in ct:
        return 'yaml'
    if data_hint is not None and not ct:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
    return None


def _reject_constant(name: str):
    raise PawxRuntimeError(f"invalid JSON: {name} is not a JSON value")


# --------------------------
# Public API
# --------------------------

def parse_text(text: str, fmt: str) -> Any:
    """Strictly parse json or yaml text into PAWX values."""
    try:
        if fmt == 'json':
            return from_builtin(json.loads(text, parse_constant=_reject_constant))
        if fmt == 'yaml':
            return from_builtin(yaml.safe_load(text))
    except json.JSONDecodeError as e:
        raise PawxRuntimeError(f"invalid JSON: {e.msg} (line {e.lineno}, col {e.colno})")
    except yaml.YAMLError as e:
        raise PawxRuntimeError(f"invalid YAML: {e}")
    raise PawxTypeError(f"unsupported format {fmt!r}")


def deserialize(data: bytes | str, *, content_type: Optional[str] = None, fmt: Optional[str] = None) -> Any:
    """
    Convert wire data to PAWX values. Unknown formats, and bodies that fail to
    parse, come back as text.
    """
    enc = _encoding_from_content_type(content_type) or 'utf-8'
    text = data.decode(enc, errors='replace') if isinstance(data, (bytes, bytearray)) else str(data)
    f = fmt or detect_format(content_type, text)
    if f in ('json', 'yaml'):
        try:
            return parse_text(text, f)
        except PawxRuntimeError:
            return text
    return text


def serialize(value: Any, *, fmt: str, pretty: bool = True) -> str:
    """Convert a PAWX value into 'json' or 'yaml' text."""
    f = (fmt or '').lower()
    built = to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False, allow_unicode=True)
    raise PawxTypeError(f"unsupported serialization format {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "parse_text",
    "detect_format",
    "to_builtin",
    "from_builtin",
    "decode_bytes",
    "bytes_from_array",
    "encode_text",
    "normalize_encoding",
]
