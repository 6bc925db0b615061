"""Identifier normalization.

Ids reach the storefront in many shapes: hex strings and numbers from client
payloads, ``ObjectId`` values from pymongo, ``bson.Binary``/``bytes`` for
binary-encoded ids, populated documents carrying an ``id`` and JSON-serialized
buffers (``{"0": 105, "1": 9, ...}`` or ``{"type": "Buffer", "data": [...]}``).
``normalize`` maps every representation of the same id to one string.
"""
import math
import re
from typing import Any, Iterable, List, Optional

from bson import ObjectId

UNSERIALIZED_OBJECT = "[object Object]"

_HEX_OBJECT_ID = re.compile(r"^[0-9a-fA-F]{24}$")
_MAX_DEPTH = 8


def _byte_values(values) -> Optional[bytes]:
    clean = [v for v in values if isinstance(v, int) and not isinstance(v, bool) and 0 <= v <= 255]
    if not clean:
        return None
    return bytes(clean)


def _bytes_from_index_map(value: dict) -> Optional[bytes]:
    """Rebuild a byte sequence serialized as a mapping of decimal indices."""
    indexed = []
    for key, byte in value.items():
        text = str(key)
        if text.isascii() and text.isdecimal():
            indexed.append((int(text), byte))
    if not indexed:
        return None
    indexed.sort(key=lambda pair: pair[0])
    return _byte_values(byte for _, byte in indexed)


def _buffer_to_hex(buffer: Any) -> Optional[str]:
    if isinstance(buffer, (bytes, bytearray, memoryview)):
        return bytes(buffer).hex()
    if isinstance(buffer, dict):
        rebuilt = _bytes_from_index_map(buffer)
        if rebuilt is not None:
            return rebuilt.hex()
    return None


def _has_own_str(value: Any) -> bool:
    return type(value).__str__ is not object.__str__


def _normalize_mapping(value: dict, depth: int) -> Optional[str]:
    if isinstance(value.get("$oid"), str):
        return value["$oid"].lower()

    if value.get("type") == "Buffer" and isinstance(value.get("data"), list):
        rebuilt = _byte_values(value["data"])
        if rebuilt is not None:
            return rebuilt.hex()

    if "buffer" in value:
        hexed = _buffer_to_hex(value["buffer"])
        if hexed is not None:
            return hexed

    if value.get("id") is not None:
        return _normalize(value["id"], depth + 1)

    rebuilt = _bytes_from_index_map(value)
    if rebuilt is not None:
        return rebuilt.hex()
    return None


def _normalize_object(value: Any, depth: int) -> Optional[str]:
    if isinstance(value, ObjectId):
        return str(value)

    for name in ("to_hex_string", "toHexString", "hex"):
        attr = getattr(value, name, None)
        if callable(attr):
            try:
                result = attr()
            except TypeError:
                continue
            if isinstance(result, str):
                return result.lower()
        elif isinstance(attr, str):
            return attr.lower()

    # Records (pydantic models, documents) carry their id as an attribute.
    nested = getattr(value, "id", None)
    if nested is not None and nested is not value:
        return _normalize(nested, depth + 1)

    if _has_own_str(value):
        text = str(value)
        if text != UNSERIALIZED_OBJECT:
            return text

    return _buffer_to_hex(getattr(value, "buffer", None))


def _normalize(value: Any, depth: int) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if depth >= _MAX_DEPTH:
        return str(value)

    if isinstance(value, dict):
        result = _normalize_mapping(value, depth)
    else:
        result = _normalize_object(value, depth)
    return result if result is not None else str(value)


def normalize(value: Any) -> str:
    """Return the canonical string form of an identifier. Never raises."""
    return _normalize(value, 0)


def ids_equal(a: Any, b: Any) -> bool:
    return normalize(a) == normalize(b)


def is_object_id_hex(value: str) -> bool:
    return bool(_HEX_OBJECT_ID.match(value))


def id_candidates(value: Any) -> List[Any]:
    """Values an id may be stored as, for use in ``$in`` queries."""
    text = normalize(value)
    candidates: List[Any] = [text]
    if is_object_id_hex(text):
        candidates.insert(0, ObjectId(text))
    elif text.isascii() and text.isdecimal():
        candidates.append(int(text))
    return candidates


def to_query_id(value: Any) -> Any:
    """Coerce an id to the form it is stored under."""
    if isinstance(value, ObjectId):
        return value
    return id_candidates(value)[0]


def id_filter(values: Iterable[Any]) -> dict:
    candidates: List[Any] = []
    for value in values:
        candidates.extend(id_candidates(value))
    return {"_id": {"$in": candidates}}
