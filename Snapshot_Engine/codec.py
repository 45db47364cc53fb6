# Snapshot_Engine/codec.py
"""
String encoding of IndexedDB contents inside an auth snapshot.

A database dump is a JSON object: store name -> { key text -> serialized value }.
Every serialized value is itself a string. Dumps written here wrap each value
in an envelope that records the original key and whether the value was a
plain string:

    {"key": 1, "type": "json", "value": {"x": 1}}
    {"key": "token", "type": "text", "value": "{\"looks\": \"like json\"}"}

so a text value that happens to be valid JSON is restored as text.
Legacy dumps hold bare JSON.stringify() output and are decoded best-effort.
"""
from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

TEXT = "text"
JSON = "json"


class SnapshotFormatError(ValueError):
    pass


def _default(o: Any) -> Any:
    # Playwright hands JS Date objects back as datetime
    if isinstance(o, (datetime, date)):
        return o.isoformat()
    if isinstance(o, (bytes, bytearray)):
        return o.decode("utf-8", errors="replace")
    if isinstance(o, (set, frozenset, tuple)):
        return list(o)
    return str(o)


def key_text(key: Any) -> str:
    """Mapping key for a record, following JS property-name coercion (String(key))."""
    if isinstance(key, str):
        return key
    if isinstance(key, bool):
        return "true" if key else "false"
    if isinstance(key, float) and key.is_integer():
        return str(int(key))
    if isinstance(key, (list, tuple)):
        return ",".join(key_text(k) for k in key)
    if isinstance(key, (datetime, date)):
        return key.isoformat()
    return str(key)


def encode_value(key: Any, value: Any) -> str:
    envelope = {
        "key": key,
        "type": TEXT if isinstance(value, str) else JSON,
        "value": value,
    }
    # JS strings may hold lone surrogates; only \uXXXX escapes survive UTF-8
    return json.dumps(envelope, ensure_ascii=True, default=_default)


def decode_value(raw: Any, *, tagged: bool = True) -> Tuple[Optional[Any], Any]:
    """
    Returns (original key or None, value).

    Untagged values: best-effort json.loads, the raw string when it does not parse.
    """
    if not tagged:
        if not isinstance(raw, str):
            return None, raw
        try:
            return None, json.loads(raw)
        except ValueError:
            return None, raw

    if not isinstance(raw, str):
        raise SnapshotFormatError(f"expected encoded string, got {type(raw).__name__}")
    try:
        env = json.loads(raw)
    except ValueError as e:
        raise SnapshotFormatError(f"value is not a tagged envelope: {e}") from e
    if not isinstance(env, dict) or env.get("type") not in (TEXT, JSON) or "value" not in env:
        raise SnapshotFormatError("value is not a tagged envelope")
    value = env["value"]
    if env["type"] == TEXT and not isinstance(value, str):
        raise SnapshotFormatError(f"text value holds {type(value).__name__}")
    return env.get("key"), value


def dump_database(stores: Dict[str, Dict[str, str]]) -> str:
    return json.dumps(stores, ensure_ascii=True)


def load_database(dump: Any) -> Dict[str, Dict[str, Any]]:
    if not isinstance(dump, str):
        raise SnapshotFormatError(f"database dump must be a string, got {type(dump).__name__}")
    try:
        stores = json.loads(dump)
    except ValueError as e:
        raise SnapshotFormatError(f"database dump is not JSON: {e}") from e
    if not isinstance(stores, dict):
        raise SnapshotFormatError("database dump must be a JSON object")
    for name, records in stores.items():
        if not isinstance(records, dict):
            raise SnapshotFormatError(f"store {name!r} must map keys to values")
    return stores
