"""
Tamper-evidence hashes for clinical records.

A signature is the SHA-256 of a canonical JSON rendering of an *ordered* list of
fields. Field order is fixed by the caller and must never be reordered, otherwise
every stored hash stops verifying.
"""
import hashlib
import hmac
import json
from datetime import date, datetime
from typing import Any, Iterable


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat() + "Z"
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def canonical_payload(fields: Iterable[tuple[str, Any]]) -> str:
    payload = {key: _jsonable(value) for key, value in fields}
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def signature_hash(fields: Iterable[tuple[str, Any]]) -> str:
    return hashlib.sha256(canonical_payload(fields).encode("utf-8")).hexdigest()


def signatures_match(stored: str | None, recomputed: str) -> bool:
    if not stored:
        return False
    return hmac.compare_digest(stored, recomputed)
