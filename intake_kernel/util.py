"""Small shared helpers: ids, timestamps, and content hashing."""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def canonical_json(payload: Any) -> str:
    """Stable JSON: sorted keys, no whitespace variance."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def sha256_hex(payload: Any) -> str:
    """sha256 over canonical JSON (or over the raw string when given one)."""
    data = payload if isinstance(payload, str) else canonical_json(payload)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def word_count(text: str) -> int:
    return len((text or "").split())
