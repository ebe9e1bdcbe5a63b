"""Canonical serialization helpers for sidecars and command tags.

Sidecar files hold exactly one line of canonical JSON so that a remote
listing can stream many of them through a single shell invocation and
split on newlines.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def command_tag(argv: list[str]) -> str:
    """Short, stable tag identifying a command line in log output."""
    return sha256_hex(canonical_json_bytes(argv))[:8]
