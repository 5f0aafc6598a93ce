"""Cache key derivation for wireformat and JSON DoH queries."""

from __future__ import annotations

import hashlib
from typing import Mapping

_DIGEST_SIZE = 16

# Parameters that make up the JSON key directly; anything else is hashed.
_JSON_KEY_PARAMS = frozenset({"name", "type"})


def _digest(data: bytes) -> str:
    return hashlib.blake2b(data, digest_size=_DIGEST_SIZE).hexdigest()


def wire_cache_key(query: bytes) -> str:
    """
    Brief: Derive the cache key for a wireformat DNS query.

    Inputs:
    - query: raw DNS query bytes

    Outputs:
    - str: "wire:" followed by a 128-bit blake2b hex digest

    Notes:
    - The whole message is hashed with the 2-byte transaction ID zeroed, so
      two queries that differ only in ID map to the same entry.

    Example:
        >>> wire_cache_key(b"\\x12\\x34rest") == wire_cache_key(b"\\x00\\x00rest")
        True
    """
    body = bytes(query)
    if len(body) >= 2:
        body = b"\x00\x00" + body[2:]
    return "wire:" + _digest(body)


def json_cache_key(params: Mapping[str, str]) -> str:
    """
    Brief: Derive the cache key for a JSON (application/dns-json) query.

    Inputs:
    - params: query parameters; ``name`` is required, ``type`` defaults to A

    Outputs:
    - str: "json:<name>:<TYPE>" plus a digest of any other parameters

    Example:
        >>> json_cache_key({"name": "Example.COM."})
        'json:example.com:A'
    """
    name = str(params.get("name", "")).strip().lower().rstrip(".")
    qtype = str(params.get("type") or "A").strip().upper()
    key = f"json:{name}:{qtype}"
    extra = sorted(
        (str(k), str(v)) for k, v in params.items() if k not in _JSON_KEY_PARAMS
    )
    if extra:
        blob = "&".join(f"{k}={v}" for k, v in extra).encode("utf-8")
        key += ":" + _digest(blob)
    return key
