"""Best-effort TTL recovery from a raw DNS wireformat answer.

This is a heuristic used only to tune how long an answer stays cached. It is
not a DNS message parser and makes no attempt to validate the message. It
assumes the common shape of a single question with an uncompressed QNAME,
followed by a first answer record whose owner name is a 2-byte compression
pointer. Anything else either yields a plausible-looking TTL from the wrong
bytes (bounded by the sanity range below) or falls back to the default.
"""

from __future__ import annotations

import struct

DEFAULT_TTL_MS = 300_000

# Candidate TTLs outside the open interval (0, MAX_TTL_SECONDS) are rejected.
MAX_TTL_SECONDS = 86_400

_HEADER_LEN = 12
_MIN_PAYLOAD_LEN = 20


def extract_ttl(payload: bytes, default_ms: int = DEFAULT_TTL_MS) -> int:
    """
    Brief: Read the first answer's TTL from a DNS response, in milliseconds.

    Inputs:
    - payload: raw DNS response bytes
    - default_ms: value returned whenever the heuristic cannot apply

    Outputs:
    - int: TTL in milliseconds; never raises

    Layout walked:
    - skip the 12-byte header
    - scan for the zero byte ending the question name, never reading past
      ``len - 4``
    - skip the terminator, QTYPE and QCLASS (5 bytes)
    - with at least 10 bytes left, skip pointer, TYPE and CLASS (6 bytes) and
      read a 4-byte big-endian TTL

    Example:
        >>> extract_ttl(b"short")
        300000
    """
    try:
        data = bytes(payload)
    except (TypeError, ValueError):
        return default_ms
    length = len(data)
    if length <= _MIN_PAYLOAD_LEN:
        return default_ms

    offset = _HEADER_LEN
    while offset < length - 4 and data[offset] != 0:
        offset += 1
    offset += 5

    if length - offset < 10:
        return default_ms
    offset += 6
    (ttl,) = struct.unpack_from("!I", data, offset)

    if 0 < ttl < MAX_TTL_SECONDS:
        return ttl * 1000
    return default_ms
