"""Randomized request headers that make outbound DoH requests harder to fingerprint."""

from __future__ import annotations

import random
import string
from typing import Dict, Optional

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Mobile Safari/537.36",
)

PADDING_MIN = 32
PADDING_MAX = 160

_ALPHANUMERIC = string.ascii_letters + string.digits

# Not used for anything security sensitive; only to vary header shapes.
_rng = random.SystemRandom()


def random_padding(rng: Optional[random.Random] = None) -> str:
    """Brief: Return PADDING_MIN..PADDING_MAX random alphanumeric characters."""

    r = rng or _rng
    length = r.randint(PADDING_MIN, PADDING_MAX)
    return "".join(r.choice(_ALPHANUMERIC) for _ in range(length))


def privacy_headers(rng: Optional[random.Random] = None) -> Dict[str, str]:
    """
    Brief: Build the per-request privacy headers.

    Inputs:
    - rng: optional Random instance (tests pass a seeded one)

    Outputs:
    - dict with a User-Agent drawn uniformly from USER_AGENTS and an
      X-Padding header of random length

    Example:
        >>> h = privacy_headers(random.Random(1))
        >>> sorted(h)
        ['User-Agent', 'X-Padding']
    """
    r = rng or _rng
    return {
        "User-Agent": r.choice(USER_AGENTS),
        "X-Padding": random_padding(r),
    }
