"""
Request number generation.

Format: ``AFT-<base36 epoch milliseconds>-<4 base36 random chars>``, upper
case, e.g. ``AFT-M5K2J9QX-7F3A``.  Uniqueness is enforced by the database
constraint; callers retry on collision.
"""

import random
import re
from datetime import datetime

_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_RANDOM_LENGTH = 4

REQUEST_NUMBER_PATTERN = re.compile(r"^AFT-[0-9A-Z]+-[0-9A-Z]{4}$")


def to_base36(value: int) -> str:
    """Upper-case base36 rendering of a non-negative integer."""
    if value < 0:
        raise ValueError(f"base36 requires a non-negative integer, got {value}")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_request_number(now: datetime, rng: random.Random | None = None) -> str:
    """Build a request number from ``now`` and a random suffix."""
    rng = rng or random.SystemRandom()
    millis = int(now.timestamp() * 1000)
    suffix = "".join(rng.choice(_ALPHABET) for _ in range(_RANDOM_LENGTH))
    return f"AFT-{to_base36(millis)}-{suffix}"
