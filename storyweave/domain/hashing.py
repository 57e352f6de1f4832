from __future__ import annotations

import hashlib

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x1_0000_0000 if value & 0x8000_0000 else value


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    remaining = abs(value)
    digits: list[str] = []
    while remaining:
        remaining, digit = divmod(remaining, 36)
        digits.append(_BASE36_DIGITS[digit])
    return sign + "".join(reversed(digits))


def rolling_checksum(text: str) -> str:
    """32-bit rolling hash (h * 31 + ch) rendered in base 36.

    Only meant to spot accidental drift of a serialized payload.
    """

    value = 0
    for char in text:
        value = _to_int32((value << 5) - value + ord(char))
    return to_base36(value)


def snapshot_hash(serialized: str) -> str:
    return sha256_text(serialized)
