from __future__ import annotations

"""Reference code generation.

Format: ``HW`` + base-36 millisecond timestamp + 4 random characters, all
uppercase alphanumeric, e.g. ``HWLZ3K9Q1X7QF2``. The timestamp part is
forced to strictly increase within a process, so sequential calls never
repeat; the random suffix covers multiple processes. The lifecycle still
checks the store and regenerates on the (unlikely) collision.
"""
import secrets
import string
import threading
import time
from typing import Callable

ALPHABET = string.digits + string.ascii_uppercase
PREFIX = "HW"
SUFFIX_LENGTH = 4


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding expects a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(ALPHABET[rem])
    return "".join(reversed(digits))


class ReferenceCodeGenerator:
    def __init__(
        self,
        prefix: str = PREFIX,
        suffix_length: int = SUFFIX_LENGTH,
        clock_ms: Callable[[], int] = lambda: time.time_ns() // 1_000_000,
    ):
        if not prefix.isalnum() or not prefix.isupper():
            raise ValueError("prefix must be uppercase alphanumeric")
        self._prefix = prefix
        self._suffix_length = suffix_length
        self._clock_ms = clock_ms
        self._lock = threading.Lock()
        self._last_ms = 0

    def _next_ms(self) -> int:
        with self._lock:
            now = self._clock_ms()
            if now <= self._last_ms:
                now = self._last_ms + 1
            self._last_ms = now
            return now

    def generate(self) -> str:
        stamp = to_base36(self._next_ms())
        suffix = "".join(secrets.choice(ALPHABET) for _ in range(self._suffix_length))
        return f"{self._prefix}{stamp}{suffix}"
