"""
Order-preserving child keys for appended entries.

A key is 20 characters: 8 encode the creation time in milliseconds, 12 are
random. The alphabet is sorted in ASCII order, so comparing two keys as
strings compares their creation times first. Keys produced within the same
millisecond increment the random tail instead of drawing a new one, which
keeps a single generator strictly increasing.
"""

import random
import time
from typing import Callable, List, Optional

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

TIME_CHARS = 8
RANDOM_CHARS = 12


def _now_ms() -> int:
    return int(time.time() * 1000)


class PushKeyGenerator:
    """
    Generates lexicographically increasing keys.

    Args:
        clock: Returns the current time in epoch milliseconds.
        rng: Source of randomness for the key tail.
    """

    def __init__(
        self,
        clock: Callable[[], int] = _now_ms,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._clock = clock
        self._rng = rng or random.SystemRandom()
        self._last_time = -1
        self._last_random: List[int] = [0] * RANDOM_CHARS

    def __call__(self) -> str:
        now = self._clock()
        if now < 0:
            raise ValueError(f"Clock returned a negative time: {now}")
        duplicate = now == self._last_time
        self._last_time = now

        time_chars = []
        for _ in range(TIME_CHARS):
            time_chars.append(PUSH_CHARS[now % 64])
            now //= 64
        time_chars.reverse()

        if duplicate:
            self._increment_tail()
        else:
            self._last_random = [self._rng.randrange(64) for _ in range(RANDOM_CHARS)]

        return "".join(time_chars) + "".join(PUSH_CHARS[i] for i in self._last_random)

    def _increment_tail(self) -> None:
        # Carry through trailing 63s; a fully saturated tail wraps to zeros.
        i = RANDOM_CHARS - 1
        while i >= 0 and self._last_random[i] == 63:
            self._last_random[i] = 0
            i -= 1
        if i >= 0:
            self._last_random[i] += 1


def key_timestamp(key: str) -> int:
    """Decode the millisecond timestamp embedded in a generated key."""
    if len(key) != TIME_CHARS + RANDOM_CHARS:
        raise ValueError(f"Not a generated key: {key!r}")
    value = 0
    for char in key[:TIME_CHARS]:
        index = PUSH_CHARS.find(char)
        if index < 0:
            raise ValueError(f"Not a generated key: {key!r}")
        value = value * 64 + index
    return value
