"""
Centralized timing utilities: clocks, process/UTC helpers and the duration model.

- Uses monotonic time for durations (not affected by system clock changes)
- Exposes process uptime and UTC timestamp helpers for logging
- ``TimingModel`` turns declarative duration specs ("2-5s", "100-200ms", 750)
  into randomized, human-plausible waits drawn from an injectable RNG
"""
from __future__ import annotations

import asyncio
import random
import re
import time
from datetime import datetime, timezone
from typing import Optional, Tuple, Union

_PROCESS_START_MONOTONIC = time.monotonic()
_PROCESS_START_WALL = time.time()

DurationSpec = Union[int, float, str]

_UNIT_FACTORS = {'ms': 1.0, 's': 1000.0}
_BOUND = r'(\d+(?:\.\d+)?)\s*(ms|s)?'
_DURATION_RE = re.compile(rf'^\s*{_BOUND}\s*(?:-\s*{_BOUND})?\s*$', re.IGNORECASE)


def monotonic_seconds() -> float:
    """Current monotonic time in seconds."""
    return time.monotonic()


def uptime_seconds() -> float:
    """Seconds since process start based on monotonic clock."""
    return time.monotonic() - _PROCESS_START_MONOTONIC


def now_utc_timestamp() -> float:
    """Current UNIX timestamp (UTC, wall clock)."""
    return time.time()


def now_utc_iso(ms: bool = True) -> str:
    """ISO-8601 UTC timestamp string suitable for logs (e.g., 2025-08-25T12:34:56.789Z)."""
    dt = datetime.now(timezone.utc)
    if ms:
        return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return dt.isoformat().replace("+00:00", "Z")


def process_start_utc_iso() -> str:
    """UTC ISO for process start time (approx; uses wall clock at import)."""
    return datetime.fromtimestamp(_PROCESS_START_WALL, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Clock:
    """Time source for the engine. Every suspension point goes through ``sleep``."""

    def now_ms(self) -> float:
        raise NotImplementedError

    async def sleep(self, ms: float) -> None:
        raise NotImplementedError


class SystemClock(Clock):
    def now_ms(self) -> float:
        return time.monotonic() * 1000.0

    async def sleep(self, ms: float) -> None:
        await asyncio.sleep(max(0.0, ms) / 1000.0)


def parse_duration_range(spec: DurationSpec) -> Tuple[float, float]:
    """Return ``(min_ms, max_ms)`` for a duration spec.

    Numbers are milliseconds. Strings are ``"<min>[unit]-<max>[unit]"`` or a single
    ``"<value>[unit]"``; a bound without its own unit takes the trailing unit,
    and the unit defaults to seconds.
    """
    if isinstance(spec, bool):
        raise ValueError(f'Invalid duration: {spec!r}')
    if isinstance(spec, (int, float)):
        if spec < 0:
            raise ValueError(f'Negative duration: {spec}')
        return float(spec), float(spec)

    match = _DURATION_RE.match(str(spec))
    if not match:
        raise ValueError(f'Invalid duration: {spec!r}')

    low, low_unit, high, high_unit = match.groups()
    if high is None:
        high, high_unit = low, low_unit
    default_unit = (high_unit or low_unit or 's').lower()
    low_ms = float(low) * _UNIT_FACTORS[(low_unit or default_unit).lower()]
    high_ms = float(high) * _UNIT_FACTORS[(high_unit or default_unit).lower()]
    if high_ms < low_ms:
        low_ms, high_ms = high_ms, low_ms
    return low_ms, high_ms


class TimingModel:
    """Randomized duration source.

    ``sample`` draws the raw value from a spec's range; ``resolve_duration`` adds
    the uniform jitter, the slow-mode factor and the minimum wait clamp.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        slow_mode: bool = False,
        jitter_ratio: float = 0.2,
        min_wait_ms: float = 100.0,
        random_delay: bool = True,
    ):
        self.rng = rng or random.Random()
        self.slow_mode = slow_mode
        self.jitter_ratio = jitter_ratio
        self.min_wait_ms = min_wait_ms
        self.random_delay = random_delay

    def uniform(self, low: float, high: float) -> float:
        return self.rng.uniform(low, high)

    def sample(self, spec: DurationSpec) -> float:
        low_ms, high_ms = parse_duration_range(spec)
        if low_ms == high_ms:
            return low_ms
        return self.rng.uniform(low_ms, high_ms)

    def apply_jitter(self, ms: float) -> float:
        if not self.random_delay or self.jitter_ratio <= 0:
            return ms
        return ms * (1.0 + self.rng.uniform(-self.jitter_ratio, self.jitter_ratio))

    def resolve_duration(self, spec: DurationSpec) -> float:
        ms = self.apply_jitter(self.sample(spec))
        if self.slow_mode:
            ms *= 2
        return max(self.min_wait_ms, ms)
