"""Human readable durations such as ``1d2h30m`` or ``250ms``."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import timedelta

MS = 1
SECOND = MS * 1000
MINUTE = SECOND * 60
HOUR = MINUTE * 60
DAY = HOUR * 24

_U64_MAX = 2**64 - 1
_UNITS = {"d": DAY, "h": HOUR, "m": MINUTE, "s": SECOND}
_FORMAT_ERROR = "valid duration, only d, h, m, s, ms are supported."
_ORDER_ERROR = "d, h, m, s, ms should occur in given order."


def _parse_number(text: str) -> float:
    text = text.strip()
    if "_" in text:
        raise ValueError(_FORMAT_ERROR)
    try:
        return float(text)
    except ValueError:
        raise ValueError(_FORMAT_ERROR) from None


def _saturating_millis(value: float) -> int:
    if math.isnan(value):
        return 0
    if value >= _U64_MAX:
        return _U64_MAX
    return int(value)


@dataclass(frozen=True, order=True)
class ReadableDuration:
    """A duration with millisecond precision and a compact text form."""

    millis: int = 0

    def __post_init__(self) -> None:
        if self.millis < 0:
            raise ValueError("duration should be positive.")

    @classmethod
    def parse(cls, text: str) -> ReadableDuration:
        """Parse text such as ``1d2h3m4s5ms``; units must appear largest first."""
        text = text.strip()
        if not text.isascii():
            raise ValueError(f"unexpected ascii string: {text}")

        rest = text
        last_unit = DAY + 1
        total = 0.0
        while True:
            idx = next((i for i, ch in enumerate(rest) if ch in "dhms"), None)
            if idx is None:
                break
            number, tail = rest[:idx], rest[idx:]
            if tail.startswith("ms"):
                unit = MS
                rest = tail[2:]
            else:
                unit = _UNITS[tail[0]]
                rest = tail[1:]
            if unit >= last_unit:
                raise ValueError(_ORDER_ERROR)
            total += _parse_number(number) * unit
            last_unit = unit

        if rest:
            raise ValueError(_FORMAT_ERROR)
        if math.copysign(1.0, total) < 0:
            raise ValueError("duration should be positive.")
        return cls(_saturating_millis(total))

    @classmethod
    def from_secs(cls, secs: int) -> ReadableDuration:
        return cls(secs * SECOND)

    @classmethod
    def from_millis(cls, millis: int) -> ReadableDuration:
        return cls(millis)

    def total_millis(self) -> int:
        return self.millis

    def to_timedelta(self) -> timedelta:
        return timedelta(milliseconds=self.millis)

    def __str__(self) -> str:
        remaining = self.millis
        parts = []
        for unit, suffix in ((DAY, "d"), (HOUR, "h"), (MINUTE, "m"), (SECOND, "s")):
            if remaining >= unit:
                parts.append(f"{remaining // unit}{suffix}")
                remaining %= unit
        if remaining > 0:
            parts.append(f"{remaining}ms")
        return "".join(parts) or "0s"