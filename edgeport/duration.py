"""Durations in the textual form used by configuration files ("5s", "200ms", "1h30m")."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from fractions import Fraction
from typing import Callable

_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_UNIT_PATTERN = "|".join(sorted((re.escape(u) for u in _UNITS), key=len, reverse=True))
_COMPONENT = re.compile(rf"(\d+\.?\d*|\.\d+)({_UNIT_PATTERN})")
_WHOLE = re.compile(rf"[-+]?(?:(?:\d+\.?\d*|\.\d+)(?:{_UNIT_PATTERN}))+")


def _parse_nanoseconds(text: str) -> int:
    if text in ("0", "+0", "-0"):
        return 0
    if not _WHOLE.fullmatch(text):
        raise ValueError(f"invalid duration {text!r}")
    negative = text.startswith("-")
    total = 0
    for number, unit in _COMPONENT.findall(text.lstrip("+-")):
        total += int(Fraction(number) * _UNITS[unit])
    return -total if negative else total


def parse_duration(text: str) -> float:
    """Parse a duration such as "1h15m30.5s" and return it in seconds."""
    return _parse_nanoseconds(text) / 1_000_000_000


def _split_fraction(value: int, precision: int) -> tuple[int, str]:
    whole, frac = divmod(value, 10**precision)
    digits = f"{frac:0{precision}d}".rstrip("0")
    return whole, f".{digits}" if digits else ""


def format_duration(seconds: float) -> str:
    """Render a number of seconds in the compact form, e.g. "1m30s" or "200ms"."""
    ns = round(seconds * 1_000_000_000)
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    value = abs(ns)
    if value < 1_000:
        return f"{sign}{value}ns"
    if value < 1_000_000:
        whole, frac = _split_fraction(value, 3)
        return f"{sign}{whole}{frac}\u00b5s"
    if value < 1_000_000_000:
        whole, frac = _split_fraction(value, 6)
        return f"{sign}{whole}{frac}ms"
    secs, frac = _split_fraction(value, 9)
    hours, rest = divmod(secs, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}{frac}s"
    if minutes:
        return f"{sign}{minutes}m{secs}{frac}s"
    return f"{sign}{secs}{frac}s"


@dataclass(frozen=True)
class Duration:
    """A span of time, serialised to JSON as a quoted duration string."""

    seconds: float = 0.0

    @classmethod
    def from_json(cls, data: str | bytes) -> "Duration":
        """Build a duration from JSON data, with or without surrounding quotes."""
        if isinstance(data, bytes):
            data = data.decode()
        return cls(parse_duration(data.strip('"')))

    def to_json(self) -> str:
        return f'"{format_duration(self.seconds)}"'

    def __str__(self) -> str:
        return format_duration(self.seconds)


def heartbeat(
    stop: threading.Event,
    interval: Duration | float,
    handler: Callable[[], None],
) -> threading.Thread | None:
    """Call handler every interval in a background thread until stop is set.

    Nothing is started when the interval is not above zero.
    """
    seconds = interval.seconds if isinstance(interval, Duration) else float(interval)
    if seconds <= 0:
        return None

    def loop() -> None:
        while not stop.wait(seconds):
            handler()

    thread = threading.Thread(target=loop, name="heartbeat", daemon=True)
    thread.start()
    return thread