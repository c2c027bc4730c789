"""Transfer rate bookkeeping for archive uploads."""

import time
from dataclasses import dataclass
from typing import Callable, Optional

_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def format_bytes(num_bytes: float, decimals: int = 2) -> str:
    """Render a byte count with a binary unit, e.g. ``1.5 MB``."""
    if num_bytes <= 0:
        return "0 Bytes"
    unit = 0
    value = float(num_bytes)
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, decimals):g} {_UNITS[unit]}"


@dataclass(frozen=True)
class TransferSnapshot:
    """One progress report."""

    bytes_transferred: int
    total_bytes: int
    elapsed_seconds: float
    instant_speed: float
    average_speed: float
    eta_seconds: Optional[float]

    @property
    def percent(self) -> float:
        if not self.total_bytes:
            return 100.0
        return round(self.bytes_transferred / self.total_bytes * 100, 2)

    def as_payload(self) -> dict:
        return {
            "bytesTransferred": self.bytes_transferred,
            "totalBytes": self.total_bytes,
            "percent": self.percent,
            "elapsedSeconds": round(self.elapsed_seconds, 3),
            "instantSpeed": self.instant_speed,
            "averageSpeed": self.average_speed,
            "etaSeconds": None if self.eta_seconds is None else round(self.eta_seconds, 1),
            "transferred": format_bytes(self.bytes_transferred),
            "total": format_bytes(self.total_bytes),
            "speed": f"{format_bytes(self.instant_speed)}/s",
            "averageSpeedFormatted": f"{format_bytes(self.average_speed)}/s",
        }


class TransferProgress:
    """Accumulates transferred bytes and reports once per window.

    ``instant_speed`` is the bytes seen in the current window divided by the
    window's duration; ``eta_seconds`` is the remaining bytes divided by the
    average speed since the start.
    """

    def __init__(
        self,
        total_bytes: int,
        on_report: Callable[[TransferSnapshot], None],
        interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.total_bytes = total_bytes
        self.on_report = on_report
        self.interval_seconds = interval_seconds
        self._clock = clock
        self.started_at = clock()
        self._window_start = self.started_at
        self._window_bytes = 0
        self.bytes_transferred = 0

    def snapshot(self, now: Optional[float] = None) -> TransferSnapshot:
        now = self._clock() if now is None else now
        elapsed = now - self.started_at
        window = now - self._window_start
        instant = self._window_bytes / window if window > 0 else 0.0
        average = self.bytes_transferred / elapsed if elapsed > 0 else 0.0
        remaining = max(self.total_bytes - self.bytes_transferred, 0)
        if remaining == 0:
            eta: Optional[float] = 0.0
        elif average > 0:
            eta = remaining / average
        else:
            eta = None
        return TransferSnapshot(
            bytes_transferred=self.bytes_transferred,
            total_bytes=self.total_bytes,
            elapsed_seconds=elapsed,
            instant_speed=instant,
            average_speed=average,
            eta_seconds=eta,
        )

    def advance(self, num_bytes: int) -> None:
        """Record transferred bytes, reporting if the window has elapsed."""
        self.bytes_transferred += num_bytes
        self._window_bytes += num_bytes
        now = self._clock()
        if now - self._window_start >= self.interval_seconds:
            self._report(now)

    def finish(self) -> TransferSnapshot:
        """Emit the closing report regardless of the window."""
        return self._report(self._clock())

    def _report(self, now: float) -> TransferSnapshot:
        snapshot = self.snapshot(now)
        self._window_start = now
        self._window_bytes = 0
        self.on_report(snapshot)
        return snapshot
