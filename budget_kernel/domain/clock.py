"""
Clock -- injectable time source.

Responsibility:
    Services and the entity store never call ``datetime.now()`` directly;
    they receive a Clock.  Tests substitute DeterministicClock so that
    created_at ordering and approval stamps are reproducible.

Architecture position:
    Kernel > Domain.  SystemClock is the only place that reads real time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Controlled clock for tests.

    ``now()`` returns the same instant until ``advance()`` is called.  With
    ``auto_advance`` set, every read moves the clock forward by that many
    microseconds, which gives strictly increasing timestamps to records
    created in sequence.
    """

    def __init__(
        self,
        fixed_time: datetime | None = None,
        auto_advance: int = 0,
    ):
        self._fixed_time = fixed_time or datetime(
            2025, 1, 1, 9, 0, 0, tzinfo=timezone.utc
        )
        self._offset = timedelta()
        self._auto_advance = timedelta(microseconds=auto_advance)

    def now(self) -> datetime:
        current = self._fixed_time + self._offset
        self._offset += self._auto_advance
        return current

    def advance(self, seconds: float = 1) -> None:
        self._offset += timedelta(seconds=seconds)
