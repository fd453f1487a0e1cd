"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock so that the approval workflow, credential
    issuance and the verification gate never call ``datetime.now()``
    directly.  Expiry and usage logic must be reproducible in tests.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).

Failure modes:
    - DeterministicClock.set_time raises ValueError for naive datetimes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Every service that needs the current time receives a Clock via
        constructor injection.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()`` or ``set_time()`` is called.
        - ``tick()`` advances by exactly 1 second and returns the new time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = _require_aware(
            fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        )
        self._offset = timedelta(0)

    def now(self) -> datetime:
        return (self._fixed_time + self._offset).astimezone(timezone.utc)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = _require_aware(time)
        self._offset = timedelta(0)

    def advance(self, seconds: float | None = None, **kwargs: float) -> None:
        """Advance the clock (1 second by default).

        Keyword arguments are passed to ``timedelta``, e.g.
        ``clock.advance(hours=2)``.
        """
        if seconds is None and not kwargs:
            seconds = 1
        self._offset += timedelta(seconds=seconds or 0, **kwargs)

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("DeterministicClock requires a timezone-aware datetime")
    return value
