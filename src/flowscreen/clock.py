"""Time sources."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

import pendulum


@runtime_checkable
class Clock(Protocol):
    """Supplies the current time as a timezone-aware UTC datetime."""

    def now(self) -> datetime:
        """Return the current instant."""


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return pendulum.now("UTC")


__all__ = ["Clock", "SystemClock"]
