from datetime import datetime, timedelta
from typing import Dict, Optional

from config.settings import get_settings


class OriginTable:
    """Per-origin dispatch bookkeeping owned by the scheduler.

    Holds, for each origin (hostname), when a check was last dispatched to it
    and until when it is blocked. Lives for the lifetime of the process and
    starts empty on every restart. Writes are plain overwrites: a race between
    two checks only shifts the next dispatch slightly, it never corrupts state.
    """

    def __init__(self, min_interval: timedelta = timedelta(seconds=60),
                 block_cooldown: timedelta = timedelta(hours=2)):
        self.min_interval = min_interval
        self.block_cooldown = block_cooldown
        self._last_dispatched: Dict[str, datetime] = {}
        self._blocked_until: Dict[str, datetime] = {}

    @classmethod
    def from_settings(cls, settings=None) -> "OriginTable":
        settings = settings or get_settings()
        return cls(
            min_interval=timedelta(milliseconds=settings.DOMAIN_MIN_INTERVAL_MS),
            block_cooldown=timedelta(milliseconds=settings.DOMAIN_BLOCK_COOLDOWN_MS),
        )

    def blocked_until(self, origin: str) -> Optional[datetime]:
        return self._blocked_until.get(origin)

    def is_blocked(self, origin: str, now: datetime) -> bool:
        until = self._blocked_until.get(origin)
        return until is not None and now < until

    def block(self, origin: str, now: datetime) -> datetime:
        """Suppress every task on origin for the cooldown window."""
        until = now + self.block_cooldown
        self._blocked_until[origin] = until
        return until

    def last_dispatched(self, origin: str) -> Optional[datetime]:
        return self._last_dispatched.get(origin)

    def is_throttled(self, origin: str, now: datetime) -> bool:
        last = self._last_dispatched.get(origin)
        return last is not None and now - last < self.min_interval

    def mark_dispatched(self, origin: str, now: datetime):
        self._last_dispatched[origin] = now

    def snapshot(self) -> Dict[str, Dict[str, Optional[datetime]]]:
        origins = set(self._last_dispatched) | set(self._blocked_until)
        return {
            origin: {
                "last_dispatched": self._last_dispatched.get(origin),
                "blocked_until": self._blocked_until.get(origin),
            }
            for origin in sorted(origins)
        }
