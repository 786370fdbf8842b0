"""Registration countdown for the event page.

Display only: nothing here gates a registration. The countdown targets the
close of registration while it is open, otherwise the event start while the
event is still upcoming.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from core.config import get_settings
from schemas import Event


@dataclass(frozen=True)
class Countdown:
    target: str  # "registration_close" or "event_start"
    days: int
    hours: int
    minutes: int

    @property
    def label(self) -> str:
        parts = []
        if self.days:
            parts.append(f"{self.days}d")
        if self.days or self.hours:
            parts.append(f"{self.hours}h")
        parts.append(f"{self.minutes}m")
        return " ".join(parts)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _now() -> datetime:
    return datetime.now(UTC)


def is_registration_open(event: Event, now: datetime | None = None) -> bool:
    now = now or _now()
    return (
        _aware(event.registration_start_date) <= now < _aware(event.registration_end_date)
    )


def is_upcoming(event: Event, now: datetime | None = None) -> bool:
    now = now or _now()
    return _aware(event.start_date) > now


def time_remaining(event: Event, now: datetime | None = None) -> Countdown | None:
    """Time left until registration closes, or until the event starts.

    Returns None once neither target lies in the future.
    """
    now = now or _now()
    if is_registration_open(event, now):
        target, deadline = "registration_close", _aware(event.registration_end_date)
    elif is_upcoming(event, now):
        target, deadline = "event_start", _aware(event.start_date)
    else:
        return None

    total_minutes = int((deadline - now).total_seconds() // 60)
    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)
    return Countdown(target=target, days=days, hours=hours, minutes=minutes)


async def run_countdown(
    event: Event,
    on_tick: Callable[[Countdown | None], None],
    *,
    interval: float | None = None,
) -> None:
    """Recompute the countdown every ``interval`` seconds until it runs out.

    Run it as a task and cancel the task when the page goes away.
    """
    if interval is None:
        interval = get_settings().countdown_interval_seconds

    while True:
        remaining = time_remaining(event)
        on_tick(remaining)
        if remaining is None:
            return
        await asyncio.sleep(interval)
