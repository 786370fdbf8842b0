"""Tests for the registration countdown."""

from datetime import UTC, datetime, timedelta

import pytest
import time_machine

from schemas import Event
from services.countdown import (
    Countdown,
    is_registration_open,
    is_upcoming,
    run_countdown,
    time_remaining,
)

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _event(**overrides) -> Event:
    data = {
        "id": "evt_1",
        "title": "Cloud Summit",
        "start_date": NOW + timedelta(days=10),
        "registration_start_date": NOW - timedelta(days=1),
        "registration_end_date": NOW + timedelta(days=2, hours=3, minutes=4),
    }
    data.update(overrides)
    return Event(**data)


class TestTimeRemaining:
    """Tests for time_remaining."""

    def test_targets_registration_close_while_open(self):
        countdown = time_remaining(_event(), NOW)
        assert countdown == Countdown("registration_close", 2, 3, 4)
        assert countdown.label == "2d 3h 4m"

    def test_targets_event_start_after_close(self):
        event = _event(registration_end_date=NOW - timedelta(minutes=1))
        countdown = time_remaining(event, NOW)
        assert countdown.target == "event_start"
        assert countdown.days == 10

    def test_targets_event_start_before_registration_opens(self):
        event = _event(registration_start_date=NOW + timedelta(hours=1))
        assert time_remaining(event, NOW).target == "event_start"

    def test_none_after_event_start(self):
        event = _event(
            start_date=NOW - timedelta(hours=1),
            registration_end_date=NOW - timedelta(days=1),
        )
        assert time_remaining(event, NOW) is None

    def test_naive_dates_are_utc(self):
        event = _event(
            registration_end_date=datetime(2026, 3, 1, 13, 30),
        )
        assert time_remaining(event, NOW).label == "1h 30m"

    def test_label_drops_leading_zero_units(self):
        assert Countdown("event_start", 0, 0, 5).label == "5m"
        assert Countdown("event_start", 1, 0, 0).label == "1d 0h 0m"

    def test_registration_window_bounds(self):
        event = _event()
        assert is_registration_open(event, NOW)
        assert not is_registration_open(event, event.registration_end_date)
        assert is_upcoming(event, NOW)

    @time_machine.travel(NOW, tick=False)
    def test_defaults_to_current_time(self):
        assert time_remaining(_event()) == Countdown("registration_close", 2, 3, 4)


class TestRunCountdown:
    """Tests for run_countdown."""

    async def test_ticks_until_expired(self):
        ticks = []
        with time_machine.travel(NOW, tick=False) as traveller:

            def on_tick(remaining):
                ticks.append(remaining)
                traveller.shift(timedelta(days=11))

            await run_countdown(_event(), on_tick, interval=0)

        assert ticks[0] == Countdown("registration_close", 2, 3, 4)
        assert ticks[-1] is None
        assert len(ticks) == 2

    async def test_past_event_ticks_once(self):
        ticks = []
        event = _event(
            start_date=datetime(2020, 1, 1, tzinfo=UTC),
            registration_start_date=datetime(2019, 12, 1, tzinfo=UTC),
            registration_end_date=datetime(2019, 12, 31, tzinfo=UTC),
        )

        await run_countdown(event, ticks.append, interval=0)

        assert ticks == [None]
