from __future__ import annotations
from datetime import datetime, timedelta, timezone
from arena.config import Settings
from arena.services.time_windows import activation_window, is_past, respond_deadline, time_remaining

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_respond_deadline_direct_vs_open():
    """Direct challenges wait 24h for acceptance; open ones 72h for a first joiner"""
    assert respond_deadline(T0, open_type=False) == T0 + timedelta(hours=24)
    assert respond_deadline(T0, open_type=True) == T0 + timedelta(hours=72)


def test_respond_deadline_uses_settings():
    s = Settings(acceptance_hours=2, open_join_hours=5)
    assert respond_deadline(T0, False, s) == T0 + timedelta(hours=2)
    assert respond_deadline(T0, True, s) == T0 + timedelta(hours=5)


def test_activation_window_one_week():
    ends, closes = activation_window(T0, 168)
    assert ends == T0 + timedelta(days=7)
    assert closes == T0 + timedelta(hours=72)


def test_betting_window_is_fixed_offset_from_start():
    # Short challenges keep the same betting window as long ones
    ends, closes = activation_window(T0, 6)
    assert ends == T0 + timedelta(hours=6)
    assert closes == T0 + timedelta(hours=72)


def test_deadlines_are_exclusive():
    d = T0 + timedelta(hours=1)
    assert not is_past(d, d - timedelta(microseconds=1))
    assert is_past(d, d)
    assert not is_past(None, d)


def test_time_remaining_formats():
    assert time_remaining(T0 + timedelta(days=2, hours=5, minutes=10), T0) == "2d 5h"
    assert time_remaining(T0 + timedelta(hours=3, minutes=7), T0) == "3h 7m"
    assert time_remaining(T0 + timedelta(minutes=42), T0) == "42m"
    assert time_remaining(T0, T0) == "Ended"
    assert time_remaining(None, T0) == "Not started"
