"""Tests for the time grid generator."""
from __future__ import annotations

from datetime import date, time
from types import SimpleNamespace

import pytest

from beautybook.errors import InvalidInput
from beautybook.services.time_grid import (
    from_minutes,
    generate_time_grid,
    parse_date,
    parse_time_of_day,
    to_minutes,
    weekday_of,
)


def _rule(open_time=time(9, 0), close_time=time(18, 0), is_closed=False):
    return SimpleNamespace(open_time=open_time, close_time=close_time, is_closed=is_closed)


def test_last_start_leaves_room_for_the_service() -> None:
    grid = generate_time_grid(_rule(), 60)

    assert grid[0] == time(9, 0)
    assert grid[-1] == time(17, 0)
    assert len(grid) == 17


def test_grid_steps_every_thirty_minutes() -> None:
    grid = generate_time_grid(_rule(), 30)

    assert grid[:3] == [time(9, 0), time(9, 30), time(10, 0)]
    assert grid[-1] == time(17, 30)
    assert all(b.hour * 60 + b.minute - (a.hour * 60 + a.minute) == 30 for a, b in zip(grid, grid[1:]))


def test_service_longer_than_the_day_has_no_slots() -> None:
    assert generate_time_grid(_rule(time(9, 0), time(10, 0)), 90) == []


def test_exact_fit_gives_a_single_slot() -> None:
    assert generate_time_grid(_rule(time(9, 0), time(10, 0)), 60) == [time(9, 0)]


@pytest.mark.parametrize(
    "rule",
    [
        None,
        _rule(is_closed=True),
        _rule(open_time=None),
        _rule(time(18, 0), time(9, 0)),
    ],
)
def test_closed_or_missing_rule_gives_empty_grid(rule) -> None:
    assert generate_time_grid(rule, 60) == []


@pytest.mark.parametrize("duration", [0, -15])
def test_non_positive_duration_is_rejected(duration) -> None:
    with pytest.raises(InvalidInput):
        generate_time_grid(_rule(), duration)


def test_grid_is_deterministic() -> None:
    assert generate_time_grid(_rule(), 45) == generate_time_grid(_rule(), 45)


def test_minute_conversions() -> None:
    assert to_minutes(time(10, 45)) == 645
    assert from_minutes(645) == time(10, 45)
    with pytest.raises(InvalidInput):
        from_minutes(24 * 60)


def test_weekday_starts_on_monday() -> None:
    assert weekday_of(date(2030, 1, 7)) == 0
    assert weekday_of(date(2030, 1, 13)) == 6


def test_parsers_accept_iso_values_and_reject_garbage() -> None:
    assert parse_time_of_day("11:15") == time(11, 15)
    assert parse_date("2030-01-07") == date(2030, 1, 7)

    with pytest.raises(InvalidInput):
        parse_time_of_day("eleven")
    with pytest.raises(InvalidInput):
        parse_date(None)
