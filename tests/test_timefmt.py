from datetime import datetime, timezone

import pytest

from hitcounter.timefmt import (
    daily_string_to_time,
    hourly_string_to_time,
    monthly_string_to_time,
    string_to_time,
    time_to_daily_string,
    time_to_hourly_string,
    time_to_monthly_string,
    time_to_string,
    time_to_yearly_string,
    timestamp_by_max_time,
    yearly_string_to_time,
)

SAMPLE = datetime(2021, 4, 5, 7, 8, 9, 123456)


def test_timestamp_by_max_time():
    assert timestamp_by_max_time() == 9223372036854775807


def test_full_round_trip():
    text = time_to_string(SAMPLE)
    assert text == "2021-04-05 07:08:09"
    parsed = string_to_time(text)
    assert parsed == datetime(2021, 4, 5, 7, 8, 9, tzinfo=timezone.utc)


def test_daily_round_trip():
    text = time_to_daily_string(SAMPLE)
    assert text == "20210405"
    assert daily_string_to_time(text) == datetime(2021, 4, 5, tzinfo=timezone.utc)


def test_hourly_round_trip():
    text = time_to_hourly_string(SAMPLE)
    assert text == "2021040507"
    assert hourly_string_to_time(text) == datetime(2021, 4, 5, 7, tzinfo=timezone.utc)


def test_monthly_round_trip():
    text = time_to_monthly_string(SAMPLE)
    assert text == "202104"
    assert monthly_string_to_time(text) == datetime(2021, 4, 1, tzinfo=timezone.utc)


def test_yearly_round_trip():
    text = time_to_yearly_string(SAMPLE)
    assert text == "2021"
    assert yearly_string_to_time(text) == datetime(2021, 1, 1, tzinfo=timezone.utc)


def test_now_keeps_fields():
    now = datetime.now()
    parsed = string_to_time(time_to_string(now))
    assert (parsed.year, parsed.month, parsed.day) == (now.year, now.month, now.day)
    assert (parsed.hour, parsed.minute, parsed.second) == (now.hour, now.minute, now.second)


@pytest.mark.parametrize(
    "parse, text",
    [
        (string_to_time, "2021-04-05"),
        (string_to_time, "2021-13-05 07:08:09"),
        (daily_string_to_time, "2021045"),
        (daily_string_to_time, "20210230"),
        (hourly_string_to_time, "2021040525"),
        (monthly_string_to_time, "2021-4"),
        (yearly_string_to_time, "21"),
        (yearly_string_to_time, ""),
    ],
)
def test_invalid_strings_give_none(parse, text):
    assert parse(text) is None