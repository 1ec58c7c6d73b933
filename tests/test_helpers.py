from datetime import date, time

import pytest

from app.exceptions import ValidationError
from app.utils.helpers import (
    WorkingWindow,
    dump_working_hours,
    normalize_working_hours,
    parse_date_str,
    parse_time_str,
    parse_window,
    weekday_name,
)


class TestParseWindow:
    def test_start_end_dict(self):
        assert parse_window({"start": "09:00", "end": "17:00"}) == WorkingWindow(time(9), time(17))

    def test_start_time_end_time_dict(self):
        assert parse_window({"startTime": "9:30", "endTime": "12:00"}) == WorkingWindow(time(9, 30), time(12))

    def test_range_string(self):
        assert parse_window("10:00-16:00") == WorkingWindow(time(10), time(16))

    def test_list_of_ranges_spans_the_day(self):
        window = parse_window(["08:00-12:00", "14:00-17:00"])
        assert window == WorkingWindow(time(8), time(17))

    @pytest.mark.parametrize("value", [None, "", [], {}, {"enabled": False, "start": "09:00", "end": "10:00"}])
    def test_empty_values_mean_day_off(self, value):
        assert parse_window(value) is None

    def test_start_must_be_before_end(self):
        with pytest.raises(ValidationError):
            parse_window({"start": "17:00", "end": "09:00"})

    def test_missing_end(self):
        with pytest.raises(ValidationError):
            parse_window({"start": "09:00"})

    def test_garbage_string(self):
        with pytest.raises(ValidationError):
            parse_window("all day")


class TestNormalizeWorkingHours:
    def test_mixed_formats_collapse_to_one_shape(self):
        hours = normalize_working_hours({
            "Monday": {"start": "09:00", "end": "17:00"},
            "tue": {"startTime": "10:00", "endTime": "14:00"},
            "friday": "08:00-12:00",
            "sunday": None,
        })
        assert set(hours) == {"monday", "tuesday", "friday"}
        assert hours["tuesday"].to_dict() == {"start": "10:00", "end": "14:00"}

    def test_json_string_round_trip(self):
        raw = dump_working_hours(normalize_working_hours({"wednesday": "09:00-13:00"}))
        assert raw == '{"wednesday": {"start": "09:00", "end": "13:00"}}'
        assert normalize_working_hours(raw)["wednesday"] == WorkingWindow(time(9), time(13))

    def test_unknown_weekday(self):
        with pytest.raises(ValidationError):
            normalize_working_hours({"funday": "09:00-10:00"})

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError):
            normalize_working_hours(["09:00-17:00"])

    def test_empty(self):
        assert normalize_working_hours("{}") == {}
        assert normalize_working_hours(None) == {}


def test_window_contains_is_end_exclusive():
    window = WorkingWindow(time(9), time(17))
    assert window.contains(time(9))
    assert window.contains(time(16, 59))
    assert not window.contains(time(17))


def test_parse_time_rejects_bad_input():
    assert parse_time_str("7:05") == time(7, 5)
    with pytest.raises(ValidationError):
        parse_time_str("25:00")
    with pytest.raises(ValidationError):
        parse_time_str("noon")


def test_parse_date():
    assert parse_date_str("2026-10-26") == date(2026, 10, 26)
    with pytest.raises(ValidationError):
        parse_date_str("26/10/2026")


def test_weekday_name():
    assert weekday_name(date(2026, 10, 19)) == "monday"
    assert weekday_name(date(2026, 10, 25)) == "sunday"
