"""
Tests for the GMT+8 date utilities.
"""
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from fitleads.core import datetime_utils
from fitleads.core.datetime_utils import (
    MY_TZ,
    add_business_days_my,
    add_days_my,
    compare_iso_strings,
    convert_to_my_iso,
    days_between_iso,
    extract_date_from_iso,
    format_my_iso_for_display,
    get_month_from_date,
    get_month_from_iso,
    get_year_from_date,
    get_year_from_iso,
    is_past_my,
    is_today_my,
    is_valid_date_format,
    migrate_ddmmyyyy_to_iso,
    parse_ddmmyyyy_to_my_iso,
    standardize_date,
    to_my_iso,
)


class TestParsing:
    def test_parse_ddmmyyyy_defaults_to_nine_am(self):
        assert parse_ddmmyyyy_to_my_iso("15/06/2024") == "2024-06-15T09:00:00.000+08:00"

    def test_parse_ddmmyyyy_custom_time(self):
        assert parse_ddmmyyyy_to_my_iso("01/01/2024", 17, 30) == "2024-01-01T17:30:00.000+08:00"

    @pytest.mark.parametrize("value", [
        "32/01/2024",
        "00/01/2024",
        "15/13/2024",
        "15/06/1899",
        "15/06/2101",
        "31/02/2024",
        "aa/06/2024",
        "15-06-2024",
        "",
        None,
    ])
    def test_parse_ddmmyyyy_rejects_invalid(self, value):
        assert parse_ddmmyyyy_to_my_iso(value) is None

    def test_convert_utc_to_my(self):
        assert convert_to_my_iso("2024-06-15T01:00:00Z") == "2024-06-15T09:00:00.000+08:00"

    def test_convert_invalid_returns_none(self):
        assert convert_to_my_iso("not a date") is None

    def test_migrate_accepts_both_forms(self):
        assert migrate_ddmmyyyy_to_iso("15/06/2024") == "2024-06-15T09:00:00.000+08:00"
        assert migrate_ddmmyyyy_to_iso("2024-06-15T09:00:00+08:00") == "2024-06-15T09:00:00.000+08:00"
        assert migrate_ddmmyyyy_to_iso("garbage") is None

    def test_naive_datetime_treated_as_utc(self):
        assert to_my_iso(datetime(2024, 6, 15, 1, 0)) == "2024-06-15T09:00:00.000+08:00"

    def test_aware_datetime_converted(self):
        value = datetime(2024, 6, 15, 16, 30, tzinfo=timezone.utc)
        assert to_my_iso(value) == "2024-06-16T00:30:00.000+08:00"


class TestArithmetic:
    def test_add_days(self):
        assert add_days_my("2024-06-19T10:00:00.000+08:00", 3) == "2024-06-22T10:00:00.000+08:00"
        assert add_days_my("2024-06-19T10:00:00.000+08:00", -10) == "2024-06-09T10:00:00.000+08:00"

    def test_add_zero_business_days_is_identity(self):
        start = "2024-06-15T09:00:00.000+08:00"
        assert add_business_days_my(start, 0) == start

    def test_business_days_skip_weekend(self):
        # Friday + 1 business day -> Monday
        assert add_business_days_my("2024-06-21T10:00:00.000+08:00", 1) == "2024-06-24T10:00:00.000+08:00"
        # Saturday + 1 business day -> Monday
        assert add_business_days_my("2024-06-15T09:00:00.000+08:00", 1) == "2024-06-17T09:00:00.000+08:00"

    @pytest.mark.parametrize("start_day", range(10, 17))
    @pytest.mark.parametrize("n", [1, 2, 3, 5])
    def test_business_days_never_land_on_weekend(self, start_day, n):
        result = add_business_days_my(f"2024-06-{start_day:02d}T23:30:00.000+08:00", n)
        assert datetime.fromisoformat(result).weekday() < 5

    def test_weekday_is_evaluated_in_malaysia_time(self):
        # Friday 20:00 UTC is Saturday 04:00 in Malaysia
        assert add_business_days_my("2024-06-21T20:00:00Z", 1) == "2024-06-24T04:00:00.000+08:00"

    def test_days_between_is_floored(self):
        assert days_between_iso("2024-06-09T10:00:00.000+08:00", "2024-06-19T10:00:00.000+08:00") == 10
        assert days_between_iso("2024-06-09T10:00:00.000+08:00", "2024-06-19T09:59:00.000+08:00") == 9

    def test_compare_by_instant(self):
        assert compare_iso_strings("2024-06-15T09:00:00.000+08:00", "2024-06-15T01:00:00Z") == 0
        assert compare_iso_strings("2024-06-14T09:00:00.000+08:00", "2024-06-15T09:00:00.000+08:00") == -1
        assert compare_iso_strings("2024-06-16T09:00:00.000+08:00", "2024-06-15T09:00:00.000+08:00") == 1

    def test_arithmetic_raises_on_garbage(self):
        with pytest.raises(ValueError):
            add_days_my("garbage", 1)
        with pytest.raises(ValueError):
            compare_iso_strings("15/06/2024", "2024-06-15T09:00:00.000+08:00")


class TestRelativeToNow:
    @pytest.fixture(autouse=True)
    def frozen_now(self):
        # 00:30 on the 19th in Malaysia is still the 18th in UTC
        fixed = datetime(2024, 6, 19, 0, 30, tzinfo=MY_TZ)
        with patch.object(datetime_utils, "now_my", return_value=fixed):
            yield

    def test_is_today_uses_malaysia_calendar(self):
        assert is_today_my("2024-06-19T23:59:00.000+08:00")
        assert is_today_my("2024-06-18T16:00:00Z")
        assert not is_today_my("2024-06-18T23:59:00.000+08:00")

    def test_is_past(self):
        assert is_past_my("2024-06-19T00:29:00.000+08:00")
        assert not is_past_my("2024-06-19T00:30:00.000+08:00")
        assert not is_past_my("2024-06-20T09:00:00.000+08:00")

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            is_past_my("not a date")


class TestDisplay:
    def test_display_helpers(self):
        iso = "2024-06-15T01:05:00Z"
        assert format_my_iso_for_display(iso) == "15/06/2024 09:05"
        assert extract_date_from_iso(iso) == "15/06/2024"
        assert get_month_from_iso(iso) == "June"
        assert get_year_from_iso(iso) == "2024"

    def test_month_rolls_over_in_malaysia_time(self):
        assert get_month_from_iso("2024-06-30T20:00:00Z") == "July"

    def test_standardize_date_pads(self):
        assert standardize_date("5/6/2024") == "05/06/2024"
        assert standardize_date("31/02/2024") is None
        assert standardize_date(None) is None

    def test_date_format_helpers(self):
        assert is_valid_date_format("05/06/2024")
        assert not is_valid_date_format("5/6/2024")
        assert get_month_from_date("05/06/2024") == "June"
        assert get_year_from_date("05/06/2024") == "2024"
        assert get_month_from_date("") == ""
