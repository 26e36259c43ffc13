"""Unit tests for date interval parsing."""
from datetime import datetime, timedelta, timezone

import pytest

from processor.date_parser import (
    clean_date_text,
    format_utc,
    parse_date_interval,
    parse_end_boundary,
    parse_utc,
)

MACAU = 'Asia/Macau'


def utc(value: str) -> datetime:
    return parse_utc(value)


class TestParseDateInterval:
    """Test cases for parse_date_interval."""

    def test_full_date_defaults_to_two_hours(self):
        interval = parse_date_interval('15 March 2024', MACAU)

        assert interval.start == utc('2024-03-14T16:00:00Z')
        assert interval.end == interval.start + timedelta(hours=2)

    def test_month_first_full_date(self):
        interval = parse_date_interval('March 15, 2024', MACAU)

        assert interval.start == utc('2024-03-14T16:00:00Z')

    def test_day_range_with_year(self):
        interval = parse_date_interval('27–28 September 2025', MACAU)

        assert interval.start == utc('2025-09-26T16:00:00Z')
        assert interval.end == utc('2025-09-28T16:00:00Z')

    def test_abbreviated_range_stays_in_current_year(self):
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)

        interval = parse_date_interval('Sep 5-28', MACAU, now=now)

        assert interval.start == utc('2025-09-04T16:00:00Z')
        assert interval.end == utc('2025-09-28T16:00:00Z')

    def test_abbreviated_range_rolls_over_when_long_past(self):
        now = datetime(2025, 12, 1, tzinfo=timezone.utc)

        interval = parse_date_interval('Sep 5-28', MACAU, now=now)

        assert interval.start == utc('2026-09-04T16:00:00Z')

    def test_multi_date_list(self):
        now = datetime(2025, 8, 1, tzinfo=timezone.utc)

        interval = parse_date_interval('Sep 6, 13, 20, Oct 1 & 6', MACAU, now=now)

        assert interval.start == utc('2025-09-05T16:00:00Z')
        assert interval.end == utc('2025-10-06T16:00:00Z')

    def test_single_date_with_time(self):
        interval = parse_date_interval('15 March 2024, 8:00 PM', MACAU)

        assert interval.start == utc('2024-03-15T12:00:00Z')
        assert interval.end == utc('2024-03-15T14:00:00Z')

    def test_twenty_four_hour_time(self):
        interval = parse_date_interval('2024-03-15 19:30', MACAU)

        assert interval.start == utc('2024-03-15T11:30:00Z')

    def test_day_month_without_year_rolls_forward(self):
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)

        interval = parse_date_interval('15 Mar', MACAU, now=now)

        assert interval.start == utc('2026-03-14T16:00:00Z')

    def test_month_day_without_year_in_near_future(self):
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)

        interval = parse_date_interval('Jul 4', MACAU, now=now)

        assert interval.start == utc('2025-07-03T16:00:00Z')

    def test_iso_date(self):
        assert parse_date_interval('2025-10-01', MACAU).start == utc('2025-09-30T16:00:00Z')

    def test_slash_date_is_day_first(self):
        assert parse_date_interval('05/10/2025', MACAU).start == utc('2025-10-04T16:00:00Z')

    def test_chinese_date_with_year(self):
        assert parse_date_interval('2025年9月27日', MACAU).start == utc('2025-09-26T16:00:00Z')

    def test_chinese_date_without_year(self):
        now = datetime(2025, 9, 1, tzinfo=timezone.utc)

        interval = parse_date_interval('9月27日', MACAU, now=now)

        assert interval.start == utc('2025-09-26T16:00:00Z')

    def test_labels_and_weekday_are_ignored(self):
        interval = parse_date_interval('Date: 15 March 2024 (Fri)', MACAU)

        assert interval.start == utc('2024-03-14T16:00:00Z')

    @pytest.mark.parametrize('text', ['Tomorrow', '明日'])
    def test_tomorrow_is_start_of_next_local_day(self, text):
        now = datetime(2025, 3, 10, 2, 0, tzinfo=timezone.utc)

        interval = parse_date_interval(text, MACAU, now=now)

        assert interval.start == utc('2025-03-10T16:00:00Z')

    def test_today_is_start_of_local_day(self):
        now = datetime(2025, 3, 10, 2, 0, tzinfo=timezone.utc)

        interval = parse_date_interval('Today', MACAU, now=now)

        assert interval.start == utc('2025-03-09T16:00:00Z')

    @pytest.mark.parametrize('text', ['', '   ', 'TBA', 'Coming soon', None])
    def test_unparseable_text_yields_empty_interval(self, text):
        interval = parse_date_interval(text, MACAU)

        assert interval.unparseable
        assert interval.end is None

    def test_invalid_calendar_date_is_unparseable(self):
        assert parse_date_interval('31 February 2025', MACAU).unparseable

    def test_end_is_after_start(self):
        for text in ('15 March 2024', '27–28 September 2025', 'Sep 5-28'):
            interval = parse_date_interval(text, MACAU, now=datetime(2025, 1, 1, tzinfo=timezone.utc))
            assert interval.end > interval.start


class TestHelpers:
    """Test cases for formatting helpers."""

    def test_clean_date_text(self):
        assert clean_date_text('  When:  Sep 5  (Fri)  ') == 'Sep 5'

    def test_format_utc_converts_from_local(self):
        local = datetime(2024, 3, 15, 0, 0, tzinfo=timezone(timedelta(hours=8)))

        assert format_utc(local) == '2024-03-14T16:00:00Z'

    def test_format_utc_none(self):
        assert format_utc(None) is None


class TestParseEndBoundary:
    """Test cases for parse_end_boundary."""

    NOW = datetime(2025, 8, 1, tzinfo=timezone.utc)

    def test_bare_date_covers_whole_day(self):
        assert parse_end_boundary('Sep 28', MACAU, now=self.NOW) == utc('2025-09-28T16:00:00Z')

    def test_date_with_time_ends_at_that_time(self):
        end = parse_end_boundary('28 September 2025 8:00 PM', MACAU, now=self.NOW)

        assert end == utc('2025-09-28T12:00:00Z')

    def test_range_ends_after_last_day(self):
        assert parse_end_boundary('Sep 5-28', MACAU, now=self.NOW) == utc('2025-09-28T16:00:00Z')

    def test_unparseable(self):
        assert parse_end_boundary('TBA', MACAU, now=self.NOW) is None
