# tests/test_intervals.py
from datetime import date, datetime, time

import pytest

from enrollment_engine.utils.intervals import (
    TimeWindow, parse_date, parse_hhmm, format_hhmm, combine, ranges_overlap, windows_overlap, any_overlap
)


class TestParsing:

    def test_parse_iso_date(self):
        assert parse_date('2024-03-01') == date(2024, 3, 1)

    def test_parse_iso_datetime_keeps_date_part(self):
        assert parse_date('2024-03-01T10:30:00') == date(2024, 3, 1)

    def test_parse_day_first_date(self):
        assert parse_date('01/03/2024') == date(2024, 3, 1)

    def test_parse_date_rejects_impossible_dates(self):
        assert parse_date('2024-02-30') is None
        assert parse_date('not a date') is None
        assert parse_date('') is None
        assert parse_date(None) is None

    def test_parse_date_accepts_date_objects(self):
        assert parse_date(datetime(2024, 3, 1, 9, 0)) == date(2024, 3, 1)
        assert parse_date(date(2024, 3, 1)) == date(2024, 3, 1)

    def test_parse_hhmm(self):
        assert parse_hhmm('09:05') == time(9, 5)
        assert parse_hhmm('9:05') == time(9, 5)
        assert parse_hhmm('08:00:30') == time(8, 0, 30)

    def test_parse_hhmm_rejects_malformed_values(self):
        assert parse_hhmm('24:00') is None
        assert parse_hhmm('12:60') is None
        assert parse_hhmm('noon') is None
        assert parse_hhmm(None) is None

    def test_format_hhmm(self):
        assert format_hhmm(time(7, 5)) == '07:05'
        assert format_hhmm('7:05:59') == '07:05'
        assert format_hhmm(None) is None

    def test_combine(self):
        assert combine('2024-03-01', '08:30') == datetime(2024, 3, 1, 8, 30)
        assert combine('2024-03-01', 'bad') is None


class TestRangesOverlap:

    def test_adjacent_times_do_not_overlap(self):
        assert not ranges_overlap('2024-04-01', '2024-04-01', '09:00', '10:00',
                                  '2024-04-01', '2024-04-01', '10:00', '11:00')

    def test_partial_time_overlap_on_same_day(self):
        assert ranges_overlap('2024-04-01', '2024-04-01', '09:00', '11:00',
                              '2024-04-01', '2024-04-01', '10:00', '12:00')

    def test_contained_time_range_overlaps(self):
        assert ranges_overlap('2024-04-01', '2024-04-01', '08:00', '12:00',
                              '2024-04-01', '2024-04-01', '09:00', '10:00')

    def test_date_ranges_are_inclusive(self):
        assert ranges_overlap('2024-03-01', '2024-03-02', '08:00', '12:00',
                              '2024-03-02', '2024-03-05', '08:00', '12:00')

    def test_disjoint_dates_never_overlap(self):
        assert not ranges_overlap('2024-03-01', '2024-03-02', '08:00', '12:00',
                                  '2024-03-03', '2024-03-05', '08:00', '12:00')

    def test_same_dates_disjoint_times(self):
        assert not ranges_overlap('2024-03-01', '2024-03-05', '08:00', '12:00',
                                  '2024-03-01', '2024-03-05', '13:00', '17:00')

    def test_malformed_input_is_not_a_conflict(self):
        assert not ranges_overlap('2024-03-01', '2024-03-01', 'xx', '12:00',
                                  '2024-03-01', '2024-03-01', '08:00', '12:00')
        assert not ranges_overlap(None, '2024-03-01', '08:00', '12:00',
                                  '2024-03-01', '2024-03-01', '08:00', '12:00')

    def test_inverted_date_range_is_not_a_conflict(self):
        assert not ranges_overlap('2024-03-05', '2024-03-01', '08:00', '12:00',
                                  '2024-03-02', '2024-03-02', '08:00', '12:00')


def window(first, last, start, end):
    return TimeWindow(date.fromisoformat(first), date.fromisoformat(last), parse_hhmm(start), parse_hhmm(end))


WINDOW_PAIRS = [
    # (a, b, conflict)
    (window('2024-04-01', '2024-04-01', '09:30', '10:30'),
     window('2024-04-01', '2024-04-01', '10:00', '11:00'), True),
    (window('2024-04-01', '2024-04-01', '08:00', '12:00'),
     window('2024-04-01', '2024-04-01', '12:00', '14:00'), False),
    (window('2024-04-01', '2024-04-01', '08:00', '12:00'),
     window('2024-04-01', '2024-04-01', '09:00', '10:00'), True),
    (window('2024-04-01', '2024-04-05', '08:00', '10:00'),
     window('2024-04-05', '2024-04-09', '09:00', '11:00'), True),
    (window('2024-04-01', '2024-04-05', '08:00', '10:00'),
     window('2024-04-06', '2024-04-09', '08:00', '10:00'), False),
    (window('2024-04-01', '2024-04-30', '19:00', '22:00'),
     window('2024-04-10', '2024-04-10', '08:00', '12:00'), False),
    (window('2024-04-01', '2024-04-30', '19:00', '22:00'),
     window('2024-04-10', '2024-04-12', '21:00', '23:00'), True),
]


class TestOverlapProperties:

    @pytest.mark.parametrize('a, b, conflict', WINDOW_PAIRS)
    def test_symmetric(self, a, b, conflict):
        assert windows_overlap(a, b) is conflict
        assert windows_overlap(b, a) is conflict

    @pytest.mark.parametrize('a', [pair[0] for pair in WINDOW_PAIRS] + [pair[1] for pair in WINDOW_PAIRS])
    def test_window_overlaps_itself(self, a):
        assert windows_overlap(a, a) is True

    def test_empty_time_range_overlaps_nothing(self):
        empty = window('2024-04-01', '2024-04-01', '10:00', '10:00')

        assert windows_overlap(empty, empty) is False


class TestAnyOverlap:

    def test_any_pair_conflicting(self):
        day = date(2024, 4, 1)
        candidate = [TimeWindow(day, day, time(9, 30), time(10, 30))]
        held = [
            TimeWindow(day, day, time(8, 0), time(9, 0)),
            TimeWindow(day, day, time(10, 0), time(11, 0)),
        ]
        assert any_overlap(candidate, held)

    def test_empty_lists(self):
        day = date(2024, 4, 1)
        assert not any_overlap([], [TimeWindow(day, day, time(8, 0), time(9, 0))])
        assert not any_overlap([TimeWindow(day, day, time(8, 0), time(9, 0))], [])
