# tests/test_calendar.py
from datetime import date, datetime, time

from enrollment_engine.models import ClassSession
from enrollment_engine.services.calendar_service import (
    CalendarService, ExplicitSessions, ImplicitRange, SessionSlot
)
from enrollment_engine.utils.intervals import TimeWindow


class TestResolve:

    def test_explicit_sessions_are_ordered_by_date(self, make_event, make_class):
        course_class = make_class(make_event(), sessions=[
            ('2024-03-03', '08:00', '12:00'),
            ('2024-03-01', '09:00', '11:00'),
        ])

        calendar = CalendarService.resolve(course_class)

        assert isinstance(calendar, ExplicitSessions)
        assert [s.date for s in calendar.sessions] == [date(2024, 3, 1), date(2024, 3, 3)]
        assert calendar.sessions[0] == SessionSlot(date(2024, 3, 1), time(9, 0), time(11, 0))

    def test_date_range_without_sessions_is_implicit(self, make_event, make_class):
        course_class = make_class(make_event(), start_date='2024-03-01', end_date='2024-03-03',
                                  start_time='08:00', end_time='12:00')

        calendar = CalendarService.resolve(course_class.id)

        assert calendar == ImplicitRange(date(2024, 3, 1), date(2024, 3, 3), time(8, 0), time(12, 0))

    def test_implicit_range_yields_one_session_per_day(self, make_event, make_class):
        course_class = make_class(make_event(), start_date='2024-03-01', end_date='2024-03-03',
                                  start_time='08:00', end_time='12:00')

        assert CalendarService.session_dates(course_class) == [
            date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 3)
        ]
        assert CalendarService.total_sessions(course_class) == 3

    def test_class_without_dates_has_empty_calendar(self, make_event, make_class):
        course_class = make_class(make_event())

        assert CalendarService.resolve(course_class) == ExplicitSessions(())
        assert CalendarService.total_sessions(course_class) == 0
        assert CalendarService.class_bounds(course_class) == (None, None)

    def test_unknown_class(self, app):
        assert CalendarService.resolve(9999) is None
        assert CalendarService.sessions_of(9999) == []


class TestTimesOnDate:

    def test_session_time_wins(self, make_event, make_class):
        course_class = make_class(make_event(), sessions=[
            ('2024-03-01', '09:00', '11:00'),
            ('2024-03-02', '14:00', '18:00'),
        ])

        assert CalendarService.start_time_on(course_class, '2024-03-02') == '14:00'
        assert CalendarService.end_time_on(course_class, date(2024, 3, 2)) == '18:00'

    def test_falls_back_to_class_times(self, make_event, make_class):
        course_class = make_class(make_event(), start_date='2024-03-01', end_date='2024-03-03',
                                  start_time='07:30', end_time='10:00')

        assert CalendarService.start_time_on(course_class, '2024-03-02') == '07:30'
        assert CalendarService.end_time_on(course_class, '2024-03-02') == '10:00'

    def test_falls_back_to_defaults(self, make_event, make_class):
        course_class = make_class(make_event(), start_date='2024-03-01')

        assert CalendarService.start_time_on(course_class, '2024-03-01') == '08:00'
        assert CalendarService.end_time_on(course_class, '2024-03-01') == '23:59'


class TestBoundsAndWindows:

    def test_bounds_of_explicit_sessions(self, make_event, make_class):
        course_class = make_class(make_event(), sessions=[
            ('2024-03-01', '08:00', '12:00'),
            ('2024-03-04', '08:00', '12:00'),
        ])

        assert CalendarService.class_bounds(course_class) == (
            datetime(2024, 3, 1, 8, 0), datetime(2024, 3, 4, 12, 0)
        )

    def test_implicit_range_is_one_window(self, make_event, make_class):
        course_class = make_class(make_event(), start_date='2024-03-01', end_date='2024-03-05',
                                  start_time='08:00', end_time='12:00')

        assert CalendarService.windows_of(course_class) == [
            TimeWindow(date(2024, 3, 1), date(2024, 3, 5), time(8, 0), time(12, 0))
        ]

    def test_explicit_windows_by_class_skips_implicit_classes(self, make_event, make_class):
        event = make_event()
        explicit = make_class(event, name='A', sessions=[('2024-03-01', '08:00', '12:00')])
        implicit = make_class(event, name='B', start_date='2024-03-01', end_date='2024-03-02')

        windows = CalendarService.explicit_windows_by_class([explicit.id, implicit.id])

        assert len(windows[explicit.id]) == 1
        assert windows[implicit.id] == []


class TestReplaceSessions:

    def test_replaces_and_updates_class_period(self, db, make_event, make_class):
        course_class = make_class(make_event(), sessions=[('2024-02-01', '08:00', '12:00')])

        result = CalendarService.replace_sessions(course_class.id, [
            {'date': '2024-03-02', 'start_time': '14:00', 'end_time': '18:00'},
            ('2024-03-01', '14:00', '18:00'),
            ('2024-03-03', '09:00', '10:00'),
        ])

        assert result['success'] is True
        assert [s['date'] for s in result['sessions']] == ['2024-03-01', '2024-03-02', '2024-03-03']
        assert db.session.query(ClassSession).filter_by(class_id=course_class.id).count() == 3
        assert course_class.start_date == date(2024, 3, 1)
        assert course_class.end_date == date(2024, 3, 3)
        assert course_class.start_time == time(14, 0)
        assert course_class.end_time == time(18, 0)

    def test_duplicate_date_is_a_conflict(self, make_event, make_class):
        course_class = make_class(make_event())

        result = CalendarService.replace_sessions(course_class.id, [
            ('2024-03-01', '08:00', '10:00'),
            ('2024-03-01', '14:00', '16:00'),
        ])

        assert result['success'] is False
        assert result['error_kind'] == 'conflict'
        assert result['error_code'] == 'duplicate_session_date'

    def test_session_must_start_before_it_ends(self, make_event, make_class):
        course_class = make_class(make_event())

        result = CalendarService.replace_sessions(course_class.id, [('2024-03-01', '10:00', '10:00')])

        assert result['error_kind'] == 'invalid_input'

    def test_malformed_values_are_rejected(self, make_event, make_class):
        course_class = make_class(make_event())

        result = CalendarService.replace_sessions(course_class.id, [('2024-13-01', '08:00', '10:00')])

        assert result['error_kind'] == 'invalid_input'
        assert CalendarService.total_sessions(course_class) == 0

    def test_unknown_class(self, app):
        result = CalendarService.replace_sessions(9999, [])

        assert result['error_kind'] == 'not_found'


class TestImportSessions:

    def test_import_from_csv(self, tmp_path, make_event, make_class):
        course_class = make_class(make_event())
        sheet = tmp_path / 'schedule.csv'
        sheet.write_text(' Date ,start_time,END_TIME\n2024-03-01,08:00,12:00\n2024-03-02,08:00,12:00\n')

        result = CalendarService.import_sessions(course_class.id, str(sheet))

        assert result['success'] is True
        assert CalendarService.session_dates(course_class) == [date(2024, 3, 1), date(2024, 3, 2)]

    def test_missing_columns(self, tmp_path, make_event, make_class):
        course_class = make_class(make_event())
        sheet = tmp_path / 'schedule.csv'
        sheet.write_text('date,start\n2024-03-01,08:00\n')

        result = CalendarService.import_sessions(course_class.id, str(sheet))

        assert result['success'] is False
        assert result['error_code'] == 'unreadable_sheet'
