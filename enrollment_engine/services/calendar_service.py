# services/calendar_service.py
"""
Class Session Calendar.

A class is scheduled either by explicit ``ClassSession`` rows or, when it has none,
by its own date range, which counts as one session on every calendar day between
``start_date`` and ``end_date``. ``CalendarService.resolve`` is the only place that
tells the two apart; everything else works on its result.
"""

import logging
from collections import Counter, namedtuple
from datetime import time, timedelta

import pandas as pd
from sqlalchemy.exc import IntegrityError

from enrollment_engine.extensions import db
from enrollment_engine.models import CourseClass, ClassSession
from enrollment_engine.utils.intervals import TimeWindow, parse_date, parse_hhmm, format_hhmm, combine
from enrollment_engine.services.errors import (
    CalendarError, ServiceError, NotFoundError, ConflictError, InvalidInputError,
    error_result, internal_error_result
)

logger = logging.getLogger('calendar_service')

DAY_START = time(0, 0)
DAY_END = time(23, 59)

# Reported by start_time_on/end_time_on when a class has no times at all
DEFAULT_START_HHMM = '08:00'
DEFAULT_END_HHMM = '23:59'

SessionSlot = namedtuple('SessionSlot', ['date', 'start_time', 'end_time'])

# Calendar variants returned by CalendarService.resolve
ExplicitSessions = namedtuple('ExplicitSessions', ['sessions'])
ImplicitRange = namedtuple('ImplicitRange', ['start_date', 'end_date', 'start_time', 'end_time'])


def _as_class(course_class):
    if isinstance(course_class, CourseClass):
        return course_class
    if course_class is None:
        return None
    return db.session.get(CourseClass, course_class)


class CalendarService:
    """Read and maintain the session calendar of a class."""

    @staticmethod
    def resolve(course_class):
        """
        Resolve the calendar of a class.

        Args:
            course_class: ``CourseClass`` instance or class id

        Returns:
            ExplicitSessions | ImplicitRange | None: ``None`` when the class does
            not exist; ``ExplicitSessions(())`` when it has neither sessions nor a
            start date.
        """
        course_class = _as_class(course_class)
        if course_class is None:
            return None

        sessions = (
            db.session.query(ClassSession)
            .filter(ClassSession.class_id == course_class.id)
            .order_by(ClassSession.date)
            .all()
        )
        if sessions:
            return ExplicitSessions(tuple(
                SessionSlot(s.date, s.start_time, s.end_time) for s in sessions
            ))

        if course_class.start_date is None:
            return ExplicitSessions(())

        return ImplicitRange(
            course_class.start_date,
            course_class.end_date or course_class.start_date,
            course_class.start_time or DAY_START,
            course_class.end_time or DAY_END,
        )

    @staticmethod
    def sessions_of(course_class):
        """Ordered ``SessionSlot`` list; implicit ranges yield one slot per day."""
        calendar = CalendarService.resolve(course_class)

        if calendar is None:
            return []
        if isinstance(calendar, ExplicitSessions):
            return list(calendar.sessions)

        slots = []
        day = calendar.start_date
        while day <= calendar.end_date:
            slots.append(SessionSlot(day, calendar.start_time, calendar.end_time))
            day += timedelta(days=1)
        return slots

    @staticmethod
    def session_dates(course_class):
        return [slot.date for slot in CalendarService.sessions_of(course_class)]

    @staticmethod
    def total_sessions(course_class):
        return len(CalendarService.sessions_of(course_class))

    @staticmethod
    def _session_on(course_class, day):
        day = parse_date(day)
        if course_class is None or day is None:
            return None
        return (
            db.session.query(ClassSession)
            .filter(ClassSession.class_id == course_class.id, ClassSession.date == day)
            .first()
        )

    @staticmethod
    def start_time_on(course_class, day):
        """Start ``HH:MM`` on a date: session, then class, then ``08:00``."""
        course_class = _as_class(course_class)
        session = CalendarService._session_on(course_class, day)
        if session is not None:
            return format_hhmm(session.start_time)
        if course_class is not None and course_class.start_time is not None:
            return format_hhmm(course_class.start_time)
        return DEFAULT_START_HHMM

    @staticmethod
    def end_time_on(course_class, day):
        """End ``HH:MM`` on a date: session, then class, then ``23:59``."""
        course_class = _as_class(course_class)
        session = CalendarService._session_on(course_class, day)
        if session is not None:
            return format_hhmm(session.end_time)
        if course_class is not None and course_class.end_time is not None:
            return format_hhmm(course_class.end_time)
        return DEFAULT_END_HHMM

    @staticmethod
    def class_bounds(course_class):
        """
        Earliest start and latest end of a class as naive datetimes.

        Returns:
            tuple: ``(start, end)``; either may be ``None`` when unknown
        """
        course_class = _as_class(course_class)
        calendar = CalendarService.resolve(course_class)

        if isinstance(calendar, ExplicitSessions) and calendar.sessions:
            first, last = calendar.sessions[0], calendar.sessions[-1]
            return combine(first.date, first.start_time), combine(last.date, last.end_time)

        if isinstance(calendar, ImplicitRange):
            return (combine(calendar.start_date, calendar.start_time),
                    combine(calendar.end_date, calendar.end_time))

        if course_class is not None and course_class.end_date is not None:
            return None, combine(course_class.end_date, course_class.end_time or DAY_END)

        return None, None

    @staticmethod
    def windows_of(course_class):
        """
        Conflict windows of a class.

        One window per explicit session, or a single window spanning the whole
        implicit range.
        """
        calendar = CalendarService.resolve(course_class)

        if isinstance(calendar, ExplicitSessions):
            return [TimeWindow(s.date, s.date, s.start_time, s.end_time) for s in calendar.sessions]
        if isinstance(calendar, ImplicitRange):
            return [TimeWindow(*calendar)]
        return []

    @staticmethod
    def explicit_windows_by_class(class_ids):
        """Explicit session windows for several classes with a single query."""
        windows = {class_id: [] for class_id in class_ids}
        if not windows:
            return windows

        sessions = (
            db.session.query(ClassSession)
            .filter(ClassSession.class_id.in_(list(windows)))
            .order_by(ClassSession.class_id, ClassSession.date)
            .all()
        )
        for s in sessions:
            windows[s.class_id].append(TimeWindow(s.date, s.date, s.start_time, s.end_time))
        return windows

    @staticmethod
    def _validate_slots(slots):
        """Parse raw slots into sorted ``SessionSlot`` values or raise."""
        parsed = []
        for index, slot in enumerate(slots, start=1):
            if isinstance(slot, dict):
                raw_date, raw_start, raw_end = slot.get('date'), slot.get('start_time'), slot.get('end_time')
            else:
                raw_date, raw_start, raw_end = slot

            day, start, end = parse_date(raw_date), parse_hhmm(raw_start), parse_hhmm(raw_end)
            if day is None or start is None or end is None:
                raise InvalidInputError(
                    CalendarError.INVALID_SESSION,
                    f'Session {index} needs a valid date (YYYY-MM-DD) and times (HH:MM)'
                )
            if start >= end:
                raise InvalidInputError(
                    CalendarError.INVALID_SESSION,
                    f'Session {index} on {day.isoformat()} must start before it ends'
                )
            parsed.append(SessionSlot(day, start, end))

        parsed.sort(key=lambda s: s.date)
        for previous, current in zip(parsed, parsed[1:]):
            if previous.date == current.date:
                raise ConflictError(
                    CalendarError.DUPLICATE_SESSION_DATE,
                    f'More than one session on {current.date.isoformat()}'
                )
        return parsed

    @staticmethod
    def replace_sessions(class_id, slots):
        """
        Replace the explicit sessions of a class.

        Args:
            class_id: Class ID
            slots: iterable of ``{'date', 'start_time', 'end_time'}`` dicts or
                ``(date, start, end)`` tuples

        Returns:
            dict: result with the stored sessions
        """
        try:
            course_class = db.session.get(CourseClass, class_id)
            if not course_class:
                raise NotFoundError(CalendarError.CLASS_NOT_FOUND, 'Class not found')

            parsed = CalendarService._validate_slots(slots)

            db.session.query(ClassSession).filter(ClassSession.class_id == class_id).delete(
                synchronize_session=False
            )
            for slot in parsed:
                db.session.add(ClassSession(
                    class_id=class_id, date=slot.date, start_time=slot.start_time, end_time=slot.end_time
                ))

            if parsed:
                course_class.start_date = parsed[0].date
                course_class.end_date = parsed[-1].date
                (start, end), _ = Counter((s.start_time, s.end_time) for s in parsed).most_common(1)[0]
                course_class.start_time = start
                course_class.end_time = end

            db.session.commit()
            db.session.expire(course_class, ['sessions'])
            logger.info(f"Stored {len(parsed)} sessions for class {class_id}")

            return {
                'success': True,
                'message': f'{len(parsed)} sessions stored',
                'class_id': class_id,
                'sessions': [
                    {'date': s.date.isoformat(), 'start_time': format_hhmm(s.start_time),
                     'end_time': format_hhmm(s.end_time)}
                    for s in parsed
                ]
            }

        except ServiceError as e:
            db.session.rollback()
            logger.warning(f"Session replacement rejected for class {class_id}: {e.message}")
            return error_result(e)
        except IntegrityError as e:
            db.session.rollback()
            logger.warning(f"Session replacement hit a constraint for class {class_id}: {str(e)}")
            return error_result(ConflictError(CalendarError.DUPLICATE_SESSION_DATE, 'Duplicate session date'))
        except Exception as e:
            db.session.rollback()
            return internal_error_result(logger, 'Failed to store class sessions', e)

    @staticmethod
    def import_sessions(class_id, file_path):
        """
        Load a class schedule from a CSV or Excel sheet.

        The sheet needs ``date``, ``start_time`` and ``end_time`` columns; header
        case and surrounding spaces are ignored.
        """
        try:
            if file_path.endswith('.xlsx') or file_path.endswith('.xls'):
                df = pd.read_excel(file_path, dtype=str)
            else:
                try:
                    df = pd.read_csv(file_path, dtype=str)
                except UnicodeDecodeError:
                    df = pd.read_csv(file_path, dtype=str, encoding='latin-1')
        except Exception as e:
            logger.error(f"Unable to read session sheet {file_path}: {str(e)}")
            return error_result(InvalidInputError(CalendarError.UNREADABLE_SHEET, f'Unable to read file: {str(e)}'))

        df.columns = [str(column).strip().lower() for column in df.columns]
        missing = [column for column in ('date', 'start_time', 'end_time') if column not in df.columns]
        if missing:
            return error_result(InvalidInputError(
                CalendarError.UNREADABLE_SHEET, f"Missing columns: {', '.join(missing)}"
            ))

        df = df.dropna(how='all', subset=['date', 'start_time', 'end_time'])
        slots = [
            (row['date'], row['start_time'], row['end_time'])
            for row in df.fillna('').to_dict('records')
        ]

        logger.info(f"Importing {len(slots)} sessions for class {class_id} from {file_path}")
        return CalendarService.replace_sessions(class_id, slots)
