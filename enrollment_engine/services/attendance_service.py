# services/attendance_service.py
"""
Attendance Tracker.

Every write is an upsert of one (participant, class, session date) row committed in
its own transaction. The operations differ only in who may write and when:

* self confirmation via the class token opens ``SELF_CONFIRM_LEAD_MINUTES`` before
  the session starts and stays open for the rest of that day;
* instructors of the event may confirm until ``INSTRUCTOR_CONFIRM_WINDOW_HOURS``
  after the session ends;
* administrators may backfill up to ``ADMIN_BACKFILL_WINDOW_DAYS`` days back.

After a successful write the eligibility of the pair is re-evaluated, which may emit
the evaluation notification.
"""

import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from enrollment_engine.extensions import db
from enrollment_engine.models import User, CourseClass, Enrollment, Attendance, AttendanceMethod
from enrollment_engine.services.calendar_service import CalendarService
from enrollment_engine.services.eligibility_service import EligibilityService
from enrollment_engine.services.token_service import TokenService
from enrollment_engine.services.errors import (
    AttendanceError, ServiceError, NotFoundError, ForbiddenError, ConflictError, InvalidInputError,
    error_result, internal_error_result, require_positive_id
)
from enrollment_engine.utils.intervals import parse_date, combine

logger = logging.getLogger('attendance_service')


class AttendanceService:
    """Service class for attendance writes."""

    # ---- shared helpers ----

    @staticmethod
    def _load_class(class_id):
        class_id = require_positive_id(class_id, 'class_id')
        course_class = db.session.get(CourseClass, class_id)
        if not course_class:
            raise NotFoundError(AttendanceError.CLASS_NOT_FOUND, 'Class not found')
        return course_class

    @staticmethod
    def _load_participant(participant_id):
        participant_id = require_positive_id(participant_id, 'participant_id')
        participant = db.session.get(User, participant_id)
        if not participant:
            raise NotFoundError(AttendanceError.PARTICIPANT_NOT_FOUND, 'Participant not found')
        return participant

    @staticmethod
    def _is_enrolled(participant_id, class_id):
        return db.session.query(Enrollment.id).filter_by(
            participant_id=participant_id, class_id=class_id
        ).first() is not None

    @staticmethod
    def _session_date(course_class, value):
        """Parse a session date and require it to be on the class calendar (when it has one)."""
        session_date = parse_date(value)
        if session_date is None:
            raise InvalidInputError(AttendanceError.INVALID_DATE, 'Invalid date. Use YYYY-MM-DD')

        dates = CalendarService.session_dates(course_class)
        if dates and session_date not in dates:
            raise InvalidInputError(AttendanceError.INVALID_DATE,
                                    f'{session_date.isoformat()} is not a session date of this class')
        return session_date

    @staticmethod
    def _upsert(participant_id, class_id, session_date, present, method, now):
        """
        Insert or overwrite the attendance row; ``confirmed_at`` only moves on a present mark.

        A concurrent insert of the same key surfaces as IntegrityError on flush; the
        transaction is rolled back and the write retried as an update.
        """
        for attempt in range(2):
            try:
                row = (
                    db.session.query(Attendance)
                    .filter_by(participant_id=participant_id, class_id=class_id, session_date=session_date)
                    .with_for_update()
                    .first()
                )
                if row is None:
                    row = Attendance(participant_id=participant_id, class_id=class_id, session_date=session_date)
                    db.session.add(row)

                row.present = present
                row.method = method
                if present:
                    row.confirmed_at = now

                db.session.flush()
                return row
            except IntegrityError:
                db.session.rollback()
                if attempt:
                    raise
                logger.info(f"Attendance row ({participant_id}, {class_id}, {session_date}) created concurrently; "
                            f"retrying as update")

    @staticmethod
    def _write(description, participant_id, class_id, work, now=None):
        """Run ``work`` in a transaction and shape the result; re-evaluates eligibility on success."""
        try:
            row = work()
            db.session.commit()
        except ServiceError as e:
            db.session.rollback()
            logger.info(f"Attendance {description} rejected for participant {participant_id}, "
                        f"class {class_id}: {e.error_code}")
            return error_result(e)
        except Exception as e:
            db.session.rollback()
            return internal_error_result(logger, f'Failed to {description}', e)

        logger.info(f"Attendance {description}: participant {row.participant_id}, class {row.class_id}, "
                    f"{row.session_date} -> {'present' if row.present else 'absent'}")

        EligibilityService.reevaluate(row.participant_id, row.class_id, now)

        return {
            'success': True,
            'message': 'Attendance recorded' if row.present else 'Attendance marked as pending',
            'attendance': AttendanceService._format_attendance(row)
        }

    @staticmethod
    def _format_attendance(row):
        return {
            'participant_id': row.participant_id,
            'class_id': row.class_id,
            'session_date': row.session_date.isoformat(),
            'present': row.present,
            'confirmed_at': row.confirmed_at.isoformat() if row.confirmed_at else None,
            'method': row.method
        }

    # ---- operations ----

    @staticmethod
    def mark_present(participant_id, class_id, session_date, now=None):
        """Unconditional present mark on a session date."""
        now = now or datetime.now()

        def work():
            course_class = AttendanceService._load_class(class_id)
            participant = AttendanceService._load_participant(participant_id)
            day = AttendanceService._session_date(course_class, session_date)
            return AttendanceService._upsert(participant.id, course_class.id, day, True, AttendanceMethod.ADMIN, now)

        return AttendanceService._write('mark present', participant_id, class_id, work, now)

    @staticmethod
    def confirm_via_short_lived_token(participant_id, class_id, now=None):
        """
        Participant confirms their own presence today.

        Requires an enrollment, today to be a session date, and the current time to
        be no earlier than the lead window before today's start time.
        """
        now = now or datetime.now()

        def work():
            course_class = AttendanceService._load_class(class_id)
            participant = AttendanceService._load_participant(participant_id)

            if not AttendanceService._is_enrolled(participant.id, course_class.id):
                raise ForbiddenError(AttendanceError.NOT_ENROLLED, 'You are not enrolled in this class')

            today = now.date()
            if today not in CalendarService.session_dates(course_class):
                raise ConflictError(AttendanceError.NOT_A_SESSION_DAY, 'There is no session of this class today')

            lead = timedelta(minutes=current_app.config.get('SELF_CONFIRM_LEAD_MINUTES', 30))
            opens_at = combine(today, CalendarService.start_time_on(course_class, today)) - lead
            if now < opens_at:
                raise ConflictError(AttendanceError.CONFIRMATION_NOT_OPEN,
                                    f'Confirmation opens at {opens_at.strftime("%H:%M")}')

            return AttendanceService._upsert(participant.id, course_class.id, today, True,
                                             AttendanceMethod.TOKEN, now)

        return AttendanceService._write('self confirmation', participant_id, class_id, work, now)

    @staticmethod
    def confirm_with_token(participant_id, token, now=None):
        """Self confirmation using the signed code shown in the room."""
        now = now or datetime.now()
        try:
            class_id = TokenService.verify(token, now=now)
        except ServiceError as e:
            logger.info(f"Attendance token rejected for participant {participant_id}: {e.message}")
            return error_result(e)

        return AttendanceService.confirm_via_short_lived_token(participant_id, class_id, now=now)

    @staticmethod
    def instructor_confirm(instructor_id, participant_id, class_id, session_date, now=None):
        """Instructor of the event confirms a participant up to the window after the session ends."""
        now = now or datetime.now()

        def work():
            course_class = AttendanceService._load_class(class_id)
            if not course_class.event.has_instructor(instructor_id):
                raise ForbiddenError(AttendanceError.NOT_INSTRUCTOR, 'Only instructors of this event can confirm')

            participant = AttendanceService._load_participant(participant_id)
            if not AttendanceService._is_enrolled(participant.id, course_class.id):
                raise NotFoundError(AttendanceError.NOT_ENROLLED, 'Participant is not enrolled in this class')

            day = AttendanceService._session_date(course_class, session_date)
            window = timedelta(hours=current_app.config.get('INSTRUCTOR_CONFIRM_WINDOW_HOURS', 48))
            closes_at = combine(day, CalendarService.end_time_on(course_class, day)) + window
            if now > closes_at:
                raise ConflictError(AttendanceError.CONFIRMATION_WINDOW_EXPIRED, 'Confirmation window expired')

            return AttendanceService._upsert(participant.id, course_class.id, day, True,
                                             AttendanceMethod.INSTRUCTOR, now)

        return AttendanceService._write('instructor confirmation', participant_id, class_id, work, now)

    @staticmethod
    def administrative_backfill(admin_id, participant_id, class_id, session_date, present=True, now=None):
        """Administrator correction of a past session, within the backfill window."""
        now = now or datetime.now()

        def work():
            admin = db.session.get(User, admin_id) if admin_id else None
            if not admin or not admin.is_admin():
                raise ForbiddenError(AttendanceError.PERMISSION_DENIED, 'Administrator access required')

            course_class = AttendanceService._load_class(class_id)
            participant = AttendanceService._load_participant(participant_id)
            day = AttendanceService._session_date(course_class, session_date)

            days_back = (now.date() - day).days
            if days_back < 0:
                raise InvalidInputError(AttendanceError.FUTURE_DATE, 'Cannot backfill a future session')
            if days_back > current_app.config.get('ADMIN_BACKFILL_WINDOW_DAYS', 60):
                raise ConflictError(AttendanceError.BACKFILL_WINDOW_EXPIRED, 'Backfill window expired')

            return AttendanceService._upsert(participant.id, course_class.id, day, bool(present),
                                             AttendanceMethod.BACKFILL, now)

        return AttendanceService._write('backfill', participant_id, class_id, work, now)

    @staticmethod
    def mark_pending(participant_id, class_id, session_date, now=None):
        """Write an explicit ``present=False`` row, overwriting any earlier mark."""
        now = now or datetime.now()

        def work():
            course_class = AttendanceService._load_class(class_id)
            participant = AttendanceService._load_participant(participant_id)
            day = AttendanceService._session_date(course_class, session_date)
            return AttendanceService._upsert(participant.id, course_class.id, day, False,
                                             AttendanceMethod.PENDING, now)

        return AttendanceService._write('mark pending', participant_id, class_id, work, now)

    @staticmethod
    def validate_pending(participant_id, class_id, session_date, now=None):
        """Turn an existing (pending) row into a present mark."""
        now = now or datetime.now()

        def work():
            course_class = AttendanceService._load_class(class_id)
            day = parse_date(session_date)
            if day is None:
                raise InvalidInputError(AttendanceError.INVALID_DATE, 'Invalid date. Use YYYY-MM-DD')

            row = (
                db.session.query(Attendance)
                .filter_by(participant_id=participant_id, class_id=course_class.id, session_date=day)
                .with_for_update()
                .first()
            )
            if not row:
                raise NotFoundError(AttendanceError.ATTENDANCE_NOT_FOUND, 'No attendance record for this date')

            row.present = True
            row.confirmed_at = now
            row.method = AttendanceMethod.ADMIN
            return row

        return AttendanceService._write('validate pending', participant_id, class_id, work, now)
