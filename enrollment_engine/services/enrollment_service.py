# services/enrollment_service.py
"""
Enrollment Engine.

``enroll`` validates and inserts an enrollment inside one transaction that holds a
row lock on the target class, so the capacity recount and the insert cannot
interleave with another enrollment into the same class. Errors from the unique
constraint on (participant, class) or from a blocking database trigger are mapped
onto the same conflict codes the application-level checks produce.
"""

import logging

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, DBAPIError

from enrollment_engine.extensions import db, email_service
from enrollment_engine.models import (
    User, CourseClass, Enrollment, Attendance, NotificationKind
)
from enrollment_engine.services.access_service import AccessService
from enrollment_engine.services.calendar_service import CalendarService
from enrollment_engine.services.notification_service import NotificationService
from enrollment_engine.services.errors import (
    EnrollmentError, ServiceError, NotFoundError, ForbiddenError, ConflictError,
    error_result, internal_error_result, require_positive_id
)
from enrollment_engine.utils.intervals import any_overlap, format_hhmm

logger = logging.getLogger('enrollment_service')

# SQLSTATE raised by RAISE EXCEPTION in PL/pgSQL triggers
TRIGGER_BLOCKED_SQLSTATE = 'P0001'


class EnrollmentService:
    """Service class for enrollment operations."""

    @staticmethod
    def _held_classes(participant_id, exclude_class_id):
        return (
            db.session.query(CourseClass)
            .join(Enrollment, Enrollment.class_id == CourseClass.id)
            .filter(Enrollment.participant_id == participant_id, CourseClass.id != exclude_class_id)
            .all()
        )

    @staticmethod
    def _same_event_overlap(candidate_windows, course_class, held):
        for other in held:
            if other.event_id != course_class.event_id:
                continue
            if any_overlap(candidate_windows, CalendarService.windows_of(other)):
                return other
        return None

    @staticmethod
    def _global_overlap(candidate_windows, held):
        """First held class whose explicit sessions collide with the candidate windows."""
        explicit = CalendarService.explicit_windows_by_class([c.id for c in held])
        for other in held:
            if any_overlap(candidate_windows, explicit[other.id]):
                return other
        return None

    @staticmethod
    def _validate_enrollment(participant_id, course_class):
        """Run the ordered enrollment checks; raises on the first failure."""
        event = course_class.event
        if not event:
            raise NotFoundError(EnrollmentError.EVENT_NOT_FOUND, 'Event not found')

        participant = db.session.get(User, participant_id)
        if not participant:
            raise NotFoundError(EnrollmentError.PARTICIPANT_NOT_FOUND, 'Participant not found')

        if event.restricted:
            access = AccessService.can_access(participant_id, event.id)
            if not access['ok']:
                raise ForbiddenError(EnrollmentError.EVENT_RESTRICTED,
                                     'This event is restricted to a specific audience')

        if event.has_instructor(participant_id):
            raise ForbiddenError(EnrollmentError.INSTRUCTOR_SELF_ENROLLMENT,
                                 'Instructors cannot enroll in their own event')

        duplicate = (
            db.session.query(Enrollment.id)
            .filter_by(participant_id=participant_id, class_id=course_class.id)
            .first()
        )
        if duplicate:
            raise ConflictError(EnrollmentError.DUPLICATE_ENROLLMENT, 'Participant is already enrolled in this class')

        held = EnrollmentService._held_classes(participant_id, course_class.id)

        if not event.is_congress and any(c.event_id == event.id for c in held):
            raise ConflictError(EnrollmentError.ALREADY_ENROLLED_IN_EVENT,
                                'Participant is already enrolled in another class of this event')

        candidate_windows = CalendarService.windows_of(course_class)

        if event.is_congress:
            clash = EnrollmentService._same_event_overlap(candidate_windows, course_class, held)
            if clash:
                raise ConflictError(EnrollmentError.SAME_EVENT_TIME_CONFLICT,
                                    f'Schedule conflicts with class "{clash.name}" of this event')

        clash = EnrollmentService._global_overlap(candidate_windows, held)
        if clash:
            raise ConflictError(EnrollmentError.TIME_CONFLICT,
                                f'Schedule conflicts with class "{clash.name}" of event "{clash.event.title}"')

        enrolled = db.session.query(func.count(Enrollment.id)).filter_by(class_id=course_class.id).scalar()
        if enrolled >= course_class.capacity:
            raise ConflictError(EnrollmentError.CLASS_FULL, 'No seats left in this class')

        return participant

    @staticmethod
    def enroll(participant_id, class_id):
        """
        Enroll a participant in a class.

        Args:
            participant_id: User ID of the participant
            class_id: Class ID

        Returns:
            dict: ``{'success': True, 'enrollment_id': ...}`` or a failure dict
            carrying ``error_kind`` and ``error_code``
        """
        try:
            participant_id = require_positive_id(participant_id, 'participant_id')
            class_id = require_positive_id(class_id, 'class_id')

            course_class = (
                db.session.query(CourseClass)
                .filter(CourseClass.id == class_id)
                .with_for_update()
                .first()
            )
            if not course_class:
                raise NotFoundError(EnrollmentError.CLASS_NOT_FOUND, 'Class not found')

            EnrollmentService._validate_enrollment(participant_id, course_class)

            enrollment = Enrollment(participant_id=participant_id, class_id=class_id)
            db.session.add(enrollment)
            db.session.commit()

        except ServiceError as e:
            db.session.rollback()
            logger.info(f"Enrollment of participant {participant_id} in class {class_id} rejected: {e.error_code}")
            return error_result(e)
        except IntegrityError as e:
            db.session.rollback()
            logger.warning(f"Enrollment insert hit a constraint ({participant_id}, {class_id}): {str(e.orig)}")
            return error_result(ConflictError(EnrollmentError.DUPLICATE_ENROLLMENT,
                                              'Participant is already enrolled in this class'))
        except DBAPIError as e:
            db.session.rollback()
            if getattr(e.orig, 'pgcode', None) == TRIGGER_BLOCKED_SQLSTATE:
                logger.warning(f"Enrollment blocked by database trigger ({participant_id}, {class_id})")
                return error_result(ConflictError(EnrollmentError.TIME_CONFLICT,
                                                  'Schedule conflicts with another enrollment'))
            return internal_error_result(logger, 'Failed to enroll participant', e)
        except Exception as e:
            db.session.rollback()
            return internal_error_result(logger, 'Failed to enroll participant', e)

        logger.info(f"Participant {participant_id} enrolled in class {class_id} (enrollment {enrollment.id})")
        EnrollmentService._after_enrollment(enrollment)

        return {
            'success': True,
            'message': 'Enrollment confirmed',
            'enrollment_id': enrollment.id,
            'class_id': class_id,
            'participant_id': participant_id
        }

    @staticmethod
    def _after_enrollment(enrollment):
        """Confirmation notification and email; failures are only logged."""
        try:
            course_class = enrollment.course_class
            NotificationService.create(
                enrollment.participant_id,
                NotificationKind.ENROLLMENT,
                f'Your enrollment in "{course_class.name}" ({course_class.event.title}) is confirmed.',
                class_id=course_class.id,
                event_id=course_class.event_id,
                title='Enrollment confirmed'
            )
        except Exception as e:
            logger.warning(f"Enrollment notification failed for enrollment {enrollment.id}: {e}")

        try:
            email_service.send_enrollment_confirmation(enrollment.id)
        except Exception as e:
            logger.warning(f"Enrollment email failed for enrollment {enrollment.id}: {e}")

    @staticmethod
    def check_conflicts(participant_id, class_id):
        """
        Advisory conflict preview for a class the participant is considering.

        Reads without locking; ``enroll`` repeats every check on its own.
        """
        try:
            participant_id = require_positive_id(participant_id, 'participant_id')
            class_id = require_positive_id(class_id, 'class_id')

            course_class = db.session.get(CourseClass, class_id)
            if not course_class:
                raise NotFoundError(EnrollmentError.CLASS_NOT_FOUND, 'Class not found')

            held = EnrollmentService._held_classes(participant_id, class_id)
            candidate_windows = CalendarService.windows_of(course_class)

            if course_class.event.is_congress:
                same_event = EnrollmentService._same_event_overlap(candidate_windows, course_class, held) is not None
            else:
                same_event = any(c.event_id == course_class.event_id for c in held)
            global_conflict = EnrollmentService._global_overlap(candidate_windows, held) is not None

            return {
                'success': True,
                'class_id': class_id,
                'same_event_conflict': same_event,
                'global_conflict': global_conflict,
                'conflict': same_event or global_conflict
            }

        except ServiceError as e:
            return error_result(e)
        except Exception as e:
            return internal_error_result(logger, 'Failed to check enrollment conflicts', e)

    @staticmethod
    def cancel(participant_id, class_id, actor_id):
        """
        Cancel an enrollment and delete its attendance rows.

        Args:
            participant_id: enrolled participant
            class_id: Class ID
            actor_id: user performing the cancellation (the participant or an admin)
        """
        try:
            participant_id = require_positive_id(participant_id, 'participant_id')
            class_id = require_positive_id(class_id, 'class_id')

            enrollment = (
                db.session.query(Enrollment)
                .filter_by(participant_id=participant_id, class_id=class_id)
                .with_for_update()
                .first()
            )
            if not enrollment:
                raise NotFoundError(EnrollmentError.ENROLLMENT_NOT_FOUND, 'Enrollment not found')

            if actor_id != participant_id:
                actor = db.session.get(User, actor_id) if actor_id else None
                if not actor or not actor.is_admin():
                    raise ForbiddenError(EnrollmentError.NOT_ALLOWED_TO_CANCEL,
                                         'Only the participant or an administrator can cancel this enrollment')

            attendance_query = db.session.query(Attendance).filter_by(participant_id=participant_id,
                                                                      class_id=class_id)
            if not current_app.config.get('ALLOW_CANCEL_WITH_ATTENDANCE', True) and attendance_query.count():
                raise ConflictError(EnrollmentError.ATTENDANCE_RECORDED,
                                    'Attendance has already been recorded for this enrollment')

            removed = attendance_query.delete(synchronize_session=False)
            db.session.delete(enrollment)
            db.session.commit()

            logger.info(f"Enrollment of participant {participant_id} in class {class_id} cancelled by {actor_id}; "
                        f"{removed} attendance rows removed")
            return {
                'success': True,
                'message': 'Enrollment cancelled',
                'attendance_removed': removed
            }

        except ServiceError as e:
            db.session.rollback()
            return error_result(e)
        except Exception as e:
            db.session.rollback()
            return internal_error_result(logger, 'Failed to cancel enrollment', e)

    @staticmethod
    def participant_enrollments(participant_id):
        """A participant's enrollments with class period and event data, soonest first."""
        try:
            enrollments = (
                db.session.query(Enrollment)
                .join(CourseClass, Enrollment.class_id == CourseClass.id)
                .filter(Enrollment.participant_id == participant_id)
                .order_by(CourseClass.start_date, CourseClass.id)
                .all()
            )

            items = []
            for enrollment in enrollments:
                course_class = enrollment.course_class
                start, end = CalendarService.class_bounds(course_class)
                items.append({
                    'enrollment_id': enrollment.id,
                    'enrolled_at': enrollment.created_at.isoformat(),
                    'class_id': course_class.id,
                    'class_name': course_class.name,
                    'event_id': course_class.event_id,
                    'event_title': course_class.event.title,
                    'location': course_class.event.location,
                    'start': start.isoformat() if start else None,
                    'end': end.isoformat() if end else None,
                    'start_time': format_hhmm(course_class.start_time),
                    'end_time': format_hhmm(course_class.end_time),
                    'total_sessions': CalendarService.total_sessions(course_class)
                })

            return {'success': True, 'enrollments': items, 'count': len(items)}

        except Exception as e:
            return internal_error_result(logger, 'Failed to list enrollments', e)

    @staticmethod
    def class_roster(class_id):
        """Enrollees of a class with their attendance frequency."""
        try:
            course_class = db.session.get(CourseClass, class_id)
            if not course_class:
                raise NotFoundError(EnrollmentError.CLASS_NOT_FOUND, 'Class not found')

            session_dates = CalendarService.session_dates(course_class)
            total = len(session_dates)

            present_counts = dict(
                db.session.query(Attendance.participant_id, func.count(func.distinct(Attendance.session_date)))
                .filter(
                    Attendance.class_id == class_id,
                    Attendance.present.is_(True),
                    Attendance.session_date.in_(session_dates)
                )
                .group_by(Attendance.participant_id)
                .all()
            ) if session_dates else {}

            rows = (
                db.session.query(Enrollment, User)
                .join(User, Enrollment.participant_id == User.id)
                .filter(Enrollment.class_id == class_id)
                .order_by(User.name)
                .all()
            )

            enrollees = []
            for enrollment, participant in rows:
                present = present_counts.get(participant.id, 0)
                enrollees.append({
                    'participant_id': participant.id,
                    'name': participant.name,
                    'email': participant.email,
                    'registration': participant.registration,
                    'enrolled_at': enrollment.created_at.isoformat(),
                    'sessions_present': present,
                    'frequency': round(present / total, 4) if total else 0.0
                })

            return {
                'success': True,
                'class_id': class_id,
                'capacity': course_class.capacity,
                'total_sessions': total,
                'enrollees': enrollees,
                'count': len(enrollees)
            }

        except ServiceError as e:
            return error_result(e)
        except Exception as e:
            return internal_error_result(logger, 'Failed to load class roster', e)
