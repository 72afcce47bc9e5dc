# services/eligibility_service.py
"""
Eligibility Gate.

Everything here is derived on demand from the session calendar, the attendance rows
and the clock; nothing is stored except the evaluation submission fact, which
belongs to the evaluation step and unlocks the certificate.

A participant becomes eligible for the evaluation once the class has ended and the
share of distinct calendar dates marked present reaches ``ATTENDANCE_THRESHOLD``.
"""

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from enrollment_engine.extensions import db, email_service
from enrollment_engine.models import (
    User, CourseClass, Enrollment, Attendance, EvaluationSubmission, NotificationKind
)
from enrollment_engine.services.calendar_service import CalendarService
from enrollment_engine.services.notification_service import NotificationService
from enrollment_engine.services.errors import (
    EligibilityError, ServiceError, NotFoundError, ConflictError, error_result, internal_error_result
)

logger = logging.getLogger('eligibility_service')

DEFAULT_ATTENDANCE_THRESHOLD = 0.75


class EligibilityPhase:
    NOT_STARTED = 'not_started'
    IN_PROGRESS = 'in_progress'
    ENDED = 'ended'


class EligibilityState:
    """Derived eligibility of one participant in one class."""

    def __init__(self, phase, sessions_total, sessions_present, threshold):
        self.phase = phase
        self.sessions_total = sessions_total
        self.sessions_present = sessions_present
        self.ratio = sessions_present / sessions_total if sessions_total else 0.0
        self.threshold = threshold

    @property
    def class_ended(self):
        return self.phase == EligibilityPhase.ENDED

    @property
    def eligible_for_evaluation(self):
        return self.class_ended and self.sessions_total > 0 and self.ratio >= self.threshold

    def to_dict(self):
        return {
            'phase': self.phase,
            'class_ended': self.class_ended,
            'sessions_total': self.sessions_total,
            'sessions_present': self.sessions_present,
            'ratio': round(self.ratio, 4),
            'threshold': self.threshold,
            'eligible_for_evaluation': self.eligible_for_evaluation
        }

    def __repr__(self):
        return (f'<EligibilityState {self.phase} {self.sessions_present}/{self.sessions_total} '
                f'eligible={self.eligible_for_evaluation}>')


def attendance_threshold():
    return float(current_app.config.get('ATTENDANCE_THRESHOLD', DEFAULT_ATTENDANCE_THRESHOLD))


class EligibilityService:

    @staticmethod
    def phase_of(course_class, now=None):
        """The class has ended only once its last session's end lies strictly in the past."""
        now = now or datetime.now()
        start, end = CalendarService.class_bounds(course_class)

        if end is not None and now > end:
            return EligibilityPhase.ENDED
        if start is None or now < start:
            return EligibilityPhase.NOT_STARTED
        return EligibilityPhase.IN_PROGRESS

    @staticmethod
    def evaluate(participant_id, class_id, now=None):
        """
        Compute the eligibility state.

        Raises:
            NotFoundError: unknown class
        """
        course_class = db.session.get(CourseClass, class_id)
        if not course_class:
            raise NotFoundError(EligibilityError.CLASS_NOT_FOUND, 'Class not found')

        session_dates = CalendarService.session_dates(course_class)
        present = 0
        if session_dates:
            present = (
                db.session.query(func.count(func.distinct(Attendance.session_date)))
                .filter(
                    Attendance.participant_id == participant_id,
                    Attendance.class_id == class_id,
                    Attendance.present.is_(True),
                    Attendance.session_date.in_(session_dates)
                )
                .scalar()
            ) or 0

        return EligibilityState(
            EligibilityService.phase_of(course_class, now),
            len(session_dates),
            present,
            attendance_threshold()
        )

    @staticmethod
    def get_eligibility(participant_id, class_id, now=None):
        """``evaluate`` wrapped in a result dict."""
        try:
            state = EligibilityService.evaluate(participant_id, class_id, now)
            return {'success': True, 'participant_id': participant_id, 'class_id': class_id, **state.to_dict()}
        except ServiceError as e:
            return error_result(e)
        except Exception as e:
            return internal_error_result(logger, 'Failed to compute eligibility', e)

    @staticmethod
    def _is_enrolled(participant_id, class_id):
        return db.session.query(Enrollment.id).filter_by(
            participant_id=participant_id, class_id=class_id
        ).first() is not None

    @staticmethod
    def _has_submitted(participant_id, class_id):
        return db.session.query(EvaluationSubmission.id).filter_by(
            participant_id=participant_id, class_id=class_id
        ).first() is not None

    @staticmethod
    def reevaluate(participant_id, class_id, now=None):
        """
        Emit the evaluation notification once the participant becomes eligible.

        Called after every attendance write. Never raises.

        Returns:
            bool: True when a notification was created by this call
        """
        try:
            if not EligibilityService._is_enrolled(participant_id, class_id):
                return False

            state = EligibilityService.evaluate(participant_id, class_id, now)
            if not state.eligible_for_evaluation or EligibilityService._has_submitted(participant_id, class_id):
                return False

            course_class = db.session.get(CourseClass, class_id)
            notification = NotificationService.notify_if_absent(
                participant_id,
                NotificationKind.EVALUATION,
                f'The evaluation for "{course_class.name}" ({course_class.event.title}) is now available.',
                class_id=class_id,
                title='Evaluation available',
                unread_only=False
            )
            return notification is not None

        except Exception as e:
            db.session.rollback()
            logger.warning(f"Eligibility re-evaluation failed for participant {participant_id}, "
                           f"class {class_id}: {e}")
            return False

    @staticmethod
    def pending_evaluations(participant_id, now=None):
        """Ended classes the participant is eligible to evaluate but has not yet evaluated."""
        try:
            class_ids = [
                class_id for (class_id,) in
                db.session.query(Enrollment.class_id).filter_by(participant_id=participant_id).all()
            ]

            pending = []
            for class_id in class_ids:
                if EligibilityService._has_submitted(participant_id, class_id):
                    continue
                state = EligibilityService.evaluate(participant_id, class_id, now)
                if not state.eligible_for_evaluation:
                    continue

                course_class = db.session.get(CourseClass, class_id)
                pending.append({
                    'class_id': class_id,
                    'class_name': course_class.name,
                    'event_id': course_class.event_id,
                    'event_title': course_class.event.title,
                    **state.to_dict()
                })

            return {'success': True, 'pending': pending, 'count': len(pending)}

        except Exception as e:
            return internal_error_result(logger, 'Failed to list pending evaluations', e)

    @staticmethod
    def record_evaluation_submitted(participant_id, class_id, now=None):
        """
        Store that the participant handed in the evaluation and announce the certificate.

        Idempotent: a second submission succeeds with ``already_submitted``.
        """
        now = now or datetime.now()
        try:
            if not EligibilityService._is_enrolled(participant_id, class_id):
                raise NotFoundError(EligibilityError.NOT_ENROLLED, 'Participant is not enrolled in this class')

            if EligibilityService._has_submitted(participant_id, class_id):
                return {'success': True, 'message': 'Evaluation already submitted', 'already_submitted': True}

            state = EligibilityService.evaluate(participant_id, class_id, now)
            if not state.eligible_for_evaluation:
                raise ConflictError(EligibilityError.NOT_ELIGIBLE,
                                    'The evaluation is not available for this participant yet')

            db.session.add(EvaluationSubmission(participant_id=participant_id, class_id=class_id, submitted_at=now))
            db.session.commit()

        except ServiceError as e:
            db.session.rollback()
            return error_result(e)
        except IntegrityError:
            db.session.rollback()
            return {'success': True, 'message': 'Evaluation already submitted', 'already_submitted': True}
        except Exception as e:
            db.session.rollback()
            return internal_error_result(logger, 'Failed to record evaluation', e)

        logger.info(f"Evaluation submitted by participant {participant_id} for class {class_id}")
        EligibilityService._announce_certificate(participant_id, class_id)

        return {'success': True, 'message': 'Evaluation recorded', 'already_submitted': False}

    @staticmethod
    def _announce_certificate(participant_id, class_id):
        try:
            course_class = db.session.get(CourseClass, class_id)
            notification = NotificationService.notify_if_absent(
                participant_id,
                NotificationKind.CERTIFICATE,
                f'Your certificate for "{course_class.event.title}" is available.',
                class_id=class_id,
                event_id=course_class.event_id,
                title='Certificate available'
            )
            if notification is not None:
                email_service.send_certificate_available(db.session.get(User, participant_id), course_class)
        except Exception as e:
            logger.warning(f"Certificate announcement failed for participant {participant_id}, "
                           f"class {class_id}: {e}")

    @staticmethod
    def certificate_available(participant_id, class_id, now=None):
        """Certificate gate: eligible for the evaluation and evaluation submitted."""
        try:
            state = EligibilityService.evaluate(participant_id, class_id, now)
            submitted = EligibilityService._has_submitted(participant_id, class_id)
            return {
                'success': True,
                'available': state.eligible_for_evaluation and submitted,
                'eligible_for_evaluation': state.eligible_for_evaluation,
                'evaluation_submitted': submitted
            }
        except ServiceError as e:
            return error_result(e)
        except Exception as e:
            return internal_error_result(logger, 'Failed to check certificate availability', e)

    @staticmethod
    def sweep(now=None):
        """Re-evaluate every enrollment of ended classes; returns notifications created."""
        created = 0
        for participant_id, class_id in db.session.query(Enrollment.participant_id, Enrollment.class_id).all():
            course_class = db.session.get(CourseClass, class_id)
            if EligibilityService.phase_of(course_class, now) != EligibilityPhase.ENDED:
                continue
            if EligibilityService.reevaluate(participant_id, class_id, now):
                created += 1
        return created

