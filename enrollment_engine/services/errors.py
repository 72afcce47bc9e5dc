# services/errors.py
"""
Error vocabulary shared by the enrollment, attendance and eligibility services.

Services raise ``ServiceError`` subclasses while validating inside a transaction,
roll back, and hand the caller a result dict built by ``error_result``. Controllers
turn ``error_kind`` into an HTTP status with ``http_status``.
"""

from flask import current_app


class ErrorKind:
    """Error kinds returned to callers."""
    NOT_FOUND = 'not_found'
    FORBIDDEN = 'forbidden'
    CONFLICT = 'conflict'
    INVALID_INPUT = 'invalid_input'
    INTERNAL = 'internal_error'


class EnrollmentError:
    """Enrollment-specific error codes."""
    CLASS_NOT_FOUND = 'class_not_found'
    EVENT_NOT_FOUND = 'event_not_found'
    PARTICIPANT_NOT_FOUND = 'participant_not_found'
    ENROLLMENT_NOT_FOUND = 'enrollment_not_found'
    EVENT_RESTRICTED = 'event_restricted'
    INSTRUCTOR_SELF_ENROLLMENT = 'instructor_self_enrollment'
    NOT_ALLOWED_TO_CANCEL = 'not_allowed_to_cancel'
    NOT_ALLOWED_TO_ENROLL = 'not_allowed_to_enroll'
    DUPLICATE_ENROLLMENT = 'duplicate_enrollment'
    ALREADY_ENROLLED_IN_EVENT = 'already_enrolled_in_event'
    SAME_EVENT_TIME_CONFLICT = 'same_event_time_conflict'
    TIME_CONFLICT = 'time_conflict'
    CLASS_FULL = 'class_full'
    ATTENDANCE_RECORDED = 'attendance_recorded'


class AttendanceError:
    """Attendance-specific error codes."""
    CLASS_NOT_FOUND = 'class_not_found'
    PARTICIPANT_NOT_FOUND = 'participant_not_found'
    ATTENDANCE_NOT_FOUND = 'attendance_not_found'
    NOT_ENROLLED = 'not_enrolled'
    NOT_INSTRUCTOR = 'not_instructor'
    PERMISSION_DENIED = 'permission_denied'
    INVALID_DATE = 'invalid_date'
    NOT_A_SESSION_DAY = 'not_a_session_day'
    CONFIRMATION_NOT_OPEN = 'confirmation_not_open'
    CONFIRMATION_WINDOW_EXPIRED = 'confirmation_window_expired'
    BACKFILL_WINDOW_EXPIRED = 'backfill_window_expired'
    FUTURE_DATE = 'future_date'
    INVALID_TOKEN = 'invalid_token'


class CalendarError:
    """Calendar-specific error codes."""
    CLASS_NOT_FOUND = 'class_not_found'
    INVALID_SESSION = 'invalid_session'
    DUPLICATE_SESSION_DATE = 'duplicate_session_date'
    UNREADABLE_SHEET = 'unreadable_sheet'


class EligibilityError:
    """Eligibility-specific error codes."""
    CLASS_NOT_FOUND = 'class_not_found'
    NOT_ENROLLED = 'not_enrolled'
    NOT_ELIGIBLE = 'not_eligible'


class ServiceError(Exception):
    """Base class for errors that map onto an ``ErrorKind``."""

    kind = ErrorKind.INTERNAL

    def __init__(self, error_code, message):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND


class ForbiddenError(ServiceError):
    kind = ErrorKind.FORBIDDEN


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT


class InvalidInputError(ServiceError):
    kind = ErrorKind.INVALID_INPUT


HTTP_STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}


def error_result(error, **extra):
    """Build the failure dict for a ``ServiceError``."""
    result = {
        'success': False,
        'message': error.message,
        'error_code': error.error_code,
        'error_kind': error.kind
    }
    result.update(extra)
    return result


def internal_error_result(logger, message, exc):
    """Log an unexpected exception and build a generic failure dict."""
    logger.error(f"{message}: {str(exc)}", exc_info=True)
    result = {
        'success': False,
        'message': message,
        'error_code': 'internal_error',
        'error_kind': ErrorKind.INTERNAL
    }
    if current_app.debug:
        result['detail'] = str(exc)
    return result


def http_status(result):
    """HTTP status for a service result dict."""
    if result.get('success'):
        return 200
    return HTTP_STATUS_BY_KIND.get(result.get('error_kind'), 500)


def require_positive_id(value, name):
    """Coerce an identifier to a positive int or raise ``InvalidInputError``."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidInputError('invalid_id', f'{name} must be a positive integer')
    if number <= 0 or isinstance(value, bool):
        raise InvalidInputError('invalid_id', f'{name} must be a positive integer')
    return number


