# models/__init__.py
from .base import BaseModel
from .user import User, Role, RoleType, user_roles
from .event import Event, EventKind, RestrictionMode, EventAllowedRegistration, event_instructors
from .course_class import CourseClass, ClassSession
from .enrollment import Enrollment
from .attendance import Attendance, AttendanceMethod
from .notification import Notification, NotificationKind, EvaluationSubmission

__all__ = [
    'BaseModel',
    'User',
    'Role',
    'RoleType',
    'user_roles',
    'Event',
    'EventKind',
    'RestrictionMode',
    'EventAllowedRegistration',
    'event_instructors',
    'CourseClass',
    'ClassSession',
    'Enrollment',
    'Attendance',
    'AttendanceMethod',
    'Notification',
    'NotificationKind',
    'EvaluationSubmission'
]
