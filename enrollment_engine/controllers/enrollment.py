# controllers/enrollment.py
"""
Enrollment API: enroll, cancel, conflict preview, a participant's enrollments,
class rosters and class schedules.
"""

import logging
from flask import Blueprint, request, jsonify
from flask_login import current_user

from enrollment_engine.extensions import db, csrf
from enrollment_engine.models import CourseClass
from enrollment_engine.services.calendar_service import CalendarService
from enrollment_engine.services.enrollment_service import EnrollmentService
from enrollment_engine.services.errors import (
    ServiceError, ForbiddenError, NotFoundError, EnrollmentError, error_result
)
from enrollment_engine.controllers.forms import EnrollmentForm, SessionSlotForm, form_from_json, json_result
from enrollment_engine.utils.auth import admin_required, login_required_json
from enrollment_engine.utils.intervals import format_hhmm

enrollment_bp = Blueprint('enrollment', __name__)
csrf.exempt(enrollment_bp)

logger = logging.getLogger('enrollment')


def can_manage_class(user, class_id):
    """Admins, and instructors of the class's event."""
    if user.is_admin():
        return True
    course_class = db.session.get(CourseClass, class_id)
    return bool(course_class and course_class.event.has_instructor(user.id))


@enrollment_bp.route('/enrollments', methods=['POST'])
@login_required_json
def enroll():
    """Enroll the current user (or, for admins, the given participant) in a class."""
    try:
        form = form_from_json(EnrollmentForm, request.get_json(silent=True))
    except ServiceError as e:
        return json_result(error_result(e))

    participant_id = form.participant_id.data or current_user.id
    if participant_id != current_user.id and not current_user.is_admin():
        return json_result(error_result(ForbiddenError(
            EnrollmentError.NOT_ALLOWED_TO_ENROLL, 'Only administrators can enroll other participants'
        )))

    result = EnrollmentService.enroll(participant_id, form.class_id.data)
    if result['success']:
        return jsonify(result), 201
    return json_result(result)


@enrollment_bp.route('/enrollments/<int:class_id>', methods=['DELETE'])
@login_required_json
def cancel(class_id):
    participant_id = request.args.get('participant_id', type=int) or current_user.id
    result = EnrollmentService.cancel(participant_id, class_id, current_user.id)
    return json_result(result)


@enrollment_bp.route('/enrollments/mine')
@login_required_json
def my_enrollments():
    return json_result(EnrollmentService.participant_enrollments(current_user.id))


@enrollment_bp.route('/classes/<int:class_id>/conflicts')
@login_required_json
def conflicts(class_id):
    """Advisory conflict preview used by the enrollment screen."""
    return json_result(EnrollmentService.check_conflicts(current_user.id, class_id))


@enrollment_bp.route('/classes/<int:class_id>/roster')
@login_required_json
def roster(class_id):
    if not can_manage_class(current_user, class_id):
        return jsonify({'error': 'Access forbidden'}), 403
    return json_result(EnrollmentService.class_roster(class_id))


@enrollment_bp.route('/classes/<int:class_id>/sessions')
def class_sessions(class_id):
    if not db.session.get(CourseClass, class_id):
        return json_result(error_result(NotFoundError(EnrollmentError.CLASS_NOT_FOUND, 'Class not found')))

    sessions = [
        {'date': slot.date.isoformat(), 'start_time': format_hhmm(slot.start_time),
         'end_time': format_hhmm(slot.end_time)}
        for slot in CalendarService.sessions_of(class_id)
    ]
    return jsonify({'success': True, 'class_id': class_id, 'sessions': sessions, 'count': len(sessions)})


@enrollment_bp.route('/classes/<int:class_id>/sessions', methods=['PUT'])
@admin_required
def replace_class_sessions(class_id):
    data = request.get_json(silent=True) or {}
    slots = data.get('sessions')
    if not isinstance(slots, list):
        return jsonify({
            'success': False,
            'message': 'sessions must be a list',
            'error_code': 'invalid_payload',
            'error_kind': 'invalid_input'
        }), 400

    try:
        forms = [form_from_json(SessionSlotForm, slot) for slot in slots]
    except ServiceError as e:
        return json_result(error_result(e))

    result = CalendarService.replace_sessions(
        class_id, [(f.date.data, f.start_time.data, f.end_time.data) for f in forms]
    )
    logger.info(f"User {current_user.id} replaced sessions of class {class_id}: {result['success']}")
    return json_result(result)
