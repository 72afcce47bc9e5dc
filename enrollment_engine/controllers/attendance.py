# controllers/attendance.py
"""
Attendance routes: self confirmation with the room QR code, instructor confirmation,
administrative backfill, pending marks, the per-class report and export, and the
participant's own overview.
"""

import logging
from io import BytesIO
from flask import Blueprint, request, jsonify, send_file
from flask_login import current_user

from enrollment_engine.extensions import csrf
from enrollment_engine.services.attendance_service import AttendanceService
from enrollment_engine.services.report_service import ReportService
from enrollment_engine.services.token_service import TokenService
from enrollment_engine.services.errors import ServiceError, error_result
from enrollment_engine.controllers.enrollment import can_manage_class
from enrollment_engine.controllers.forms import (
    AttendanceMarkForm, BackfillForm, TokenConfirmationForm, form_from_json, json_result
)
from enrollment_engine.utils.auth import admin_required, login_required_json

attendance_bp = Blueprint('attendance', __name__)
csrf.exempt(attendance_bp)

logger = logging.getLogger('attendance')


def _forbidden():
    return jsonify({'error': 'Access forbidden'}), 403


@attendance_bp.route('/confirm', methods=['POST'])
@login_required_json
def confirm():
    """Participant submits the code scanned from the room's QR code."""
    try:
        form = form_from_json(TokenConfirmationForm, request.get_json(silent=True))
    except ServiceError as e:
        return json_result(error_result(e))

    result = AttendanceService.confirm_with_token(current_user.id, form.token.data.strip())
    return json_result(result)


@attendance_bp.route('/mine')
@login_required_json
def my_attendance():
    """The signed-in participant's attendance in each enrolled class."""
    return json_result(ReportService.participant_attendance(current_user.id))


@attendance_bp.route('/classes/<int:class_id>/confirm', methods=['POST'])
@login_required_json
def confirm_today(class_id):
    """Self confirmation from the class page, without a code."""
    return json_result(AttendanceService.confirm_via_short_lived_token(current_user.id, class_id))


@attendance_bp.route('/classes/<int:class_id>/instructor-confirm', methods=['POST'])
@login_required_json
def instructor_confirm(class_id):
    try:
        form = form_from_json(AttendanceMarkForm, request.get_json(silent=True))
    except ServiceError as e:
        return json_result(error_result(e))

    result = AttendanceService.instructor_confirm(
        current_user.id, form.participant_id.data, class_id, form.session_date.data
    )
    return json_result(result)


@attendance_bp.route('/classes/<int:class_id>/backfill', methods=['POST'])
@admin_required
def backfill(class_id):
    data = request.get_json(silent=True)
    if isinstance(data, dict) and data.get('present') is None:
        data = dict(data, present=True)
    try:
        form = form_from_json(BackfillForm, data)
    except ServiceError as e:
        return json_result(error_result(e))

    result = AttendanceService.administrative_backfill(
        current_user.id, form.participant_id.data, class_id, form.session_date.data,
        present=form.present.data
    )
    return json_result(result)


@attendance_bp.route('/classes/<int:class_id>/pending', methods=['POST'])
@login_required_json
def mark_pending(class_id):
    if not can_manage_class(current_user, class_id):
        return _forbidden()

    try:
        form = form_from_json(AttendanceMarkForm, request.get_json(silent=True))
    except ServiceError as e:
        return json_result(error_result(e))

    return json_result(AttendanceService.mark_pending(form.participant_id.data, class_id, form.session_date.data))


@attendance_bp.route('/classes/<int:class_id>/validate', methods=['POST'])
@login_required_json
def validate_pending(class_id):
    if not can_manage_class(current_user, class_id):
        return _forbidden()

    try:
        form = form_from_json(AttendanceMarkForm, request.get_json(silent=True))
    except ServiceError as e:
        return json_result(error_result(e))

    return json_result(AttendanceService.validate_pending(form.participant_id.data, class_id, form.session_date.data))


@attendance_bp.route('/classes/<int:class_id>/report')
@login_required_json
def report(class_id):
    if not can_manage_class(current_user, class_id):
        return _forbidden()
    return json_result(ReportService.attendance_matrix(class_id))


@attendance_bp.route('/classes/<int:class_id>/export')
@login_required_json
def export(class_id):
    if not can_manage_class(current_user, class_id):
        return _forbidden()

    file_format = request.args.get('format', 'xlsx')
    if file_format not in ('xlsx', 'csv'):
        return jsonify({'error': 'Unsupported format. Use xlsx or csv'}), 400

    content, filename = ReportService.export_attendance(class_id, file_format=file_format)
    if content is None:
        return jsonify({'error': 'Class not found'}), 404

    mimetype = 'text/csv' if file_format == 'csv' else \
        'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    logger.info(f"User {current_user.id} exported attendance of class {class_id} as {file_format}")
    return send_file(BytesIO(content), mimetype=mimetype, as_attachment=True, download_name=filename)


@attendance_bp.route('/classes/<int:class_id>/qr', methods=['POST'])
@login_required_json
def generate_qr(class_id):
    """Issue a fresh attendance code for the room display."""
    if not can_manage_class(current_user, class_id):
        return _forbidden()

    result = TokenService.generate_class_qr(class_id)
    if result['success']:
        result.pop('qr_path', None)
    return json_result(result)
