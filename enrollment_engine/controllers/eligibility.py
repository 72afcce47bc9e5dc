# controllers/eligibility.py
import logging
from flask import Blueprint, request, jsonify
from flask_login import current_user

from enrollment_engine.extensions import csrf
from enrollment_engine.services.eligibility_service import EligibilityService
from enrollment_engine.controllers.enrollment import can_manage_class
from enrollment_engine.controllers.forms import json_result
from enrollment_engine.utils.auth import login_required_json

eligibility_bp = Blueprint('eligibility', __name__)
csrf.exempt(eligibility_bp)

logger = logging.getLogger('eligibility')


def _participant_for(class_id):
    """The current user, or the ``participant_id`` query arg for managers of the class."""
    participant_id = request.args.get('participant_id', type=int)
    if participant_id is None or participant_id == current_user.id:
        return current_user.id
    if can_manage_class(current_user, class_id):
        return participant_id
    return None


@eligibility_bp.route('/classes/<int:class_id>')
@login_required_json
def class_eligibility(class_id):
    participant_id = _participant_for(class_id)
    if participant_id is None:
        return jsonify({'error': 'Access forbidden'}), 403
    return json_result(EligibilityService.get_eligibility(participant_id, class_id))


@eligibility_bp.route('/pending')
@login_required_json
def pending():
    """Evaluations waiting for the current user."""
    return json_result(EligibilityService.pending_evaluations(current_user.id))


@eligibility_bp.route('/classes/<int:class_id>/evaluation', methods=['POST'])
@login_required_json
def submit_evaluation(class_id):
    result = EligibilityService.record_evaluation_submitted(current_user.id, class_id)
    if result['success'] and not result['already_submitted']:
        return jsonify(result), 201
    return json_result(result)


@eligibility_bp.route('/classes/<int:class_id>/certificate')
@login_required_json
def certificate(class_id):
    participant_id = _participant_for(class_id)
    if participant_id is None:
        return jsonify({'error': 'Access forbidden'}), 403
    return json_result(EligibilityService.certificate_available(participant_id, class_id))
