# controllers/forms.py
"""
WTForms validation of JSON request bodies and JSON responses for service results.

The API blueprints are CSRF-exempt, so the forms are plain ``wtforms.Form``
subclasses fed from ``request.get_json()`` through ``form_from_json``.
"""

from wtforms import BooleanField, Form, IntegerField, StringField
from wtforms.validators import DataRequired, InputRequired, NumberRange, Optional, Regexp, ValidationError
from flask import jsonify
from werkzeug.datastructures import MultiDict

from enrollment_engine.services.errors import InvalidInputError, http_status
from enrollment_engine.utils.intervals import parse_date

POSITIVE_ID = NumberRange(min=1, message='Must be a positive integer')


def validate_calendar_date(form, field):
    if parse_date(field.data) is None:
        raise ValidationError('Invalid date. Use YYYY-MM-DD')


class EnrollmentForm(Form):
    class_id = IntegerField('Class', validators=[InputRequired(message='class_id is required'), POSITIVE_ID])
    participant_id = IntegerField('Participant', validators=[Optional(), POSITIVE_ID])


class AttendanceMarkForm(Form):
    participant_id = IntegerField('Participant', validators=[InputRequired(message='participant_id is required'),
                                                             POSITIVE_ID])
    session_date = StringField('Session date', validators=[DataRequired(message='session_date is required'),
                                                           validate_calendar_date])


class BackfillForm(AttendanceMarkForm):
    # JSON false arrives as the bool itself, strings as typed
    present = BooleanField('Present', false_values=(False, 'false', 'False', '0', 'no', 'off', ''))


class TokenConfirmationForm(Form):
    token = StringField('Code', validators=[DataRequired(message='token is required')])


class SessionSlotForm(Form):
    date = StringField('Date', validators=[DataRequired(), validate_calendar_date])
    start_time = StringField('Start', validators=[DataRequired(), Regexp(r'^\d{1,2}:\d{2}(:\d{2})?$')])
    end_time = StringField('End', validators=[DataRequired(), Regexp(r'^\d{1,2}:\d{2}(:\d{2})?$')])


def form_from_json(form_class, payload):
    """
    Validate a JSON object with a form class.

    Raises:
        InvalidInputError: payload is not an object or fails validation
    """
    if not isinstance(payload, dict):
        raise InvalidInputError('invalid_payload', 'A JSON object body is required')

    form = form_class(MultiDict({k: v for k, v in payload.items() if v is not None}))
    if not form.validate():
        field, messages = next(iter(form.errors.items()))
        raise InvalidInputError('invalid_payload', f'{field}: {messages[0]}')
    return form


def json_result(result):
    """Serialize a service result with the status code of its error kind."""
    return jsonify(result), http_status(result)
