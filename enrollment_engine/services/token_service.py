# services/token_service.py
"""
Short-lived attendance tokens and the QR codes that carry them.

A token is issued for one class on one day and shown as a QR code in the room.
Participants scan it while signed in; the token proves they were there while it
was valid, and ``AttendanceService.confirm_with_token`` applies the usual
self-confirmation rules on top.
"""

import os
import secrets
import logging
from datetime import datetime

import qrcode
from flask import current_app
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from enrollment_engine.extensions import db
from enrollment_engine.models import CourseClass
from enrollment_engine.services.errors import (
    AttendanceError, NotFoundError, InvalidInputError, ServiceError, error_result, internal_error_result
)

logger = logging.getLogger('token_service')


class TokenService:

    @staticmethod
    def _serializer():
        return URLSafeTimedSerializer(
            current_app.config['SECRET_KEY'],
            salt=current_app.config.get('ATTENDANCE_TOKEN_SALT', 'attendance-confirmation')
        )

    @staticmethod
    def issue(class_id, now=None):
        """Sign a token for a class, valid on the day it is issued."""
        now = now or datetime.now()
        return TokenService._serializer().dumps({'class_id': int(class_id), 'date': now.date().isoformat()})

    @staticmethod
    def verify(token, now=None):
        """
        Check signature, age and day of a token.

        Returns:
            int: the class id carried by the token

        Raises:
            InvalidInputError: tampered, expired or stale token
        """
        now = now or datetime.now()
        max_age = current_app.config.get('ATTENDANCE_TOKEN_MAX_AGE', 300)

        try:
            payload = TokenService._serializer().loads(token, max_age=max_age)
        except SignatureExpired:
            raise InvalidInputError(AttendanceError.INVALID_TOKEN, 'Attendance code has expired')
        except BadSignature:
            raise InvalidInputError(AttendanceError.INVALID_TOKEN, 'Attendance code is not valid')

        if not isinstance(payload, dict) or 'class_id' not in payload:
            raise InvalidInputError(AttendanceError.INVALID_TOKEN, 'Attendance code is not valid')
        if payload.get('date') != now.date().isoformat():
            raise InvalidInputError(AttendanceError.INVALID_TOKEN, 'Attendance code is not for today')

        return int(payload['class_id'])

    @staticmethod
    def generate_class_qr(class_id, now=None):
        """
        Issue a token for a class and write it as a PNG QR code.

        Returns:
            dict: result with ``token`` and ``qr_path``
        """
        try:
            course_class = db.session.get(CourseClass, class_id)
            if not course_class:
                raise NotFoundError(AttendanceError.CLASS_NOT_FOUND, 'Class not found')

            token = TokenService.issue(class_id, now=now)

            folder = current_app.config['QR_CODE_FOLDER']
            os.makedirs(folder, exist_ok=True)
            filename = f"class_{class_id}_{secrets.token_urlsafe(8)}.png"
            qr_path = os.path.join(folder, filename)

            qr = qrcode.QRCode(
                version=1,
                error_correction=qrcode.constants.ERROR_CORRECT_M,
                box_size=10,
                border=4,
            )
            qr.add_data(token)
            qr.make(fit=True)
            qr.make_image(fill_color="black", back_color="white").save(qr_path)

            logger.info(f"Generated attendance QR code for class {class_id}: {filename}")
            return {
                'success': True,
                'message': 'QR code generated successfully',
                'class_id': class_id,
                'token': token,
                'qr_path': qr_path,
                'expires_in': current_app.config.get('ATTENDANCE_TOKEN_MAX_AGE', 300)
            }

        except ServiceError as e:
            return error_result(e)
        except OSError as e:
            return internal_error_result(logger, 'Failed to write QR code file', e)
