# utils/auth.py
from functools import wraps
from flask import jsonify
from flask_login import current_user

from enrollment_engine.models import RoleType


def role_required(*roles):
    """Decorator to require specific role(s)."""

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Authentication required'}), 401

            if not current_user.has_any_role(roles):
                return jsonify({'error': f'Role required: {", ".join(roles)}'}), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator


def admin_required(f):
    """Decorator to require the admin role."""
    return role_required(RoleType.ADMIN)(f)


def login_required_json(f):
    """Like flask_login.login_required, but answers with a JSON 401."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({'error': 'Authentication required'}), 401

        return f(*args, **kwargs)

    return decorated_function
