# controllers/notifications.py
"""
Notification inbox of the signed-in participant.
"""

import logging
from flask import Blueprint, jsonify
from flask_login import current_user

from enrollment_engine.extensions import csrf
from enrollment_engine.services.notification_service import NotificationService
from enrollment_engine.utils.auth import login_required_json

notifications_bp = Blueprint('notifications', __name__)
csrf.exempt(notifications_bp)

logger = logging.getLogger('notifications')


@notifications_bp.route('/')
@login_required_json
def unread():
    try:
        notifications = NotificationService.unread_for(current_user.id)
        return jsonify({'success': True, 'notifications': notifications, 'count': len(notifications)})
    except Exception as e:
        logger.error(f"Failed to load notifications for user {current_user.id}: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'message': 'Failed to load notifications'}), 500


@notifications_bp.route('/count')
@login_required_json
def count():
    return jsonify({'success': True, 'unread': NotificationService.unread_count(current_user.id)})


@notifications_bp.route('/<int:notification_id>/read', methods=['POST'])
@login_required_json
def mark_read(notification_id):
    if not NotificationService.mark_read(notification_id, current_user.id):
        return jsonify({'success': False, 'message': 'Notification not found'}), 404
    return jsonify({'success': True})


@notifications_bp.route('/read-all', methods=['POST'])
@login_required_json
def mark_all_read():
    updated = NotificationService.mark_all_read(current_user.id)
    logger.info(f"User {current_user.id} marked {updated} notifications as read")
    return jsonify({'success': True, 'updated': updated})
