# services/notification_service.py
"""
Participant notifications.

``notify_if_absent`` is the de-duplicated entry point used by the eligibility flow:
a notification is keyed by participant, kind and whichever of class/event is given,
and a second call with the same key is a no-op. Nothing in here raises into the
caller; failures are logged and reported as ``None``/``False``.
"""

import logging

from enrollment_engine.extensions import db
from enrollment_engine.models import Notification

logger = logging.getLogger('notification_service')


class NotificationService:

    @staticmethod
    def exists(participant_id, kind, class_id=None, event_id=None, unread_only=True):
        query = db.session.query(Notification.id).filter(
            Notification.participant_id == participant_id,
            Notification.kind == kind
        )
        if class_id is not None:
            query = query.filter(Notification.class_id == class_id)
        if event_id is not None:
            query = query.filter(Notification.event_id == event_id)
        if unread_only:
            query = query.filter(Notification.read.is_(False))
        return query.first() is not None

    @staticmethod
    def create(participant_id, kind, message, class_id=None, event_id=None, title=None, link=None):
        """
        Insert a notification without any dedup check.

        Returns:
            Notification | None: the stored row, or ``None`` if it could not be stored
        """
        try:
            notification = Notification(
                participant_id=participant_id,
                kind=kind,
                title=title,
                message=message,
                class_id=class_id,
                event_id=event_id,
                link=link,
                read=False
            )
            db.session.add(notification)
            db.session.commit()
            logger.info(f"Notification '{kind}' created for participant {participant_id}")
            return notification
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to create '{kind}' notification for participant {participant_id}: {str(e)}",
                         exc_info=True)
            return None

    @staticmethod
    def notify_if_absent(participant_id, kind, message, class_id=None, event_id=None, title=None, link=None,
                         unread_only=True):
        """
        Create a notification unless one with the same key already exists.

        Args:
            unread_only: only unread notifications count as duplicates; pass
                ``False`` when a notification must be sent at most once ever

        Returns:
            Notification | None: the new row, or ``None`` when skipped or failed
        """
        try:
            if NotificationService.exists(participant_id, kind, class_id, event_id, unread_only=unread_only):
                logger.debug(f"Notification '{kind}' for participant {participant_id} "
                             f"(class={class_id}, event={event_id}) already exists")
                return None
        except Exception as e:
            db.session.rollback()
            logger.error(f"Notification dedup check failed: {str(e)}", exc_info=True)
            return None

        return NotificationService.create(
            participant_id, kind, message, class_id=class_id, event_id=event_id, title=title, link=link
        )

    @staticmethod
    def unread_for(participant_id):
        notifications = (
            db.session.query(Notification)
            .filter(Notification.participant_id == participant_id, Notification.read.is_(False))
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .all()
        )
        return [n.to_dict() for n in notifications]

    @staticmethod
    def unread_count(participant_id):
        return (
            db.session.query(Notification)
            .filter(Notification.participant_id == participant_id, Notification.read.is_(False))
            .count()
        )

    @staticmethod
    def mark_read(notification_id, participant_id):
        """Mark one of the participant's notifications as read; False if not theirs."""
        notification = (
            db.session.query(Notification)
            .filter_by(id=notification_id, participant_id=participant_id)
            .first()
        )
        if not notification:
            return False

        notification.read = True
        db.session.commit()
        return True

    @staticmethod
    def mark_all_read(participant_id):
        updated = (
            db.session.query(Notification)
            .filter(Notification.participant_id == participant_id, Notification.read.is_(False))
            .update({Notification.read: True}, synchronize_session=False)
        )
        db.session.commit()
        return updated
