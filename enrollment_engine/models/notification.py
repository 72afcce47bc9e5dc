# models/notification.py
from sqlalchemy import Index

from enrollment_engine.extensions import db
from .base import BaseModel


class NotificationKind:
    ENROLLMENT = 'enrollment'
    EVALUATION = 'evaluation'
    CERTIFICATE = 'certificate'


class Notification(BaseModel):
    __tablename__ = 'notifications'

    participant_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    kind = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(200), nullable=True)
    message = db.Column(db.Text, nullable=False)
    class_id = db.Column(db.Integer, db.ForeignKey('classes.id', ondelete='SET NULL'), nullable=True)
    event_id = db.Column(db.Integer, db.ForeignKey('events.id', ondelete='SET NULL'), nullable=True)
    link = db.Column(db.String(255), nullable=True)
    read = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (
        # dedup lookups: participant + kind + class/event
        Index('idx_notification_dedup', 'participant_id', 'kind', 'class_id', 'event_id'),
        Index('idx_notification_unread', 'participant_id', 'read'),
    )


class EvaluationSubmission(BaseModel):
    """Marks that a participant has handed in the evaluation of a class."""

    __tablename__ = 'evaluation_submissions'

    participant_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    class_id = db.Column(db.Integer, db.ForeignKey('classes.id', ondelete='CASCADE'), nullable=False)
    submitted_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('participant_id', 'class_id', name='uq_evaluation_participant_class'),
    )
