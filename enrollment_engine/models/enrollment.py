# models/enrollment.py
from sqlalchemy import Index, UniqueConstraint

from enrollment_engine.extensions import db
from .base import BaseModel


class Enrollment(BaseModel):
    """A participant's seat in a class."""

    __tablename__ = 'enrollments'

    participant_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    class_id = db.Column(db.Integer, db.ForeignKey('classes.id', ondelete='CASCADE'), nullable=False)

    participant = db.relationship('User')
    course_class = db.relationship('CourseClass', back_populates='enrollments')

    __table_args__ = (
        UniqueConstraint('participant_id', 'class_id', name='uq_enrollment_participant_class'),
        # conflict checks scan a participant's enrollments
        Index('idx_enrollment_participant', 'participant_id'),
        Index('idx_enrollment_class', 'class_id'),
    )

    def __repr__(self):
        return f'<Enrollment {self.participant_id} -> {self.class_id}>'
