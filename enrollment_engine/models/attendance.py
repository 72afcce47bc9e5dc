# models/attendance.py
from sqlalchemy import Index, UniqueConstraint

from enrollment_engine.extensions import db
from .base import BaseModel


class AttendanceMethod:
    """How an attendance row was last written."""
    TOKEN = 'token'
    INSTRUCTOR = 'instructor'
    ADMIN = 'admin'
    BACKFILL = 'backfill'
    PENDING = 'pending'


class Attendance(BaseModel):
    __tablename__ = 'attendance'

    participant_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    class_id = db.Column(db.Integer, db.ForeignKey('classes.id', ondelete='CASCADE'), nullable=False)
    session_date = db.Column(db.Date, nullable=False)
    present = db.Column(db.Boolean, default=False, nullable=False)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    method = db.Column(db.String(20), default=AttendanceMethod.ADMIN, nullable=False)

    participant = db.relationship('User')
    course_class = db.relationship('CourseClass')

    __table_args__ = (
        UniqueConstraint('participant_id', 'class_id', 'session_date', name='uq_attendance_participant_class_date'),
        Index('idx_attendance_class_date', 'class_id', 'session_date'),
        Index('idx_attendance_participant_present', 'participant_id', 'present'),
    )

    def __repr__(self):
        status = "present" if self.present else "absent"
        return f'<Attendance {self.participant_id} {self.class_id} {self.session_date} {status}>'
