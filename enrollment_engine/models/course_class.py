# models/course_class.py
from sqlalchemy import Index, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import validates

from enrollment_engine.extensions import db
from .base import BaseModel


class CourseClass(BaseModel):
    """
    A scheduled offering inside an event.

    ``start_date``/``end_date``/``start_time``/``end_time`` mirror the explicit
    sessions when there are any and describe the whole schedule when there are none.
    """

    __tablename__ = 'classes'

    event_id = db.Column(db.Integer, db.ForeignKey('events.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    capacity = db.Column(db.Integer, nullable=False)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    start_time = db.Column(db.Time, nullable=True)
    end_time = db.Column(db.Time, nullable=True)
    workload_hours = db.Column(db.Integer, nullable=True)
    signing_instructor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    event = db.relationship('Event', back_populates='classes')
    sessions = db.relationship('ClassSession', back_populates='course_class', cascade='all, delete-orphan',
                               order_by='ClassSession.date')
    enrollments = db.relationship('Enrollment', back_populates='course_class', cascade='all, delete-orphan')
    signing_instructor = db.relationship('User')

    __table_args__ = (
        CheckConstraint('capacity > 0', name='ck_class_capacity_positive'),
        Index('idx_class_dates', 'start_date', 'end_date'),
    )

    def __repr__(self):
        return f'<CourseClass {self.name}>'

    @validates('capacity')
    def validate_capacity(self, key, value):
        if value is None or int(value) <= 0:
            raise ValueError("Class capacity must be a positive integer")
        return int(value)


class ClassSession(BaseModel):
    """One dated occurrence of a class."""

    __tablename__ = 'class_sessions'

    class_id = db.Column(db.Integer, db.ForeignKey('classes.id', ondelete='CASCADE'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    course_class = db.relationship('CourseClass', back_populates='sessions')

    __table_args__ = (
        UniqueConstraint('class_id', 'date', name='uq_class_session_date'),
        Index('idx_class_session_date', 'date'),
    )

    def __repr__(self):
        return f'<ClassSession {self.class_id} {self.date}>'
