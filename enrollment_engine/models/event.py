# models/event.py
from sqlalchemy import Index, UniqueConstraint

from enrollment_engine.extensions import db
from .base import BaseModel


class EventKind:
    """Event kind constants."""
    ORDINARY = 'ordinary'
    CONGRESS = 'congress'  # participants may hold several classes of the same event


class RestrictionMode:
    """How a restricted event decides who may enroll."""
    ALL_REGISTERED = 'all_registered'  # anyone with a registration number
    REGISTRATION_LIST = 'registration_list'  # only registrations on the allow-list


event_instructors = db.Table('event_instructors',
                             db.Column('event_id', db.Integer, db.ForeignKey('events.id', ondelete='CASCADE'),
                                       primary_key=True),
                             db.Column('instructor_id', db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'),
                                       primary_key=True)
                             )


class Event(BaseModel):
    """Top-level offering that owns one or more classes."""

    __tablename__ = 'events'

    title = db.Column(db.String(200), nullable=False)
    location = db.Column(db.String(200), nullable=True)
    kind = db.Column(db.String(20), default=EventKind.ORDINARY, nullable=False)

    # Access restriction
    restricted = db.Column(db.Boolean, default=False, nullable=False)
    restriction_mode = db.Column(db.String(30), nullable=True)
    allowed_job_role_ids = db.Column(db.JSON, default=list, nullable=False)
    allowed_unit_ids = db.Column(db.JSON, default=list, nullable=False)

    classes = db.relationship('CourseClass', back_populates='event', cascade='all, delete-orphan',
                              order_by='CourseClass.id')
    instructors = db.relationship('User', secondary=event_instructors, lazy='selectin')
    allowed_registrations = db.relationship('EventAllowedRegistration', back_populates='event',
                                            cascade='all, delete-orphan')

    __table_args__ = (
        Index('idx_event_kind', 'kind'),
    )

    def __repr__(self):
        return f'<Event {self.title}>'

    @property
    def is_congress(self):
        return self.kind == EventKind.CONGRESS

    def has_instructor(self, user_id):
        return any(instructor.id == user_id for instructor in self.instructors)


class EventAllowedRegistration(BaseModel):
    """Registration number allowed to enroll in a list-restricted event."""

    __tablename__ = 'event_allowed_registrations'

    event_id = db.Column(db.Integer, db.ForeignKey('events.id', ondelete='CASCADE'), nullable=False)
    registration_norm = db.Column(db.String(40), nullable=False)

    event = db.relationship('Event', back_populates='allowed_registrations')

    __table_args__ = (
        UniqueConstraint('event_id', 'registration_norm', name='uq_event_allowed_registration'),
    )
