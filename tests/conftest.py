# tests/conftest.py
"""
Shared fixtures: an application bound to an in-memory SQLite database plus small
factories for users, events and classes.
"""

import itertools
from datetime import datetime

import pytest

from enrollment_engine import create_app
from enrollment_engine.config import TestingConfig, config_by_name
from enrollment_engine.extensions import db as _db
from enrollment_engine.models import (
    User, Role, RoleType, Event, EventKind, CourseClass, ClassSession, Attendance, AttendanceMethod
)
from enrollment_engine.utils.intervals import parse_date, parse_hhmm


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        _db.create_all()
        Role.create_default_roles()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def file_app(tmp_path, monkeypatch):
    """Application on a file-backed SQLite database that serializes writers, for threaded tests."""

    class FileTestingConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'enrollment.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 30, 'check_same_thread': False}}
        SQLITE_BEGIN_IMMEDIATE = True

    monkeypatch.setitem(config_by_name, 'testing_file', FileTestingConfig)
    app = create_app('testing_file')
    with app.app_context():
        _db.create_all()
        Role.create_default_roles()
        _db.session.remove()

    yield app

    with app.app_context():
        _db.session.remove()
        _db.drop_all()
        _db.engine.dispose()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(name=None, roles=(RoleType.PARTICIPANT,), **kwargs):
        n = next(counter)
        kwargs.setdefault('email', f'user{n}@example.com')
        user = User(name=name or f'Participant {n}', **kwargs)
        user.set_password('secret')
        for role in roles:
            user.add_role(role)
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture
def make_admin(make_user):
    def _make(**kwargs):
        return make_user(name='Admin', roles=(RoleType.ADMIN,), **kwargs)

    return _make


@pytest.fixture
def make_event(app):
    def _make(title='Event', kind=EventKind.ORDINARY, instructors=(), **kwargs):
        event = Event(title=title, kind=kind, **kwargs)
        event.instructors.extend(instructors)
        _db.session.add(event)
        _db.session.commit()
        return event

    return _make


@pytest.fixture
def make_class(app):
    """
    Create a class. ``sessions`` is a list of ``(date, start, end)`` strings; without
    it the class is scheduled by ``start_date``..``end_date`` alone.
    """

    def _make(event, name='Class', capacity=30, sessions=None, start_date=None, end_date=None,
              start_time=None, end_time=None):
        course_class = CourseClass(
            event_id=event.id,
            name=name,
            capacity=capacity,
            start_date=parse_date(start_date),
            end_date=parse_date(end_date),
            start_time=parse_hhmm(start_time),
            end_time=parse_hhmm(end_time),
        )
        _db.session.add(course_class)
        _db.session.flush()

        for day, start, end in sessions or []:
            _db.session.add(ClassSession(
                class_id=course_class.id, date=parse_date(day), start_time=parse_hhmm(start), end_time=parse_hhmm(end)
            ))
        if sessions:
            course_class.start_date = min(parse_date(s[0]) for s in sessions)
            course_class.end_date = max(parse_date(s[0]) for s in sessions)
            course_class.start_time = parse_hhmm(sessions[0][1])
            course_class.end_time = parse_hhmm(sessions[0][2])

        _db.session.commit()
        return course_class

    return _make


@pytest.fixture
def mark(app):
    """Write an attendance row directly, bypassing the confirmation rules."""

    def _mark(participant, course_class, day, present=True):
        _db.session.add(Attendance(
            participant_id=participant.id,
            class_id=course_class.id,
            session_date=parse_date(day),
            present=present,
            confirmed_at=datetime.now() if present else None,
            method=AttendanceMethod.ADMIN if present else AttendanceMethod.PENDING
        ))
        _db.session.commit()

    return _mark
