# tests/test_enrollment.py
import threading

from sqlalchemy.exc import DBAPIError

from enrollment_engine.extensions import db as _db
from enrollment_engine.models import (
    Enrollment, Attendance, Event, EventKind, RestrictionMode, Notification, NotificationKind, RoleType, User,
    CourseClass
)
from enrollment_engine.services.access_service import AccessService
from enrollment_engine.services.enrollment_service import EnrollmentService


class TestConflicts:

    def test_global_conflict_across_events(self, make_user, make_event, make_class):
        participant = make_user()
        class_a = make_class(make_event(title='E1'), name='A', sessions=[('2024-04-01', '09:00', '11:00')])
        class_b = make_class(make_event(title='E2'), name='B', sessions=[('2024-04-01', '10:00', '12:00')])

        assert EnrollmentService.enroll(participant.id, class_a.id)['success'] is True
        result = EnrollmentService.enroll(participant.id, class_b.id)

        assert result['success'] is False
        assert result['error_kind'] == 'conflict'
        assert result['error_code'] == 'time_conflict'

    def test_congress_allows_back_to_back_classes(self, make_user, make_event, make_class):
        participant = make_user()
        congress = make_event(title='E3', kind=EventKind.CONGRESS)
        c1 = make_class(congress, name='C1', sessions=[('2024-05-10', '09:00', '10:00')])
        c2 = make_class(congress, name='C2', sessions=[('2024-05-10', '10:00', '11:00')])
        c3 = make_class(congress, name='C3', sessions=[('2024-05-10', '09:30', '10:30')])

        assert EnrollmentService.enroll(participant.id, c1.id)['success'] is True
        assert EnrollmentService.enroll(participant.id, c2.id)['success'] is True

        result = EnrollmentService.enroll(participant.id, c3.id)
        assert result['error_kind'] == 'conflict'
        assert result['error_code'] == 'same_event_time_conflict'
        assert _db.session.query(Enrollment).filter_by(participant_id=participant.id).count() == 2

    def test_ordinary_event_allows_one_class(self, make_user, make_event, make_class):
        participant = make_user()
        event = make_event()
        morning = make_class(event, name='Morning', sessions=[('2024-04-01', '08:00', '10:00')])
        evening = make_class(event, name='Evening', sessions=[('2024-04-01', '18:00', '20:00')])

        EnrollmentService.enroll(participant.id, morning.id)
        result = EnrollmentService.enroll(participant.id, evening.id)

        assert result['error_code'] == 'already_enrolled_in_event'

    def test_candidate_range_is_checked_against_held_sessions(self, make_user, make_event, make_class):
        participant = make_user()
        held = make_class(make_event(title='E1'), sessions=[('2024-04-03', '09:00', '10:00')])
        ranged = make_class(make_event(title='E2'), start_date='2024-04-01', end_date='2024-04-05',
                            start_time='08:00', end_time='12:00')

        EnrollmentService.enroll(participant.id, held.id)
        result = EnrollmentService.enroll(participant.id, ranged.id)

        assert result['error_code'] == 'time_conflict'

    def test_held_class_without_sessions_is_not_compared(self, make_user, make_event, make_class):
        participant = make_user()
        ranged = make_class(make_event(title='E1'), start_date='2024-04-01', end_date='2024-04-05',
                            start_time='08:00', end_time='12:00')
        explicit = make_class(make_event(title='E2'), sessions=[('2024-04-03', '09:00', '10:00')])

        EnrollmentService.enroll(participant.id, ranged.id)

        assert EnrollmentService.enroll(participant.id, explicit.id)['success'] is True

    def test_check_conflicts_preview(self, make_user, make_event, make_class):
        participant = make_user()
        class_a = make_class(make_event(title='E1'), sessions=[('2024-04-01', '09:00', '11:00')])
        class_b = make_class(make_event(title='E2'), sessions=[('2024-04-01', '10:00', '12:00')])
        class_c = make_class(make_event(title='E3'), sessions=[('2024-04-01', '11:00', '12:00')])
        EnrollmentService.enroll(participant.id, class_a.id)

        clash = EnrollmentService.check_conflicts(participant.id, class_b.id)
        free = EnrollmentService.check_conflicts(participant.id, class_c.id)

        assert clash['conflict'] is True and clash['global_conflict'] is True
        assert clash['same_event_conflict'] is False
        assert free['conflict'] is False


class TestEnrollRules:

    def test_success_returns_enrollment_and_notifies(self, make_user, make_event, make_class):
        participant = make_user()
        course_class = make_class(make_event(), sessions=[('2024-04-01', '09:00', '11:00')])

        result = EnrollmentService.enroll(participant.id, course_class.id)

        assert result['success'] is True
        assert _db.session.get(Enrollment, result['enrollment_id']).class_id == course_class.id
        notification = _db.session.query(Notification).filter_by(participant_id=participant.id).one()
        assert notification.kind == NotificationKind.ENROLLMENT

    def test_duplicate_enrollment(self, make_user, make_event, make_class):
        participant = make_user()
        course_class = make_class(make_event(), sessions=[('2024-04-01', '09:00', '11:00')])

        EnrollmentService.enroll(participant.id, course_class.id)
        result = EnrollmentService.enroll(participant.id, course_class.id)

        assert result['error_kind'] == 'conflict'
        assert result['error_code'] == 'duplicate_enrollment'

    def test_capacity_is_enforced(self, make_user, make_event, make_class):
        course_class = make_class(make_event(), capacity=1, sessions=[('2024-04-01', '09:00', '11:00')])

        assert EnrollmentService.enroll(make_user().id, course_class.id)['success'] is True
        result = EnrollmentService.enroll(make_user().id, course_class.id)

        assert result['error_code'] == 'class_full'

    def test_unknown_class_and_participant(self, make_user, make_event, make_class):
        course_class = make_class(make_event())

        assert EnrollmentService.enroll(make_user().id, 9999)['error_kind'] == 'not_found'
        assert EnrollmentService.enroll(9999, course_class.id)['error_code'] == 'participant_not_found'

    def test_malformed_ids(self, app):
        result = EnrollmentService.enroll('abc', 0)

        assert result['error_kind'] == 'invalid_input'

    def test_instructor_cannot_enroll_in_own_event(self, make_user, make_event, make_class):
        instructor = make_user(roles=(RoleType.INSTRUCTOR,))
        course_class = make_class(make_event(instructors=[instructor]))

        result = EnrollmentService.enroll(instructor.id, course_class.id)

        assert result['error_kind'] == 'forbidden'
        assert result['error_code'] == 'instructor_self_enrollment'


class BlockedByTrigger(Exception):
    pgcode = 'P0001'


class DeadlockDetected(Exception):
    pgcode = '40P01'


def failing_commit(orig):
    def _commit():
        raise DBAPIError('INSERT INTO enrollments', {}, orig)
    return _commit


class TestStorageErrors:

    def test_unique_constraint_maps_to_duplicate(self, make_user, make_event, make_class, monkeypatch):
        participant = make_user()
        course_class = make_class(make_event(), sessions=[('2024-04-01', '09:00', '11:00')])
        monkeypatch.setattr(EnrollmentService, '_validate_enrollment',
                            staticmethod(lambda participant_id, course_class: None))

        assert EnrollmentService.enroll(participant.id, course_class.id)['success'] is True
        result = EnrollmentService.enroll(participant.id, course_class.id)

        assert result['error_kind'] == 'conflict'
        assert result['error_code'] == 'duplicate_enrollment'
        assert _db.session.query(Enrollment).filter_by(participant_id=participant.id).count() == 1

    def test_trigger_rejection_maps_to_time_conflict(self, make_user, make_event, make_class, monkeypatch):
        participant = make_user()
        course_class = make_class(make_event(), sessions=[('2024-04-01', '09:00', '11:00')])
        monkeypatch.setattr(_db.session, 'commit', failing_commit(BlockedByTrigger('overlapping schedule')))

        result = EnrollmentService.enroll(participant.id, course_class.id)

        assert result['error_kind'] == 'conflict'
        assert result['error_code'] == 'time_conflict'
        assert _db.session.query(Enrollment).count() == 0

    def test_other_database_errors_are_internal(self, make_user, make_event, make_class, monkeypatch):
        participant = make_user()
        course_class = make_class(make_event(), sessions=[('2024-04-01', '09:00', '11:00')])
        monkeypatch.setattr(_db.session, 'commit', failing_commit(DeadlockDetected('deadlock')))

        result = EnrollmentService.enroll(participant.id, course_class.id)

        assert result['error_kind'] == 'internal_error'
        assert _db.session.query(Enrollment).count() == 0


class TestRestrictedEvents:

    def test_outsider_is_forbidden(self, make_user, make_event, make_class):
        event = make_event(restricted=True, restriction_mode=RestrictionMode.REGISTRATION_LIST)
        course_class = make_class(event)

        result = EnrollmentService.enroll(make_user(registration='999').id, course_class.id)

        assert result['error_kind'] == 'forbidden'
        assert result['error_code'] == 'event_restricted'

    def test_registration_list_is_normalized(self, make_user, make_event, make_class):
        event = make_event(restricted=True, restriction_mode=RestrictionMode.REGISTRATION_LIST)
        course_class = make_class(event)
        AccessService.set_allowed_registrations(event.id, ['12.345-6', ' 777 '])

        participant = make_user(registration='123456')

        assert AccessService.can_access(participant.id, event.id) == {'ok': True, 'reason': 'registration_list'}
        assert EnrollmentService.enroll(participant.id, course_class.id)['success'] is True

    def test_job_role_and_unit_lists(self, make_user, make_event):
        event = make_event(restricted=True, allowed_job_role_ids=[3], allowed_unit_ids=[40])

        assert AccessService.can_access(make_user(job_role_id=3).id, event.id)['reason'] == 'job_role'
        assert AccessService.can_access(make_user(unit_id=40).id, event.id)['reason'] == 'unit'
        assert AccessService.can_access(make_user(unit_id=41).id, event.id)['ok'] is False

    def test_all_registered_mode(self, make_user, make_event):
        event = make_event(restricted=True, restriction_mode=RestrictionMode.ALL_REGISTERED)

        assert AccessService.can_access(make_user(registration='0042').id, event.id)['ok'] is True
        assert AccessService.can_access(make_user().id, event.id)['ok'] is False


class TestCancel:

    def test_cancel_removes_attendance(self, make_user, make_event, make_class, mark):
        participant = make_user()
        course_class = make_class(make_event(), sessions=[('2024-04-01', '09:00', '11:00')])
        EnrollmentService.enroll(participant.id, course_class.id)
        mark(participant, course_class, '2024-04-01')

        result = EnrollmentService.cancel(participant.id, course_class.id, participant.id)

        assert result['success'] is True
        assert result['attendance_removed'] == 1
        assert _db.session.query(Enrollment).count() == 0
        assert _db.session.query(Attendance).count() == 0

    def test_only_owner_or_admin_can_cancel(self, make_user, make_admin, make_event, make_class):
        participant = make_user()
        course_class = make_class(make_event())
        EnrollmentService.enroll(participant.id, course_class.id)

        denied = EnrollmentService.cancel(participant.id, course_class.id, make_user().id)
        allowed = EnrollmentService.cancel(participant.id, course_class.id, make_admin().id)

        assert denied['error_kind'] == 'forbidden'
        assert allowed['success'] is True

    def test_cancel_with_attendance_can_be_blocked(self, app, make_user, make_event, make_class, mark):
        app.config['ALLOW_CANCEL_WITH_ATTENDANCE'] = False
        participant = make_user()
        course_class = make_class(make_event(), sessions=[('2024-04-01', '09:00', '11:00')])
        EnrollmentService.enroll(participant.id, course_class.id)
        mark(participant, course_class, '2024-04-01')

        result = EnrollmentService.cancel(participant.id, course_class.id, participant.id)

        assert result['error_code'] == 'attendance_recorded'
        assert _db.session.query(Enrollment).count() == 1

    def test_cancel_unknown_enrollment(self, make_user, make_event, make_class):
        participant = make_user()

        result = EnrollmentService.cancel(participant.id, make_class(make_event()).id, participant.id)

        assert result['error_kind'] == 'not_found'


class TestListings:

    def test_participant_enrollments(self, make_user, make_event, make_class):
        participant = make_user()
        course_class = make_class(make_event(title='Nursing'), name='T1',
                                  sessions=[('2024-04-01', '09:00', '11:00'), ('2024-04-02', '09:00', '11:00')])
        EnrollmentService.enroll(participant.id, course_class.id)

        result = EnrollmentService.participant_enrollments(participant.id)

        assert result['count'] == 1
        item = result['enrollments'][0]
        assert item['event_title'] == 'Nursing'
        assert item['total_sessions'] == 2
        assert item['start'] == '2024-04-01T09:00:00'

    def test_class_roster_frequency(self, make_user, make_event, make_class, mark):
        course_class = make_class(make_event(),
                                  sessions=[('2024-04-01', '09:00', '11:00'), ('2024-04-02', '09:00', '11:00')])
        ana, bruno = make_user(name='Ana'), make_user(name='Bruno')
        for participant in (ana, bruno):
            EnrollmentService.enroll(participant.id, course_class.id)
        mark(ana, course_class, '2024-04-01')
        mark(ana, course_class, '2024-04-02')
        mark(bruno, course_class, '2024-04-01', present=False)

        result = EnrollmentService.class_roster(course_class.id)

        frequencies = {e['name']: e['frequency'] for e in result['enrollees']}
        assert frequencies == {'Ana': 1.0, 'Bruno': 0.0}


class TestConcurrentEnrollment:

    def test_capacity_holds_under_concurrent_requests(self, file_app):
        capacity, contenders = 3, 8

        with file_app.app_context():
            event = Event(title='Popular', kind=EventKind.ORDINARY)
            _db.session.add(event)
            _db.session.flush()
            course_class = CourseClass(event_id=event.id, name='Limited', capacity=capacity)
            _db.session.add(course_class)
            users = [User(name=f'P{i}', email=f'p{i}@example.com') for i in range(contenders)]
            _db.session.add_all(users)
            _db.session.commit()
            class_id = course_class.id
            participant_ids = [u.id for u in users]

        barrier = threading.Barrier(contenders, timeout=30)
        results = []

        def attempt(participant_id):
            with file_app.app_context():
                barrier.wait()
                results.append(EnrollmentService.enroll(participant_id, class_id))

        threads = [threading.Thread(target=attempt, args=(pid,)) for pid in participant_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert len(results) == contenders
        assert sum(1 for r in results if r['success']) == capacity
        assert {r['error_code'] for r in results if not r['success']} == {'class_full'}

        with file_app.app_context():
            assert _db.session.query(Enrollment).filter_by(class_id=class_id).count() == capacity
