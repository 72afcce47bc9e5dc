# services/access_service.py
"""
Access check for restricted events.

A restricted event admits a participant whose job role is on the role list, whose
unit is on the unit list, or, depending on the restriction mode, who has a
registration number at all or one that is on the event's registration list.
"""

import logging

from enrollment_engine.extensions import db
from enrollment_engine.models import Event, User, EventAllowedRegistration, RestrictionMode
from enrollment_engine.utils.data_processing import normalize_registration

logger = logging.getLogger('access_service')


class AccessService:

    @staticmethod
    def can_access(participant_id, event_id):
        """
        Returns:
            dict: ``{'ok': bool, 'reason': str | None}``
        """
        event = db.session.get(Event, event_id)
        if not event:
            return {'ok': False, 'reason': 'event_not_found'}

        if not event.restricted:
            return {'ok': True, 'reason': None}

        participant = db.session.get(User, participant_id)
        if not participant:
            return {'ok': False, 'reason': 'participant_not_found'}

        if participant.job_role_id is not None and participant.job_role_id in (event.allowed_job_role_ids or []):
            return {'ok': True, 'reason': 'job_role'}

        if participant.unit_id is not None and participant.unit_id in (event.allowed_unit_ids or []):
            return {'ok': True, 'reason': 'unit'}

        registration = normalize_registration(participant.registration)

        if event.restriction_mode == RestrictionMode.ALL_REGISTERED and registration:
            return {'ok': True, 'reason': 'registered'}

        if event.restriction_mode == RestrictionMode.REGISTRATION_LIST and registration:
            listed = (
                db.session.query(EventAllowedRegistration.id)
                .filter_by(event_id=event.id, registration_norm=registration)
                .first()
            )
            if listed:
                return {'ok': True, 'reason': 'registration_list'}

        logger.info(f"Participant {participant_id} denied access to restricted event {event_id}")
        return {'ok': False, 'reason': 'restricted'}

    @staticmethod
    def set_allowed_registrations(event_id, registrations):
        """Replace the registration allow-list of an event; returns the stored count."""
        normalized = sorted({normalize_registration(r) for r in registrations} - {''})

        db.session.query(EventAllowedRegistration).filter_by(event_id=event_id).delete(synchronize_session=False)
        for registration in normalized:
            db.session.add(EventAllowedRegistration(event_id=event_id, registration_norm=registration))
        db.session.commit()

        logger.info(f"Event {event_id} allow-list now holds {len(normalized)} registrations")
        return len(normalized)
