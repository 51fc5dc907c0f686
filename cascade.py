"""Deleting events, occurrences, participants and whole parent accounts.

Foreign keys carry no ON DELETE rules, so dependents are removed here,
leaves first: surveys, registrations, milestones, then the row itself.
Each entry point runs in one transaction and either removes everything or
nothing.
"""
from collections import Counter

from auth import participant_for, require_manager
from errors import NotFoundError
from models import Event, EventOccurrence, Login, Milestone, Parent, Participant, Registration, Survey, db, transaction


def _delete_registrations(criterion, counts):
    registration_ids = [rid for (rid,) in db.session.query(Registration.id).filter(criterion)]
    if not registration_ids:
        return
    counts['survey'] += (Survey.query
                         .filter(Survey.registration_id.in_(registration_ids))
                         .delete(synchronize_session=False))
    counts['registration'] += (Registration.query
                               .filter(Registration.id.in_(registration_ids))
                               .delete(synchronize_session=False))


def _delete_participants(participant_ids, counts):
    if not participant_ids:
        return
    _delete_registrations(Registration.participant_id.in_(participant_ids), counts)
    counts['milestones'] += (Milestone.query
                             .filter(Milestone.participant_id.in_(participant_ids))
                             .delete(synchronize_session=False))
    counts['participants'] += (Participant.query
                               .filter(Participant.id.in_(participant_ids))
                               .delete(synchronize_session=False))


def delete_event(identity, event_id):
    require_manager(identity)
    if db.session.get(Event, event_id) is None:
        raise NotFoundError('Event not found')

    counts = Counter()
    with transaction():
        occurrence_ids = [oid for (oid,) in db.session.query(EventOccurrence.id).filter_by(event_id=event_id)]
        if occurrence_ids:
            _delete_registrations(Registration.occurrence_id.in_(occurrence_ids), counts)
            counts['eventoccurrences'] += (EventOccurrence.query
                                           .filter(EventOccurrence.id.in_(occurrence_ids))
                                           .delete(synchronize_session=False))
        counts['events'] += Event.query.filter_by(id=event_id).delete(synchronize_session=False)
    return counts


def delete_occurrence(identity, occurrence_id):
    require_manager(identity)
    occurrence = db.session.get(EventOccurrence, occurrence_id)
    if occurrence is None:
        raise NotFoundError('Occurrence not found')
    event_id = occurrence.event_id

    counts = Counter()
    with transaction():
        _delete_registrations(Registration.occurrence_id == occurrence_id, counts)
        counts['eventoccurrences'] += (EventOccurrence.query
                                       .filter_by(id=occurrence_id)
                                       .delete(synchronize_session=False))
    return event_id, counts


def delete_participant(identity, participant_id):
    """Remove one child. The owning parent or a manager may do this."""
    participant = participant_for(identity, participant_id)
    parent_user_id = participant.parent.user_id

    counts = Counter()
    with transaction():
        _delete_participants([participant.id], counts)
    return parent_user_id, counts


def delete_parent_account(identity, user_id):
    """Remove a parent, all their children and the login behind them."""
    require_manager(identity)
    parent = Parent.query.filter_by(user_id=user_id).first()
    if parent is None:
        raise NotFoundError('Parent not found')

    counts = Counter()
    with transaction():
        participant_ids = [pid for (pid,) in db.session.query(Participant.id).filter_by(parent_id=parent.id)]
        _delete_participants(participant_ids, counts)
        counts['parents'] += Parent.query.filter_by(id=parent.id).delete(synchronize_session=False)
        counts['logins'] += Login.query.filter_by(id=user_id).delete(synchronize_session=False)
    return counts
