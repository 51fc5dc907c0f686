from datetime import date, datetime

from sqlalchemy.dialects import postgresql, sqlite

from auth import participant_for, require_manager
from errors import NotFoundError, PersistenceError
from models import EventOccurrence, Participant, Registration, db, transaction
from surveys import ensure_blank_survey

NOT_ATTENDING = 'Not attending'
PLANNING_TO_ATTEND = 'Planning to attend'
STATUSES = (NOT_ATTENDING, PLANNING_TO_ATTEND)

# Rows per INSERT statement; 7 params each stays under the 999 parameter cap of older SQLite builds
INSERT_BATCH_SIZE = 100

_UNIQUE_PAIR = ['participant_id', 'occurrence_id']


def _registration_row(participant_id, occurrence_id, status, today):
    return {
        'participant_id': participant_id,
        'occurrence_id': occurrence_id,
        'status': status,
        'attended': False,
        'checkin_date': None,
        'checkin_time': None,
        'created_date': today,
    }


def _insert_ignoring_duplicates(rows, dialect):
    table = Registration.__table__
    if dialect == 'postgresql':
        return postgresql.insert(table).values(rows).on_conflict_do_nothing(index_elements=_UNIQUE_PAIR)
    if dialect == 'sqlite':
        return sqlite.insert(table).values(rows).on_conflict_do_nothing(index_elements=_UNIQUE_PAIR)
    if dialect in ('mysql', 'mariadb'):
        return table.insert().values(rows).prefix_with('IGNORE')
    raise PersistenceError(f'Duplicate-tolerant insert is not supported on {dialect}')


def insert_registrations(rows):
    """Bulk insert registration rows, skipping pairs that already exist.

    Returns how many rows were actually inserted.
    """
    dialect = db.engine.dialect.name
    created = 0
    for i in range(0, len(rows), INSERT_BATCH_SIZE):
        result = db.session.execute(_insert_ignoring_duplicates(rows[i:i + INSERT_BATCH_SIZE], dialect))
        created += result.rowcount
    return created


def _existing_pairs(criterion):
    query = db.session.query(Registration.participant_id, Registration.occurrence_id).filter(criterion)
    return {(r.participant_id, r.occurrence_id) for r in query}


def fan_out_occurrences(occurrence_ids, today=None):
    """Register every participant as not attending for each given occurrence.

    Runs inside the caller's transaction.
    """
    if not occurrence_ids:
        return 0
    today = today or date.today()
    participant_ids = [pid for (pid,) in db.session.query(Participant.id)]
    existing = _existing_pairs(Registration.occurrence_id.in_(occurrence_ids))
    rows = [
        _registration_row(pid, oid, NOT_ATTENDING, today)
        for oid in occurrence_ids
        for pid in participant_ids
        if (pid, oid) not in existing
    ]
    return insert_registrations(rows)


def fan_out_participant(participant_id, today=None):
    """Register a participant as not attending for every occurrence still open.

    An occurrence is open while its registration deadline is today or later.
    Runs inside the caller's transaction.
    """
    today = today or date.today()
    occurrence_ids = [
        oid for (oid,) in db.session.query(EventOccurrence.id)
        .filter(EventOccurrence.registration_deadline_date >= today)
    ]
    existing = _existing_pairs(Registration.participant_id == participant_id)
    rows = [
        _registration_row(participant_id, oid, NOT_ATTENDING, today)
        for oid in occurrence_ids
        if (participant_id, oid) not in existing
    ]
    return insert_registrations(rows)


def fan_out_new_occurrence(occurrence_id):
    with transaction():
        if db.session.get(EventOccurrence, occurrence_id) is None:
            raise NotFoundError('Occurrence not found')
        return fan_out_occurrences([occurrence_id])


def fan_out_new_participant(participant_id, today=None):
    with transaction():
        if db.session.get(Participant, participant_id) is None:
            raise NotFoundError('Participant not found')
        return fan_out_participant(participant_id, today)


# ============= PARTICIPANT ACTIONS =============

def register_participant(identity, participant_id, occurrence_id):
    """Sign a participant up for an occurrence. Returns False if already registered."""
    participant = participant_for(identity, participant_id)
    if db.session.get(EventOccurrence, occurrence_id) is None:
        raise NotFoundError('Occurrence not found')

    existing = Registration.query.filter_by(participant_id=participant.id, occurrence_id=occurrence_id).first()
    if existing:
        return False

    with transaction():
        created = insert_registrations([
            _registration_row(participant.id, occurrence_id, PLANNING_TO_ATTEND, date.today())
        ])
    return created == 1


def set_registration_status(identity, participant_id, registration_id, status):
    participant = participant_for(identity, participant_id)
    if status not in STATUSES:
        status = NOT_ATTENDING

    registration = Registration.query.filter_by(id=registration_id, participant_id=participant.id).first()
    if registration is None:
        raise NotFoundError('Registration record not found')

    with transaction():
        registration.status = status
    return registration


# ============= CHECK-IN =============

def check_in(identity, registration_id):
    """Mark a registration as attended and open a blank survey for it."""
    require_manager(identity)
    registration = db.session.get(Registration, registration_id)
    if registration is None:
        raise NotFoundError('Registration not found')

    now = datetime.now()
    with transaction():
        registration.attended = True
        registration.checkin_date = now.date()
        registration.checkin_time = now.time().replace(microsecond=0)
        ensure_blank_survey(registration.id)
    return registration


def registrations_for_occurrence(occurrence_id):
    return (Registration.query
            .join(Participant, Participant.id == Registration.participant_id)
            .filter(Registration.occurrence_id == occurrence_id)
            .order_by(Participant.last_name, Participant.first_name)
            .all())
