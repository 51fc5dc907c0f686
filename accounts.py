from werkzeug.security import check_password_hash, generate_password_hash

from auth import Identity, participant_for, require_parent_access
from errors import NotFoundError, ValidationError
from models import MANAGER, USER, Login, Milestone, Parent, Participant, db, transaction
from registrations import fan_out_participant

PARENT_FIELDS = ('first_name', 'last_name', 'email', 'phone', 'city', 'state', 'zip')
PARTICIPANT_FIELDS = ('first_name', 'last_name', 'email', 'date_of_birth', 'grade',
                      'school_or_employer', 'field_of_interest', 'graduation_status')
MILESTONE_STATUSES = ('Not Started', 'In Progress', 'Completed')


def _pick(data, allowed):
    return {k: v for k, v in data.items() if k in allowed}


def _require(data, *fields, what):
    for field in fields:
        if not data.get(field):
            raise ValidationError(f'{what} {field.replace("_", " ")} is required')


def _check_participant_email(email, participant_id=None):
    query = Participant.query.filter_by(email=email)
    if participant_id is not None:
        query = query.filter(Participant.id != participant_id)
    if query.first():
        raise ValidationError('A participant with that email already exists')


# ============= LOGINS =============

def authenticate(username, password):
    login = Login.query.filter_by(username=username).first()
    if login and check_password_hash(login.password_hash, password):
        return Identity(login.id, login.level)
    return None


def _new_login(username, password, level):
    if not username or not password:
        raise ValidationError('Username and password are required')
    if Login.query.filter_by(username=username).first():
        raise ValidationError('Username already taken')
    login = Login(username=username, password_hash=generate_password_hash(password), level=level)
    db.session.add(login)
    return login


def create_manager(username, password):
    with transaction():
        login = _new_login(username, password, MANAGER)
    return login


def create_account(username, password, parent_fields, participant_fields):
    """Sign up a parent with their first child.

    The child is registered as not attending for every occurrence still open.
    """
    parent_data = _pick(parent_fields, PARENT_FIELDS)
    participant_data = _pick(participant_fields, PARTICIPANT_FIELDS)
    _require(parent_data, 'first_name', 'last_name', what='Parent')
    _require(participant_data, 'first_name', 'last_name', 'email', what='Participant')
    _check_participant_email(participant_data['email'])
    participant_data['graduation_status'] = participant_data.get('graduation_status') or 'enrolled'

    with transaction():
        login = _new_login(username, password, USER)
        db.session.flush()
        parent = Parent(user_id=login.id, **parent_data)
        db.session.add(parent)
        db.session.flush()
        participant = Participant(parent_id=parent.id, **participant_data)
        db.session.add(participant)
        db.session.flush()
        fan_out_participant(participant.id)
    return login


# ============= PARENTS =============

def update_parent(identity, user_id, fields):
    """Edit the parent profile behind a login. The parent themself or a manager may do this."""
    parent = Parent.query.filter_by(user_id=user_id).first()
    if parent is None:
        raise NotFoundError('Parent not found')
    require_parent_access(identity, parent)

    data = _pick(fields, PARENT_FIELDS)
    _require(data, 'first_name', 'last_name', what='Parent')

    with transaction():
        for key, value in data.items():
            setattr(parent, key, value)
    return parent


# ============= PARTICIPANTS =============

def add_participant(identity, parent_id, fields):
    parent = db.session.get(Parent, parent_id)
    if parent is None:
        raise NotFoundError('Parent not found')
    require_parent_access(identity, parent)

    data = _pick(fields, PARTICIPANT_FIELDS)
    _require(data, 'first_name', 'last_name', 'email', what='Participant')
    _check_participant_email(data['email'])
    data['graduation_status'] = data.get('graduation_status') or 'not started'

    with transaction():
        participant = Participant(parent_id=parent.id, **data)
        db.session.add(participant)
        db.session.flush()
        fan_out_participant(participant.id)
    return participant


def update_participant(identity, participant_id, fields):
    participant = participant_for(identity, participant_id)
    data = _pick(fields, PARTICIPANT_FIELDS)
    _require(data, 'first_name', 'last_name', 'email', what='Participant')
    _check_participant_email(data['email'], participant.id)

    # Registrations point at the participant id, so changing email is safe
    with transaction():
        for key, value in data.items():
            setattr(participant, key, value)
    return participant


# ============= MILESTONES =============

def _milestone_for(identity, milestone_id):
    milestone = db.session.get(Milestone, milestone_id)
    if milestone is None:
        raise NotFoundError('Milestone not found')
    require_parent_access(identity, milestone.participant.parent)
    return milestone


def _check_milestone(title, status):
    if not title:
        raise ValidationError('Milestone title is required')
    if status not in MILESTONE_STATUSES:
        raise ValidationError(f'Unknown milestone status: {status!r}')


def add_milestone(identity, participant_id, title, date=None, status='Not Started'):
    participant = participant_for(identity, participant_id)
    _check_milestone(title, status)
    with transaction():
        milestone = Milestone(participant_id=participant.id, title=title, date=date, status=status)
        db.session.add(milestone)
    return milestone


def update_milestone(identity, milestone_id, title, date=None, status='Not Started'):
    milestone = _milestone_for(identity, milestone_id)
    _check_milestone(title, status)
    with transaction():
        milestone.title = title
        milestone.date = date
        milestone.status = status
    return milestone


def delete_milestone(identity, milestone_id):
    milestone = _milestone_for(identity, milestone_id)
    participant_id = milestone.participant_id
    with transaction():
        db.session.delete(milestone)
    return participant_id
