from collections import namedtuple
from functools import wraps

from flask import flash, redirect, session, url_for

from errors import AuthorizationError, NotFoundError
from models import MANAGER, Participant, db


class Identity(namedtuple('Identity', ['user_id', 'level'])):
    """Who is making the request. Passed explicitly into every mutating call."""

    @property
    def is_manager(self):
        return self.level == MANAGER


def current_identity():
    if 'user_id' not in session:
        return None
    return Identity(session['user_id'], session.get('level'))


def login_required(view_func):
    @wraps(view_func)
    def wrapped(*args, **kwargs):
        if current_identity() is None:
            flash('Please log in first', 'error')
            return redirect(url_for('login'))
        return view_func(*args, **kwargs)
    return wrapped


def manager_required(view_func):
    @wraps(view_func)
    def wrapped(*args, **kwargs):
        identity = current_identity()
        if identity is None:
            flash('Please log in first', 'error')
            return redirect(url_for('login'))
        if not identity.is_manager:
            raise AuthorizationError('Manager access only')
        return view_func(*args, **kwargs)
    return wrapped


def require_manager(identity):
    if identity is None or not identity.is_manager:
        raise AuthorizationError('Manager access only')


def require_parent_access(identity, parent):
    if identity is None:
        raise AuthorizationError('Not logged in')
    if not identity.is_manager and identity.user_id != parent.user_id:
        raise AuthorizationError('Unauthorized')


def participant_for(identity, participant_id):
    """Load a participant the identity is allowed to act on."""
    participant = db.session.get(Participant, participant_id)
    if participant is None:
        raise NotFoundError('Participant not found')
    require_parent_access(identity, participant.parent)
    return participant
