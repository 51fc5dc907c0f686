import os
from contextlib import contextmanager
from datetime import date, time, timedelta

os.environ['APP_SETTINGS'] = 'config.TestConfig'

import pytest
from sqlalchemy import event as sa_event
from sqlalchemy.exc import OperationalError
from werkzeug.security import generate_password_hash

from app import app as flask_app
from auth import Identity
from models import MANAGER, USER, Event, EventOccurrence, Login, Parent, Participant, db


@pytest.fixture
def app():
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def manager(app):
    login = Login(username='admin', password_hash=generate_password_hash('admin-pw'), level=MANAGER)
    db.session.add(login)
    db.session.commit()
    return Identity(login.id, MANAGER)


@pytest.fixture
def make_parent(app):
    def make(username, first_name='Ana', last_name='Lopez'):
        login = Login(username=username, password_hash=generate_password_hash('parent-pw'), level=USER)
        db.session.add(login)
        db.session.flush()
        parent = Parent(user_id=login.id, first_name=first_name, last_name=last_name)
        db.session.add(parent)
        db.session.commit()
        return parent
    return make


@pytest.fixture
def make_participant(app):
    def make(parent, email, first_name='Sofia', last_name='Lopez'):
        participant = Participant(parent_id=parent.id, first_name=first_name, last_name=last_name, email=email)
        db.session.add(participant)
        db.session.commit()
        return participant
    return make


@pytest.fixture
def make_occurrence(app):
    """Occurrences created straight in the database, without any fan-out."""
    def make(event=None, start_date=None, lead_days=3):
        if event is None:
            event = Event(name='Folklorico Workshop', recurrence_pattern='None')
            db.session.add(event)
            db.session.flush()
        start_date = start_date or date.today() + timedelta(days=14)
        occurrence = EventOccurrence(
            event_id=event.id,
            start_date=start_date,
            start_time=time(17, 0),
            end_date=start_date,
            end_time=time(19, 0),
            location='Community Center',
            capacity=20,
            registration_deadline_date=start_date - timedelta(days=lead_days),
            registration_deadline_time=time(23, 59),
        )
        db.session.add(occurrence)
        db.session.commit()
        return occurrence
    return make


def identity_for(parent):
    return Identity(parent.user_id, USER)


@pytest.fixture
def parent_identity():
    return identity_for


@pytest.fixture
def failing_statement(app):
    """Make every SQL statement starting with ``prefix`` fail while the block runs."""
    @contextmanager
    def fail(prefix):
        def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            if statement.startswith(prefix):
                raise OperationalError(statement, parameters, Exception('simulated failure'))

        sa_event.listen(db.engine, 'before_cursor_execute', before_cursor_execute)
        try:
            yield
        finally:
            sa_event.remove(db.engine, 'before_cursor_execute', before_cursor_execute)
    return fail
