from datetime import date, timedelta
from decimal import Decimal

import pytest

from models import Event, EventOccurrence, Login, Parent, Participant, Registration, Survey
from registrations import fan_out_new_occurrence


def login_as(client, identity):
    with client.session_transaction() as sess:
        sess['user_id'] = identity.user_id
        sess['level'] = identity.level


@pytest.fixture
def lopez(make_parent, make_participant):
    parent = make_parent('lopez')
    make_participant(parent, 'sofia@example.com')
    return parent


def event_form(**overrides):
    start = date.today() + timedelta(days=21)
    form = {
        'name': 'Mariachi Practice',
        'type': 'Music',
        'description': 'Weekly practice',
        'recurrence_pattern': 'Weekly',
        'default_capacity': '20',
        'location': 'Music Room',
        'start_date': start.isoformat(),
        'start_time': '17:00',
        'end_date': start.isoformat(),
        'end_time': '19:00',
        'repeat_until': (start + timedelta(weeks=3)).isoformat(),
        'registration_lead_days': '2',
    }
    form.update(overrides)
    return form


def test_account_requires_login(client):
    response = client.get('/account')
    assert response.status_code == 302
    assert '/login' in response.headers['Location']


def test_login_and_logout(client, lopez):
    response = client.post('/login', data={'username': 'lopez', 'password': 'parent-pw'})
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/account')

    response = client.get('/account')
    assert response.status_code == 200
    assert b'Sofia Lopez' in response.data

    client.get('/logout')
    assert client.get('/account').status_code == 302


def test_bad_credentials(client, lopez):
    response = client.post('/login', data={'username': 'lopez', 'password': 'nope'})
    assert response.status_code == 200
    assert b'Invalid credentials' in response.data


def test_parent_cannot_open_admin_pages(client, lopez, parent_identity):
    login_as(client, parent_identity(lopez))
    assert client.get('/admin/events').status_code == 403
    assert client.post(f'/admin/user/{lopez.user_id}/delete').status_code == 403
    assert Parent.query.count() == 1


def test_create_account_form(client, make_occurrence):
    make_occurrence()
    response = client.post('/create-account', data={
        'username': 'ana',
        'password': 'secret',
        'parent_first_name': 'Ana',
        'parent_last_name': 'Lopez',
        'participant_first_name': 'Sofia',
        'participant_last_name': 'Lopez',
        'participant_email': 'sofia@example.com',
        'participant_date_of_birth': '2010-04-02',
    })
    assert response.status_code == 302

    participant = Participant.query.one()
    assert participant.date_of_birth == date(2010, 4, 2)
    assert Registration.query.filter_by(participant_id=participant.id).count() == 1
    assert client.get('/account').status_code == 200


def test_parent_updates_profile(client, lopez, parent_identity):
    login_as(client, parent_identity(lopez))

    response = client.post(f'/account/{lopez.user_id}/update', data={
        'first_name': 'Ana',
        'last_name': 'Lopez-Garcia',
        'city': 'Provo',
    })

    assert response.status_code == 302
    assert response.headers['Location'].endswith('/account')
    parent = Parent.query.one()
    assert parent.last_name == 'Lopez-Garcia'
    assert parent.city == 'Provo'
    assert b'Lopez-Garcia' in client.get('/account').data


def test_manager_creates_recurring_event(client, manager, lopez):
    login_as(client, manager)

    response = client.post('/admin/events/new', data=event_form())

    assert response.status_code == 302
    event = Event.query.one()
    assert response.headers['Location'].endswith(f'/admin/event/{event.id}')
    assert EventOccurrence.query.filter_by(event_id=event.id).count() == 4
    assert Registration.query.count() == 4
    assert client.get(f'/admin/event/{event.id}').status_code == 200


def test_create_event_without_lead_days(client, manager):
    login_as(client, manager)
    response = client.post('/admin/events/new', data=event_form(registration_lead_days=''))
    assert response.status_code == 400
    assert Event.query.count() == 0


def test_create_event_with_reversed_range(client, manager):
    login_as(client, manager)
    response = client.post('/admin/events/new', data=event_form(repeat_until='2000-01-01'))
    assert response.status_code == 400
    assert b'before the first occurrence' in response.data
    assert EventOccurrence.query.count() == 0


def test_manager_deletes_event(client, manager, lopez):
    login_as(client, manager)
    client.post('/admin/events/new', data=event_form())
    event = Event.query.one()

    response = client.post(f'/admin/event/{event.id}/delete')

    assert response.status_code == 302
    assert Event.query.count() == 0
    assert Registration.query.count() == 0


def test_delete_missing_event_is_404(client, manager):
    login_as(client, manager)
    assert client.post('/admin/event/999/delete').status_code == 404


def test_check_in_and_survey_flow(client, manager, lopez, make_occurrence, parent_identity):
    occurrence = make_occurrence()
    fan_out_new_occurrence(occurrence.id)
    registration = Registration.query.one()

    login_as(client, manager)
    response = client.post(f'/admin/checkin/registration/{registration.id}')
    assert response.status_code == 302
    assert client.get(f'/admin/checkin/{occurrence.id}').status_code == 200

    login_as(client, parent_identity(lopez))
    assert client.get(f'/survey/{registration.id}').status_code == 200
    response = client.post(f'/survey/{registration.id}', data={
        'satisfaction_score': '4',
        'usefulness_score': '5',
        'instructor_score': '3',
        'recommendation_score': '5',
        'comments': 'Great instructor',
    })
    assert response.status_code == 302

    survey = Survey.query.one()
    assert survey.overall_score == Decimal('4.25')
    assert survey.comments == 'Great instructor'


def test_survey_with_missing_score_is_rejected(client, lopez, make_occurrence, parent_identity):
    fan_out_new_occurrence(make_occurrence().id)
    registration = Registration.query.one()
    login_as(client, parent_identity(lopez))

    response = client.post(f'/survey/{registration.id}', data={
        'satisfaction_score': '4',
        'usefulness_score': '',
        'instructor_score': '3',
        'recommendation_score': '5',
    }, follow_redirects=True)

    assert response.status_code == 200
    assert b'Missing usefulness score' in response.data
    assert Survey.query.count() == 0


def test_manager_deletes_parent_account(client, manager, lopez):
    login_as(client, manager)
    user_id = lopez.user_id

    response = client.post(f'/admin/user/{user_id}/delete')

    assert response.status_code == 302
    assert Parent.query.count() == 0
    assert Participant.query.count() == 0
    assert Login.query.filter_by(id=user_id).count() == 0
