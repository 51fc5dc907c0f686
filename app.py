import os
from datetime import date, datetime

import click
from flask import Flask, flash, redirect, render_template, request, session, url_for

import accounts
import cascade
import registrations
import scheduling
import surveys
from auth import current_identity, login_required, manager_required, participant_for
from errors import EllaRisesError, PersistenceError, ValidationError
from models import Event, EventOccurrence, Login, Parent, Registration, Survey, db

app = Flask(__name__)
app.config.from_object(os.environ.get('APP_SETTINGS', 'config.Config'))
app.logger.setLevel(app.config['LOG_LEVEL'])
db.init_app(app)


# Helper functions
def form_date(name, required=True):
    value = request.form.get(name, '').strip()
    if not value:
        if required:
            raise ValidationError(f'{name.replace("_", " ").capitalize()} is required')
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'Invalid date for {name.replace("_", " ")}')


def form_time(name, required=True):
    value = request.form.get(name, '').strip()
    if not value:
        if required:
            raise ValidationError(f'{name.replace("_", " ").capitalize()} is required')
        return None
    for fmt in ('%H:%M', '%H:%M:%S'):
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValidationError(f'Invalid time for {name.replace("_", " ")}')


def form_int(name, required=True):
    value = request.form.get(name, '').strip()
    if not value:
        if required:
            raise ValidationError(f'{name.replace("_", " ").capitalize()} is required')
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f'{name.replace("_", " ").capitalize()} must be a whole number')


def form_fields(names, prefix=''):
    # Only fields the form actually posted
    return {name: request.form[prefix + name].strip() or None for name in names if prefix + name in request.form}


def participant_form(prefix=''):
    fields = form_fields(accounts.PARTICIPANT_FIELDS, prefix)
    if 'date_of_birth' in fields:
        fields['date_of_birth'] = form_date(prefix + 'date_of_birth', required=False)
    return fields


def account_url(user_id):
    identity = current_identity()
    if identity.is_manager and identity.user_id != user_id:
        return url_for('admin_users')
    return url_for('account')


@app.context_processor
def inject_identity():
    return {'identity': current_identity(), 'today': date.today()}


# ============= ERROR HANDLERS =============
@app.errorhandler(EllaRisesError)
def handle_error(error):
    if isinstance(error, PersistenceError):
        app.logger.error('Database failure on %s %s: %s', request.method, request.path, error.__cause__)
    return render_template('error.html', message=error.message), error.status_code


# ============= PUBLIC ROUTES =============
@app.route('/')
def index():
    return render_template('index.html')


# ============= AUTH ROUTES =============
@app.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        identity = accounts.authenticate(request.form['username'], request.form['password'])
        if identity:
            session['user_id'] = identity.user_id
            session['level'] = identity.level
            if identity.is_manager:
                return redirect(url_for('admin_events'))
            return redirect(url_for('account'))
        flash('Invalid credentials', 'error')

    return render_template('auth/login.html')


@app.route('/logout')
def logout():
    session.pop('user_id', None)
    session.pop('level', None)
    flash('Logged out successfully', 'success')
    return redirect(url_for('index'))


@app.route('/create-account', methods=['GET', 'POST'])
def create_account():
    if request.method == 'POST':
        try:
            login = accounts.create_account(
                request.form.get('username', '').strip(),
                request.form.get('password', ''),
                form_fields(accounts.PARENT_FIELDS, 'parent_'),
                participant_form('participant_'),
            )
        except ValidationError as e:
            flash(e.message, 'error')
            return render_template('auth/create_account.html'), 400

        session['user_id'] = login.id
        session['level'] = login.level
        flash('Account created!', 'success')
        return redirect(url_for('account'))

    return render_template('auth/create_account.html')


# ============= ACCOUNT ROUTES =============
@app.route('/account')
@login_required
def account():
    parent = Parent.query.filter_by(user_id=current_identity().user_id).first()
    return render_template('account/account.html', parent=parent)


@app.route('/account/<int:user_id>/update', methods=['POST'])
@login_required
def update_parent(user_id):
    try:
        accounts.update_parent(current_identity(), user_id, form_fields(accounts.PARENT_FIELDS))
        flash('Profile updated', 'success')
    except ValidationError as e:
        flash(e.message, 'error')
    return redirect(account_url(user_id))


@app.route('/account/<int:parent_id>/participant/add', methods=['GET', 'POST'])
@login_required
def add_participant(parent_id):
    if request.method == 'POST':
        try:
            participant = accounts.add_participant(current_identity(), parent_id, participant_form())
        except ValidationError as e:
            flash(e.message, 'error')
            return redirect(url_for('add_participant', parent_id=parent_id))
        flash(f'{participant.full_name} added', 'success')
        return redirect(account_url(participant.parent.user_id))

    parent = db.get_or_404(Parent, parent_id)
    return render_template('account/add_participant.html', parent=parent)


@app.route('/participant/<int:participant_id>/update', methods=['POST'])
@login_required
def update_participant(participant_id):
    try:
        participant = accounts.update_participant(current_identity(), participant_id, participant_form())
    except ValidationError as e:
        flash(e.message, 'error')
        return redirect(url_for('account'))
    flash('Participant updated', 'success')
    return redirect(account_url(participant.parent.user_id))


@app.route('/participant/<int:participant_id>/delete', methods=['POST'])
@login_required
def delete_participant(participant_id):
    parent_user_id, _ = cascade.delete_participant(current_identity(), participant_id)
    flash('Participant deleted', 'success')
    return redirect(account_url(parent_user_id))


@app.route('/participant/<int:participant_id>/milestones', methods=['POST'])
@login_required
def add_milestone(participant_id):
    try:
        milestone = accounts.add_milestone(
            current_identity(), participant_id,
            request.form.get('title', '').strip(),
            form_date('date', required=False),
            request.form.get('status', 'Not Started'),
        )
    except ValidationError as e:
        flash(e.message, 'error')
        return redirect(url_for('account'))
    flash('Milestone added', 'success')
    return redirect(account_url(milestone.participant.parent.user_id))


@app.route('/milestone/<int:milestone_id>/update', methods=['POST'])
@login_required
def update_milestone(milestone_id):
    try:
        milestone = accounts.update_milestone(
            current_identity(), milestone_id,
            request.form.get('title', '').strip(),
            form_date('date', required=False),
            request.form.get('status', 'Not Started'),
        )
    except ValidationError as e:
        flash(e.message, 'error')
        return redirect(url_for('account'))
    flash('Milestone updated', 'success')
    return redirect(account_url(milestone.participant.parent.user_id))


@app.route('/milestone/<int:milestone_id>/delete', methods=['POST'])
@login_required
def delete_milestone(milestone_id):
    accounts.delete_milestone(current_identity(), milestone_id)
    flash('Milestone deleted', 'success')
    return redirect(url_for('account'))


# ============= REGISTRATION ROUTES =============
@app.route('/participant/<int:participant_id>/register', methods=['GET', 'POST'])
@login_required
def register_event(participant_id):
    if request.method == 'POST':
        occurrence_id = form_int('occurrence_id')
        if registrations.register_participant(current_identity(), participant_id, occurrence_id):
            flash('Registered!', 'success')
        else:
            flash('Already registered for that event', 'warning')
        return redirect(url_for('account'))

    participant = participant_for(current_identity(), participant_id)
    registered = {r.occurrence_id for r in Registration.query.filter_by(participant_id=participant.id)}
    available = [o for o in scheduling.upcoming_occurrences() if o.id not in registered]
    return render_template('account/register_event.html', participant=participant, occurrences=available)


@app.route('/participant/<int:participant_id>/registration/<int:registration_id>/status', methods=['POST'])
@login_required
def registration_status(participant_id, registration_id):
    registrations.set_registration_status(
        current_identity(), participant_id, registration_id, request.form.get('status'))
    flash('Event status updated', 'success')
    return redirect(url_for('account'))


# ============= ADMIN EVENT ROUTES =============
@app.route('/admin/events')
@manager_required
def admin_events():
    events = Event.query.order_by(Event.name).all()
    return render_template('admin/events.html', events=events)


@app.route('/admin/events/new', methods=['GET', 'POST'])
@manager_required
def add_event():
    if request.method == 'POST':
        try:
            event = scheduling.create_event(
                current_identity(),
                name=request.form.get('name', '').strip(),
                event_type=request.form.get('type'),
                description=request.form.get('description'),
                recurrence_pattern=request.form.get('recurrence_pattern', scheduling.NONE),
                default_capacity=form_int('default_capacity', required=False),
                location=request.form.get('location'),
                first_start=datetime.combine(form_date('start_date'), form_time('start_time')),
                first_end=datetime.combine(form_date('end_date'), form_time('end_time')),
                repeat_until=form_date('repeat_until', required=False),
                registration_lead_days=form_int('registration_lead_days'),
            )
        except ValidationError as e:
            flash(e.message, 'error')
            return render_template('admin/add_event.html', patterns=scheduling.PATTERNS), 400

        flash(f'Event "{event.name}" created with {len(event.occurrences)} occurrence(s)', 'success')
        return redirect(url_for('manage_event', event_id=event.id))

    return render_template('admin/add_event.html', patterns=scheduling.PATTERNS)


@app.route('/admin/event/<int:event_id>')
@manager_required
def manage_event(event_id):
    event = db.get_or_404(Event, event_id)
    return render_template('admin/manage_event.html', event=event, patterns=scheduling.PATTERNS)


@app.route('/admin/event/<int:event_id>/edit', methods=['POST'])
@manager_required
def edit_event(event_id):
    try:
        scheduling.update_event(
            current_identity(), event_id,
            name=request.form.get('name', '').strip(),
            event_type=request.form.get('type'),
            description=request.form.get('description'),
            recurrence_pattern=request.form.get('recurrence_pattern', scheduling.NONE),
        )
        flash('Event details saved', 'success')
    except ValidationError as e:
        flash(e.message, 'error')
    return redirect(url_for('manage_event', event_id=event_id))


@app.route('/admin/event/<int:event_id>/delete', methods=['POST'])
@manager_required
def delete_event(event_id):
    counts = cascade.delete_event(current_identity(), event_id)
    flash(f'Event deleted along with {counts["eventoccurrences"]} occurrence(s)', 'success')
    return redirect(url_for('admin_events'))


def occurrence_form():
    return dict(
        start_date=form_date('start_date'),
        start_time=form_time('start_time', required=False),
        end_date=form_date('end_date'),
        end_time=form_time('end_time', required=False),
        location=request.form.get('location'),
        capacity=form_int('capacity', required=False),
        deadline_date=form_date('deadline_date'),
        deadline_time=form_time('deadline_time', required=False),
    )


@app.route('/admin/event/<int:event_id>/occurrences/new', methods=['GET', 'POST'])
@manager_required
def add_occurrence(event_id):
    event = db.get_or_404(Event, event_id)
    if request.method == 'POST':
        try:
            scheduling.add_occurrence(current_identity(), event.id, **occurrence_form())
        except ValidationError as e:
            flash(e.message, 'error')
            return render_template('admin/add_occurrence.html', event=event), 400
        flash('Occurrence added', 'success')
        return redirect(url_for('manage_event', event_id=event.id))

    return render_template('admin/add_occurrence.html', event=event)


@app.route('/admin/occurrence/<int:occurrence_id>/edit', methods=['POST'])
@manager_required
def edit_occurrence(occurrence_id):
    occurrence = db.get_or_404(EventOccurrence, occurrence_id)
    try:
        scheduling.update_occurrence(current_identity(), occurrence.id, **occurrence_form())
        flash('Occurrence saved', 'success')
    except ValidationError as e:
        flash(e.message, 'error')
    return redirect(url_for('manage_event', event_id=occurrence.event_id))


@app.route('/admin/occurrence/<int:occurrence_id>/delete', methods=['POST'])
@manager_required
def delete_occurrence(occurrence_id):
    event_id, _ = cascade.delete_occurrence(current_identity(), occurrence_id)
    flash('Occurrence deleted', 'success')
    return redirect(url_for('manage_event', event_id=event_id))


# ============= CHECK-IN ROUTES =============
@app.route('/admin/checkin/<int:occurrence_id>')
@manager_required
def checkin_list(occurrence_id):
    occurrence = db.get_or_404(EventOccurrence, occurrence_id)
    return render_template('admin/checkin.html', occurrence=occurrence,
                           registrations=registrations.registrations_for_occurrence(occurrence.id))


@app.route('/admin/checkin/registration/<int:registration_id>', methods=['POST'])
@manager_required
def checkin(registration_id):
    registration = registrations.check_in(current_identity(), registration_id)
    flash(f'✅ {registration.participant.full_name} checked in', 'success')
    return redirect(url_for('checkin_list', occurrence_id=registration.occurrence_id))


# ============= SURVEY ROUTES =============
@app.route('/survey/<int:registration_id>', methods=['GET', 'POST'])
@login_required
def survey(registration_id):
    registration = db.get_or_404(Registration, registration_id)
    if request.method == 'POST':
        scores = [request.form.get(field) for field in surveys.SCORE_FIELDS]
        try:
            surveys.submit_survey(current_identity(), registration.id, scores, request.form.get('comments'))
        except ValidationError as e:
            flash(e.message, 'error')
            return redirect(url_for('survey', registration_id=registration.id))
        flash('Survey submitted. Thank you!', 'success')
        return redirect(account_url(registration.participant.parent.user_id))

    participant_for(current_identity(), registration.participant_id)
    return render_template('survey/fill.html', registration=registration,
                           survey=registration.survey, fields=surveys.SCORE_FIELDS)


@app.route('/admin/surveys')
@manager_required
def admin_surveys():
    submitted = (Survey.query
                 .filter(Survey.submission_date.isnot(None))
                 .order_by(Survey.submission_date.desc(), Survey.submission_time.desc())
                 .all())
    return render_template('admin/surveys.html', surveys=submitted)


@app.route('/admin/survey/<int:survey_id>/delete', methods=['POST'])
@manager_required
def delete_survey(survey_id):
    surveys.delete_survey(current_identity(), survey_id)
    flash('Survey deleted', 'success')
    return redirect(url_for('admin_surveys'))


# ============= ADMIN USER ROUTES =============
@app.route('/admin/users')
@manager_required
def admin_users():
    parents = Parent.query.join(Login).order_by(Parent.last_name, Parent.first_name).all()
    return render_template('admin/users.html', parents=parents)


@app.route('/admin/user/<int:user_id>/delete', methods=['POST'])
@manager_required
def delete_user(user_id):
    counts = cascade.delete_parent_account(current_identity(), user_id)
    flash(f'Account deleted along with {counts["participants"]} participant(s)', 'success')
    return redirect(url_for('admin_users'))


# ============= INITIALIZATION =============
@app.cli.command('init-db')
def init_db():
    db.create_all()
    click.echo('Database tables created.')


@app.cli.command('create-manager')
@click.argument('username')
@click.password_option()
def create_manager(username, password):
    try:
        accounts.create_manager(username, password)
    except ValidationError as e:
        raise click.ClickException(e.message)
    click.echo(f'Manager {username} created.')


if __name__ == '__main__':
    with app.app_context():
        db.create_all()
    app.run(debug=True)
