"""Post-event surveys.

A survey starts blank when the participant is checked in and is filled in
later. Submitting again overwrites the earlier answers.
"""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from auth import require_manager, require_parent_access
from errors import NotFoundError, ValidationError
from models import Registration, Survey, db, transaction

SCORE_FIELDS = ('satisfaction_score', 'usefulness_score', 'instructor_score', 'recommendation_score')
MIN_SCORE = 1
MAX_SCORE = 5


def _score(field, value):
    label = field.replace('_', ' ')
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f'Missing {label}')
    if isinstance(value, bool):
        raise ValidationError(f'{label.capitalize()} must be a number')
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f'{label.capitalize()} must be a number')
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f'{label.capitalize()} must be a whole number')
    if not MIN_SCORE <= number <= MAX_SCORE:
        raise ValidationError(f'{label.capitalize()} must be between {MIN_SCORE} and {MAX_SCORE}')
    return int(number)


def validate_scores(scores):
    scores = list(scores)
    if len(scores) != len(SCORE_FIELDS):
        raise ValidationError(f'Expected {len(SCORE_FIELDS)} scores, got {len(scores)}')
    return [_score(field, value) for field, value in zip(SCORE_FIELDS, scores)]


def overall_score(scores):
    """Mean of the four scores, rounded half up to two decimals."""
    mean = Decimal(sum(scores)) / len(scores)
    return mean.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _get_registration(registration_id):
    registration = db.session.get(Registration, registration_id)
    if registration is None:
        raise NotFoundError('Registration not found')
    return registration


def ensure_blank_survey(registration_id):
    # Runs inside the caller's transaction
    survey = Survey.query.filter_by(registration_id=registration_id).first()
    if survey is None:
        survey = Survey(registration_id=registration_id)
        db.session.add(survey)
        db.session.flush()
    return survey


def create_blank_survey(registration_id):
    _get_registration(registration_id)
    with transaction():
        survey = ensure_blank_survey(registration_id)
    return survey


def submit_survey(identity, registration_id, scores, comment=None):
    registration = _get_registration(registration_id)
    require_parent_access(identity, registration.participant.parent)
    values = validate_scores(scores)
    overall = overall_score(values)
    now = datetime.now()

    with transaction():
        survey = Survey.query.filter_by(registration_id=registration.id).first()
        if survey is None:
            survey = Survey(registration_id=registration.id)
            db.session.add(survey)
        for field, value in zip(SCORE_FIELDS, values):
            setattr(survey, field, value)
        survey.overall_score = overall
        survey.comments = comment or ''
        survey.submission_date = now.date()
        survey.submission_time = now.time().replace(microsecond=0)
    return survey


def delete_survey(identity, survey_id):
    require_manager(identity)
    survey = db.session.get(Survey, survey_id)
    if survey is None:
        raise NotFoundError('Survey not found')
    with transaction():
        db.session.delete(survey)
