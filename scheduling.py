"""Recurring event occurrences and event administration.

An event is a template. Its concrete dated instances live in
``eventoccurrences`` and are generated here from a recurrence pattern.
"""
import calendar
from collections import namedtuple
from datetime import date, datetime, time, timedelta

from flask import current_app

from auth import require_manager
from errors import NotFoundError, ValidationError
from models import Event, EventOccurrence, db, transaction
from registrations import fan_out_occurrences

NONE = 'None'
DAILY = 'Daily'
WEEKLY = 'Weekly'
MONTHLY = 'Monthly'
PATTERNS = (NONE, DAILY, WEEKLY, MONTHLY)

DEADLINE_TIME = time(23, 59)
DEFAULT_MAX_OCCURRENCES = 500

OccurrenceTemplate = namedtuple('OccurrenceTemplate', ['location', 'capacity'])


class PlannedOccurrence(namedtuple('PlannedOccurrence', [
        'start_date', 'start_time', 'end_date', 'end_time', 'location', 'capacity',
        'registration_deadline_date', 'registration_deadline_time'])):

    def to_model(self, event_id):
        return EventOccurrence(event_id=event_id, **self._asdict())


def add_months(value, months):
    """Shift a date or datetime by whole calendar months.

    The day is clamped to the last day of the target month, so Jan 31 + 1
    month is Feb 28 (or 29).
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _shift(first, pattern, n):
    # Always measured from the first occurrence so monthly clamping never drifts
    if pattern == DAILY:
        return first + timedelta(days=n)
    if pattern == WEEKLY:
        return first + timedelta(weeks=n)
    return add_months(first, n)


def _as_date(value):
    return value.date() if isinstance(value, datetime) else value


def registration_deadline(start_date, lead_days):
    return start_date - timedelta(days=lead_days)


def _check_lead_days(lead_days):
    if lead_days is None or isinstance(lead_days, bool) or not isinstance(lead_days, int):
        raise ValidationError('Registration lead time must be a whole number of days')
    if lead_days < 0:
        raise ValidationError('Registration lead time cannot be negative')


def _plan(template, start, end, lead_days):
    return PlannedOccurrence(
        start_date=start.date(),
        start_time=start.time(),
        end_date=end.date(),
        end_time=end.time(),
        location=template.location,
        capacity=template.capacity,
        registration_deadline_date=registration_deadline(start.date(), lead_days),
        registration_deadline_time=DEADLINE_TIME,
    )


def generate_occurrences(template, recurrence_pattern, first_start, first_end, repeat_until,
                         registration_lead_days, max_occurrences=DEFAULT_MAX_OCCURRENCES):
    """Expand an event template into its dated occurrences.

    The first occurrence is always included. Repeating patterns then step by
    one day, one week or one calendar month for as long as the next start
    date is on or before ``repeat_until``.

    Raises ValidationError for a bad pattern, lead time or date range, and
    when the series would be longer than ``max_occurrences``.
    """
    if recurrence_pattern not in PATTERNS:
        raise ValidationError(f'Unknown recurrence pattern: {recurrence_pattern!r}')
    _check_lead_days(registration_lead_days)
    if not isinstance(first_start, datetime) or not isinstance(first_end, datetime):
        raise ValidationError('First occurrence needs a start and end date and time')
    if first_end < first_start:
        raise ValidationError('Occurrence cannot end before it starts')

    occurrences = [_plan(template, first_start, first_end, registration_lead_days)]
    if recurrence_pattern == NONE:
        return occurrences

    if repeat_until is None:
        raise ValidationError('A repeating event needs a repeat-until date')
    repeat_until = _as_date(repeat_until)
    if repeat_until < first_start.date():
        raise ValidationError('Repeat-until date is before the first occurrence')

    # Only the start is shifted; clamping the end separately can put it before the start
    duration = first_end - first_start
    n = 1
    while True:
        start = _shift(first_start, recurrence_pattern, n)
        if start.date() > repeat_until:
            break
        if len(occurrences) >= max_occurrences:
            raise ValidationError(f'Recurring event would create more than {max_occurrences} occurrences')
        occurrences.append(_plan(template, start, start + duration, registration_lead_days))
        n += 1
    return occurrences


def _check_occurrence_dates(start_date, end_date, deadline_date):
    if start_date is None or end_date is None or deadline_date is None:
        raise ValidationError('Start, end and registration deadline dates are required')
    if end_date < start_date:
        raise ValidationError('Occurrence cannot end before it starts')
    if deadline_date > start_date:
        raise ValidationError('Registration deadline must be on or before the start date')


def _get_event(event_id):
    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFoundError('Event not found')
    return event


# ============= EVENTS =============

def create_event(identity, name, event_type, description, recurrence_pattern, default_capacity,
                 location, first_start, first_end, repeat_until, registration_lead_days):
    """Create an event with all its occurrences and default registrations."""
    require_manager(identity)
    if not name:
        raise ValidationError('Event name is required')

    planned = generate_occurrences(
        OccurrenceTemplate(location, default_capacity),
        recurrence_pattern, first_start, first_end, repeat_until, registration_lead_days,
        max_occurrences=current_app.config.get('MAX_OCCURRENCES', DEFAULT_MAX_OCCURRENCES),
    )

    with transaction():
        event = Event(
            name=name,
            type=event_type,
            description=description,
            recurrence_pattern=recurrence_pattern,
            default_capacity=default_capacity,
        )
        db.session.add(event)
        db.session.flush()

        occurrences = [p.to_model(event.id) for p in planned]
        db.session.add_all(occurrences)
        db.session.flush()

        fan_out_occurrences([o.id for o in occurrences])
    return event


def update_event(identity, event_id, name, event_type, description, recurrence_pattern):
    # Existing occurrences are left as they are
    require_manager(identity)
    if not name:
        raise ValidationError('Event name is required')
    if recurrence_pattern not in PATTERNS:
        raise ValidationError(f'Unknown recurrence pattern: {recurrence_pattern!r}')

    event = _get_event(event_id)
    with transaction():
        event.name = name
        event.type = event_type
        event.description = description
        event.recurrence_pattern = recurrence_pattern
    return event


# ============= OCCURRENCES =============

def add_occurrence(identity, event_id, start_date, start_time, end_date, end_time, location,
                   capacity, deadline_date, deadline_time=None):
    """Add one occurrence by hand and register every participant as not attending."""
    require_manager(identity)
    _check_occurrence_dates(start_date, end_date, deadline_date)
    event = _get_event(event_id)

    with transaction():
        occurrence = EventOccurrence(
            event_id=event.id,
            start_date=start_date,
            start_time=start_time,
            end_date=end_date,
            end_time=end_time,
            location=location,
            capacity=capacity,
            registration_deadline_date=deadline_date,
            registration_deadline_time=deadline_time or DEADLINE_TIME,
        )
        db.session.add(occurrence)
        db.session.flush()
        fan_out_occurrences([occurrence.id])
    return occurrence


def update_occurrence(identity, occurrence_id, start_date, start_time, end_date, end_time,
                      location, capacity, deadline_date, deadline_time=None):
    require_manager(identity)
    _check_occurrence_dates(start_date, end_date, deadline_date)
    occurrence = db.session.get(EventOccurrence, occurrence_id)
    if occurrence is None:
        raise NotFoundError('Occurrence not found')

    with transaction():
        occurrence.start_date = start_date
        occurrence.start_time = start_time
        occurrence.end_date = end_date
        occurrence.end_time = end_time
        occurrence.location = location
        occurrence.capacity = capacity
        occurrence.registration_deadline_date = deadline_date
        occurrence.registration_deadline_time = deadline_time or DEADLINE_TIME
    return occurrence


def upcoming_occurrences(today=None):
    today = today or date.today()
    return (EventOccurrence.query
            .filter(EventOccurrence.registration_deadline_date >= today)
            .order_by(EventOccurrence.start_date, EventOccurrence.start_time)
            .all())
