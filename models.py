from contextlib import contextmanager
from datetime import date

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import SQLAlchemyError

from errors import PersistenceError

db = SQLAlchemy()

MANAGER = 'M'
USER = 'U'


class Login(db.Model):
    __tablename__ = 'logins'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    level = db.Column(db.String(1), nullable=False, default=USER)
    parent = db.relationship('Parent', backref='login', uselist=False)


class Parent(db.Model):
    __tablename__ = 'parents'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('logins.id'), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120))
    phone = db.Column(db.String(20))
    city = db.Column(db.String(100))
    state = db.Column(db.String(50))
    zip = db.Column(db.String(10))
    participants = db.relationship('Participant', backref='parent', lazy=True)


class Participant(db.Model):
    __tablename__ = 'participants'
    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(db.Integer, db.ForeignKey('parents.id'), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    date_of_birth = db.Column(db.Date)
    grade = db.Column(db.String(20))
    school_or_employer = db.Column(db.String(200))
    field_of_interest = db.Column(db.String(200))
    graduation_status = db.Column(db.String(50), default='enrolled')
    milestones = db.relationship('Milestone', backref='participant', lazy=True)

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'


class Milestone(db.Model):
    __tablename__ = 'milestones'
    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(db.Integer, db.ForeignKey('participants.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    date = db.Column(db.Date)
    status = db.Column(db.String(50), default='Not Started')  # Not Started, In Progress, Completed


class Event(db.Model):
    __tablename__ = 'events'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(100))
    description = db.Column(db.Text)
    recurrence_pattern = db.Column(db.String(10), nullable=False, default='None')
    default_capacity = db.Column(db.Integer)
    occurrences = db.relationship('EventOccurrence', backref='event', lazy=True,
                                  order_by='EventOccurrence.start_date')


class EventOccurrence(db.Model):
    __tablename__ = 'eventoccurrences'
    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey('events.id'), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time)
    end_date = db.Column(db.Date, nullable=False)
    end_time = db.Column(db.Time)
    location = db.Column(db.String(200))
    capacity = db.Column(db.Integer)
    registration_deadline_date = db.Column(db.Date, nullable=False)
    registration_deadline_time = db.Column(db.Time)


class Registration(db.Model):
    __tablename__ = 'registration'
    __table_args__ = (
        db.UniqueConstraint('participant_id', 'occurrence_id', name='uq_registration_participant_occurrence'),
    )
    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(db.Integer, db.ForeignKey('participants.id'), nullable=False)
    occurrence_id = db.Column(db.Integer, db.ForeignKey('eventoccurrences.id'), nullable=False)
    status = db.Column(db.String(30), nullable=False)  # Not attending, Planning to attend
    attended = db.Column(db.Boolean, nullable=False, default=False)
    checkin_date = db.Column(db.Date)
    checkin_time = db.Column(db.Time)
    created_date = db.Column(db.Date, default=date.today)
    participant = db.relationship('Participant', backref=db.backref('registrations', lazy=True))
    occurrence = db.relationship('EventOccurrence', backref=db.backref('registrations', lazy=True))


class Survey(db.Model):
    __tablename__ = 'survey'
    id = db.Column(db.Integer, primary_key=True)
    registration_id = db.Column(db.Integer, db.ForeignKey('registration.id'), unique=True, nullable=False)
    satisfaction_score = db.Column(db.Integer)
    usefulness_score = db.Column(db.Integer)
    instructor_score = db.Column(db.Integer)
    recommendation_score = db.Column(db.Integer)
    overall_score = db.Column(db.Numeric(4, 2))
    comments = db.Column(db.Text)
    submission_date = db.Column(db.Date)
    submission_time = db.Column(db.Time)
    registration = db.relationship('Registration', backref=db.backref('survey', uselist=False))

    @property
    def submitted(self):
        return self.submission_date is not None


@contextmanager
def transaction():
    """Commit everything done inside the block, or nothing.

    Any SQLAlchemyError is re-raised as PersistenceError after the rollback.
    Other exceptions roll back and propagate unchanged.
    """
    try:
        yield db.session
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError('Database operation failed') from e
    except Exception:
        db.session.rollback()
        raise
