import os


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-me')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///ellarises.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound on occurrences generated for one recurring event
    MAX_OCCURRENCES = int(os.environ.get('MAX_OCCURRENCES', 500))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LOG_LEVEL = 'DEBUG'
