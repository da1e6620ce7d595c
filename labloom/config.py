import os
from pathlib import Path

from flask import Config as FlaskConfig

basedir = Path(__file__).parent.parent


def env_flag(name, default=False):
    """Read a boolean environment variable ('true', '1', 'yes' are truthy)."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def env_float(name, default=None):
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', f'sqlite:///{basedir}/instance/notes.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Client side: read once at startup
    PREFER_REMOTE = env_flag('LABLOOM_USE_REMOTE_API', default=True)
    REMOTE_API_URL = os.environ.get('LABLOOM_API_URL', 'http://localhost:5000')
    REMOTE_API_TIMEOUT = env_float('LABLOOM_API_TIMEOUT')  # None = transport default
    LOCAL_STORE_PATH = os.environ.get('LABLOOM_LOCAL_STORE', str(basedir / 'instance' / 'local-store'))
    LOCAL_NOTES_LIMIT = int(os.environ.get('LOCAL_NOTES_LIMIT', 10))

    # Attachments
    MAX_ATTACHMENT_SIZE = int(os.environ.get('MAX_ATTACHMENT_SIZE', 10 * 1024 * 1024))
    ATTACHMENT_BUDGET = int(os.environ.get('ATTACHMENT_BUDGET', 8 * 1024 * 1024))
    ATTACHMENT_MIN_CHUNK = int(os.environ.get('ATTACHMENT_MIN_CHUNK', 200 * 1024))
    IMAGE_TARGET_BYTES = int(os.environ.get('IMAGE_TARGET_BYTES', int(1.5 * 1024 * 1024)))


def load_config(config_class=Config):
    """Settings for the client side, loaded the same way the Flask app loads them."""
    settings = FlaskConfig(str(basedir))
    settings.from_object(config_class)
    return settings
