import os
from dotenv import load_dotenv

# Load the hidden variables
load_dotenv()


def _env_flag(name, default='false'):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me-in-production')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # --- FIREBASE ---
    KEY_FILE_NAME = os.getenv('FIREBASE_KEY_FILE', 'key.json')
    FIREBASE_API_KEY = os.getenv('FIREBASE_API_KEY', '')
    FIREBASE_AUTH_DOMAIN = os.getenv('FIREBASE_AUTH_DOMAIN', '')
    FIREBASE_PROJECT_ID = os.getenv('FIREBASE_PROJECT_ID', '')
    FIREBASE_STORAGE_BUCKET = os.getenv('FIREBASE_STORAGE_BUCKET', '')
    FIREBASE_MESSAGING_SENDER_ID = os.getenv('FIREBASE_MESSAGING_SENDER_ID', '')
    FIREBASE_APP_ID = os.getenv('FIREBASE_APP_ID', '')
    FIREBASE_MEASUREMENT_ID = os.getenv('FIREBASE_MEASUREMENT_ID', '')
    FIREBASE_DATABASE_URL = os.getenv('FIREBASE_DATABASE_URL', '')

    # --- MAIL ---
    MAIL_SERVER = os.getenv('MAIL_SERVER', 'localhost')
    MAIL_PORT = int(os.getenv('MAIL_PORT', '25'))
    MAIL_USERNAME = os.getenv('MAIL_USERNAME')
    MAIL_PASSWORD = os.getenv('MAIL_PASSWORD')
    MAIL_USE_TLS = _env_flag('MAIL_USE_TLS')
    MAIL_USE_SSL = _env_flag('MAIL_USE_SSL')
    MAIL_DEFAULT_SENDER = os.getenv('MAIL_DEFAULT_SENDER', 'noreply@channelmart.app')

    ADMIN_EMAILS = [e.strip() for e in os.getenv('ADMIN_EMAILS', '').split(',') if e.strip()]


def public_firebase_config(config):
    """Web SDK parameters the browser needs to sign in. None of these are secret."""
    return {
        'apiKey': config['FIREBASE_API_KEY'],
        'authDomain': config['FIREBASE_AUTH_DOMAIN'],
        'projectId': config['FIREBASE_PROJECT_ID'],
        'storageBucket': config['FIREBASE_STORAGE_BUCKET'],
        'messagingSenderId': config['FIREBASE_MESSAGING_SENDER_ID'],
        'appId': config['FIREBASE_APP_ID'],
        'measurementId': config['FIREBASE_MEASUREMENT_ID'],
    }
