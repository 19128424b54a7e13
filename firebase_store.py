"""Firebase connection and the names of everything stored in it.

Firestore has no DDL, collections come into existence on first write, so
these constants are the only schema the project has.
"""

import os
import json
import time
import logging
import firebase_admin
from firebase_admin import credentials, firestore
from firebase_admin import db as firebase_db

logger = logging.getLogger(__name__)

# --- FIRESTORE COLLECTIONS ---
USERS = 'users'
PRODUCTS = 'products'
CHATS = 'chats'
MESSAGES = 'messages'
FAVORITES = 'favorites'
CHAT_LIST = 'chatList'
WALLET_ADDRESSES = 'wallet_addresses'
ADMIN_NOTIFICATIONS = 'admin_notifications'
CHANNEL_LOGOS = 'channelLogos'

# --- REALTIME DATABASE PATHS ---
RTDB_MESSAGES = 'messages'
RTDB_ADMIN_REQUESTS = 'adminRequests'


def now_ms():
    return int(time.time() * 1000)


def load_credentials(key_file_name):
    if os.path.exists(key_file_name):
        return credentials.Certificate(key_file_name)
    if os.environ.get('FIREBASE_CREDENTIALS'):
        creds_json = json.loads(os.environ.get('FIREBASE_CREDENTIALS'))
        return credentials.Certificate(creds_json)
    return None


def connect(config):
    """Initialize the default Firebase app.

    Returns ``(db, rtdb)``: a Firestore client and the Realtime Database
    module (anything with a ``reference(path)`` method will do for the
    services). Both are ``None`` when no credentials are available.
    """
    cred = load_credentials(config['KEY_FILE_NAME'])
    if not cred:
        logger.warning("No Firebase credentials found; datastores are disabled.")
        return None, None

    if not firebase_admin._apps:
        options = {}
        if config.get('FIREBASE_DATABASE_URL'):
            options['databaseURL'] = config['FIREBASE_DATABASE_URL']
        if config.get('FIREBASE_STORAGE_BUCKET'):
            options['storageBucket'] = config['FIREBASE_STORAGE_BUCKET']
        firebase_admin.initialize_app(cred, options)

    rtdb = firebase_db if config.get('FIREBASE_DATABASE_URL') else None
    if rtdb is None:
        logger.warning("FIREBASE_DATABASE_URL is not set; realtime chat is disabled.")
    return firestore.client(), rtdb
