import itertools
import pytest

import app as app_module
import chats
import escrow
import firebase_store
import products
from app import app as flask_app
from fakes import FakeFirestore, FakeRealtimeDB
from schemas import Identity

BUYER = {'uid': 'buyer-1', 'user_email': 'bob@example.com', 'user_name': 'Bob'}


# --- FIXTURES (Setup Code) ---

@pytest.fixture(autouse=True)
def clock(monkeypatch):
    """Strictly increasing millisecond clock, one second per call."""
    ticks = itertools.count(1700000000000, 1000)
    now_ms = lambda: next(ticks)
    for module in (chats, escrow, firebase_store, products):
        monkeypatch.setattr(module, 'now_ms', now_ms)
    return now_ms

@pytest.fixture
def fake_db(monkeypatch):
    db = FakeFirestore()
    monkeypatch.setattr(app_module, 'db', db)
    return db


@pytest.fixture
def fake_rtdb(monkeypatch):
    rtdb = FakeRealtimeDB()
    monkeypatch.setattr(app_module, 'rtdb', rtdb)
    return rtdb


@pytest.fixture
def client(fake_db, fake_rtdb):
    """Flask test client wired to the in-memory datastores."""
    flask_app.config['TESTING'] = True
    flask_app.extensions['mail'].suppress = True
    with flask_app.test_client() as client:
        yield client


@pytest.fixture
def logged_in_client(client):
    """Test client with the buyer's session already established."""
    with client.session_transaction() as session:
        session['logged_in'] = True
        session.update(BUYER)
    return client


@pytest.fixture
def buyer():
    return Identity(id='buyer-1', email='bob@example.com', name='Bob')


@pytest.fixture
def seller():
    return Identity(id='seller-1', email='sam@example.com')


@pytest.fixture
def product(fake_db):
    data = {
        'displayName': 'Tech Reviews',
        'price': 12,
        'category': 'Technology',
        'platform': 'YouTube',
        'accountLink': 'https://www.youtube.com/@techreviews',
        'subscribers': 15000,
        'monthlyIncome': 300,
        'monthlyExpenses': 20,
        'imageUrls': ['https://img.example.com/1.png', 'https://img.example.com/2.png'],
        'description': 'Channel about gadgets.',
        'userId': 'seller-1',
        'userEmail': 'sam@example.com',
        'createdAt': 1700000000000,
    }
    fake_db.seed('products/prod-1', data)
    return data | {'id': 'prod-1'}
