"""
Shared fixtures: an in-memory Mongo (mongomock), the local identity backend
with a test secret, and a checkout provider that never leaves the process.
"""
import threading
from types import SimpleNamespace

import mongomock
import pytest
from fastapi.testclient import TestClient

from checkout import CheckoutSession
from config import Settings
from database import Database
from errors import UpstreamError
from identity import LocalIdentityProvider
from issues import IssueStore
from main import create_app
from payments import PaymentOrchestrator, PaymentStore
from users import UserStore


class FakeCheckout:
    """Same interface as StripeCheckout; sessions are completed by the test."""

    def __init__(self):
        self.sessions = {}
        self.created = []

    def create_session(self, amount_minor, product_name, customer_email, metadata, success_url, cancel_url):
        session_id = f"cs_test_{len(self.sessions) + 1}"
        session = CheckoutSession(
            id=session_id,
            url=f"https://checkout.test/pay/{session_id}",
            amount_total=amount_minor,
            customer_email=customer_email,
            metadata=dict(metadata),
        )
        self.sessions[session_id] = session
        self.created.append({"amount_minor": amount_minor, "product_name": product_name,
                             "success_url": success_url, "cancel_url": cancel_url})
        return session

    def complete(self, session_id):
        session = self.sessions[session_id]
        session.payment_status = "paid"
        session.payment_intent = f"pi_{session_id}"
        return session

    def retrieve_session(self, session_id):
        if session_id not in self.sessions:
            raise UpstreamError("No such checkout session")
        return self.sessions[session_id]


@pytest.fixture
def settings():
    return Settings(identity_backend="local", jwt_secret="test-secret", site_domain="http://localhost:5173")


@pytest.fixture
def database():
    db = Database(name="civic-alert-test", client=mongomock.MongoClient())
    db.connect()
    yield db
    db.close()


class LockedCollection:
    """Serializes every call on a mongomock collection so worker threads can share it."""

    def __init__(self, collection, lock):
        self._collection = collection
        self._lock = lock

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        def locked(*args, **kwargs):
            with self._lock:
                return attr(*args, **kwargs)
        return locked


@pytest.fixture
def shared_database(database):
    lock = threading.Lock()
    return SimpleNamespace(**{
        name: LockedCollection(getattr(database, name), lock)
        for name in ("issues", "users", "payments", "identities")
    })


@pytest.fixture
def identity(database):
    return LocalIdentityProvider(database, "test-secret")


@pytest.fixture
def checkout():
    return FakeCheckout()


@pytest.fixture
def issue_store(database):
    return IssueStore(database)


@pytest.fixture
def user_store(database, identity):
    return UserStore(database, identity)


@pytest.fixture
def payment_store(database):
    return PaymentStore(database)


@pytest.fixture
def orchestrator(payment_store, issue_store, user_store, checkout, settings):
    return PaymentOrchestrator(payment_store, issue_store, user_store, checkout, settings)


@pytest.fixture
def client(settings, database, identity, checkout):
    app = create_app(settings, database=database, identity=identity, checkout=checkout)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def login_as(database, identity):
    """Insert a user record and return Authorization headers for it."""
    def _login(email, role="citizen", blocked=False, name="Test User"):
        if database.users.find_one({"email": email}) is None:
            database.users.insert_one({
                "name": name, "email": email, "role": role,
                "isPremium": False, "isBlocked": blocked,
            })
        token = identity.create_token(email, uid=f"uid-{email}")
        return {"Authorization": f"Bearer {token}"}
    return _login


@pytest.fixture
def pothole():
    return {
        "title": "Pothole",
        "description": "deep",
        "category": "Road",
        "priority": "Normal",
        "location": "5th Ave",
        "createdBy": "a@x.com",
    }
