"""
ClubHub - Test Configuration and Fixtures
"""
import copy
import itertools
import os

import pytest
from werkzeug.security import generate_password_hash

# Set testing environment
os.environ["CLUBHUB_LOG_TO_FILE"] = "false"
os.environ["START_SCHEDULERS"] = "false"

from clubhub.app import create_app
from clubhub.firebase_config import FirebaseDB
from clubhub.utils.clock import now_iso, shift_iso, utcnow
from clubhub.utils.errors import NotFoundError

PASSWORD = "password123"
PASSWORD_HASH = generate_password_hash(PASSWORD, method="pbkdf2:sha256:1000")


def _compare(actual, op, value) -> bool:
    if op == "==":
        return actual == value
    if op == "!=":
        return actual != value
    if op == "in":
        return actual in value
    if op == "array_contains":
        return isinstance(actual, list) and value in actual
    if actual is None:
        return False
    try:
        if op == "<":
            return actual < value
        if op == "<=":
            return actual <= value
        if op == ">":
            return actual > value
        if op == ">=":
            return actual >= value
    except TypeError:
        return False
    raise ValueError(f"Unsupported operator {op}")


class InMemoryDB(FirebaseDB):
    """FirebaseDB with the storage primitives backed by dicts. Documents missing a filtered field never match."""

    def __init__(self):
        self.db = None
        self.collections = {}
        self._ids = itertools.count(1)

    def _docs(self, collection):
        return self.collections.setdefault(collection, {})

    def _match(self, doc, filters):
        return all(field in doc and _compare(doc[field], op, value) for field, op, value in filters)

    def insert(self, collection, data):
        doc_id = f"{collection}-{next(self._ids)}"
        doc = copy.deepcopy(dict(data))
        doc.pop("id", None)
        self._docs(collection)[doc_id] = doc
        return doc_id

    def insert_many(self, collection, rows):
        return [self.insert(collection, row) for row in rows]

    def get(self, collection, doc_id):
        doc = self._docs(collection).get(doc_id) if doc_id else None
        if doc is None:
            return None
        out = copy.deepcopy(doc)
        out["id"] = doc_id
        return out

    def update(self, collection, doc_id, data):
        if doc_id not in self._docs(collection):
            raise NotFoundError(f"{collection} document not found")
        self._docs(collection)[doc_id].update(copy.deepcopy(dict(data)))
        return True

    def delete(self, collection, doc_id):
        self._docs(collection).pop(doc_id, None)
        return True

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        docs = [self.get(collection, doc_id) for doc_id, doc in self._docs(collection).items()
                if self._match(doc, filters)]
        if order_by:
            docs.sort(key=lambda d: (d.get(order_by) is None, d.get(order_by) or ""), reverse=descending)
        if limit:
            docs = docs[:limit]
        return docs

    def find_one(self, collection, filters=()):
        docs = self.query(collection, filters, limit=1)
        return docs[0] if docs else None

    def count(self, collection, filters=()):
        return len(self.query(collection, filters))

    def delete_where(self, collection, filters):
        ids = [doc_id for doc_id, doc in self._docs(collection).items() if self._match(doc, filters)]
        for doc_id in ids:
            del self._docs(collection)[doc_id]
        return len(ids)

    def compare_and_set(self, collection, doc_id, field, expected, updates):
        doc = self._docs(collection).get(doc_id)
        if doc is None:
            raise NotFoundError(f"{collection} document not found")
        accepted = tuple(expected) if isinstance(expected, (list, tuple, set)) else (expected,)
        if doc.get(field) not in accepted:
            return False
        doc.update(copy.deepcopy(dict(updates)))
        return True


class Factory:
    """Writes fixture documents straight into the database."""

    def __init__(self, db):
        self.db = db
        self._n = itertools.count(1)

    def user(self, role="student", **fields):
        n = next(self._n)
        doc = {
            "email": f"user{n}@example.edu",
            "name": f"User {n}",
            "role": role,
            "status": "active",
            "password_hash": PASSWORD_HASH,
            "created_at": now_iso(),
            "updated_at": now_iso(),
        }
        if role == "student":
            doc["roll_number"] = f"22BD{n:06d}"
        doc.update(fields)
        doc["id"] = self.db.insert("users", doc)
        return doc

    def club(self, coordinator=None, president=None, **fields):
        n = next(self._n)
        coordinator = coordinator or self.user("coordinator")
        doc = {
            "name": f"Club {n}",
            "description": "A club for testing",
            "category": "technical",
            "coordinator_id": coordinator["id"],
            "status": "active",
            "social_links": {},
            "pending_settings": None,
            "archive_request": None,
            "created_at": now_iso(),
            "updated_at": now_iso(),
        }
        doc.update(fields)
        doc["name_lower"] = doc["name"].lower()
        doc["id"] = self.db.insert("clubs", doc)
        if president:
            self.member(doc, president, "president")
        return doc

    def member(self, club, user, role="member", status="approved", **fields):
        doc = {"club_id": club["id"], "user_id": user["id"], "role": role, "status": status,
               "joined_at": now_iso()}
        doc.update(fields)
        doc["id"] = self.db.insert("memberships", doc)
        return doc

    def event(self, club, status="draft", **fields):
        doc = {
            "club_id": club["id"],
            "title": "Tech Talk",
            "description": "An evening talk",
            "date_time": shift_iso(utcnow(), days=7),
            "duration": 120,
            "venue": "Main Hall",
            "capacity": 100,
            "budget": 0,
            "is_public": True,
            "guest_speakers": [],
            "participating_clubs": [],
            "status": status,
            "requires_admin_approval": False,
            "photos": [],
            "report_url": "",
            "attendance_url": "",
            "bill_urls": [],
            "completion_checklist": {"photos_uploaded": False, "report_uploaded": False,
                                     "attendance_uploaded": False, "bills_uploaded": False},
            "completion_reminder_sent": {"day3": False, "day5": False},
            "completion_deadline": None,
            "coordinator_override": None,
            "created_at": now_iso(),
            "updated_at": now_iso(),
        }
        doc.update(fields)
        doc["id"] = self.db.insert("events", doc)
        return doc

    def recruitment(self, club, status="open", **fields):
        doc = {
            "club_id": club["id"],
            "title": "Spring Intake",
            "description": "",
            "positions": [],
            "start_date": shift_iso(utcnow(), days=-1),
            "end_date": shift_iso(utcnow(), days=5),
            "status": status,
            "created_at": now_iso(),
            "updated_at": now_iso(),
        }
        doc.update(fields)
        doc["id"] = self.db.insert("recruitments", doc)
        return doc


def actor_of(user: dict) -> dict:
    """Service-level actor context for a fixture user."""
    return {"id": user["id"], "role": user["role"], "name": user.get("name", ""),
            "ip": "127.0.0.1", "user_agent": "pytest"}


@pytest.fixture
def db():
    return InMemoryDB()


@pytest.fixture
def app(db):
    return create_app(db=db, config={"TESTING": True, "SECRET_KEY": "test-secret-key", "START_SCHEDULERS": False})


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["clubhub"]


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def login(client):
    """Put a user into the test client's session."""
    def _login(user):
        with client.session_transaction() as sess:
            sess["user"] = {"id": user["id"], "email": user["email"], "role": user["role"], "name": user["name"]}
        return user
    return _login


@pytest.fixture
def as_actor():
    return actor_of
