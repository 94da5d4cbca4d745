# ================================================================================
# FIREBASE CONFIGURATION AND DATABASE OPERATIONS
# ================================================================================
# All Firestore access for ClubHub goes through FirebaseDB. Services never
# touch the Firestore client directly.
#
# Collections Structure:
# - users:         identity + single global role (student/coordinator/admin)
# - clubs:         club profile, coordinator, status, pending settings/archive request
# - memberships:   (user, club) pairs with one scoped role
# - events:        club events and their lifecycle status
# - attendance:    organizer/audience attendance rows per event
# - recruitments:  recruitment drives; applications: student applications
# - notifications: per-user messages; audit_logs: append-only action records
#
# Every document is returned as a dict with its document id under "id".
# ================================================================================

import os
import json
import firebase_admin
from firebase_admin import credentials, firestore
from dotenv import load_dotenv

from clubhub.logger import get_logger
from clubhub.utils.errors import NotFoundError

load_dotenv()
logger = get_logger(__name__)

# Firestore caps a write batch at 500 operations
BATCH_LIMIT = 400

def initialize_firebase():
    """
    Initialize Firebase Admin SDK with service account credentials.

    Two authentication methods supported:
    1. JSON string via FIREBASE_SERVICE_ACCOUNT_KEY environment variable
    2. JSON file path via FIREBASE_SERVICE_ACCOUNT_PATH environment variable

    Returns:
        firestore.Client: Firestore database client instance
    """
    if not firebase_admin._apps:
        key_json = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY")
        if key_json:
            service_account_info = json.loads(key_json)
            cred = credentials.Certificate(service_account_info)
        else:
            path = os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH", "serviceAccountKey.json")
            cred = credentials.Certificate(path)

        firebase_admin.initialize_app(cred)
        logger.info("Firebase app initialized")

    return firestore.client()

def get_db():
    """Get Firestore database client instance"""
    return initialize_firebase()

def _with_id(doc):
    d = doc.to_dict() or {}
    d["id"] = doc.id
    return d

class FirebaseDB:
    """
    Database interface for all ClubHub collections.

    The storage primitives (insert/get/update/delete/query/count and
    compare_and_set) are the only methods that talk to Firestore; the domain
    lookups below them are built on the primitives.
    """

    def __init__(self, client=None):
        self.db = client if client is not None else get_db()

    # ================================================================================
    # STORAGE PRIMITIVES
    # ================================================================================
    def insert(self, collection: str, data: dict) -> str:
        doc_ref = self.db.collection(collection).document()
        doc_ref.set(dict(data))
        return doc_ref.id

    def insert_many(self, collection: str, rows: list) -> list:
        ids = []
        for start in range(0, len(rows), BATCH_LIMIT):
            batch = self.db.batch()
            for row in rows[start:start + BATCH_LIMIT]:
                doc_ref = self.db.collection(collection).document()
                batch.set(doc_ref, dict(row))
                ids.append(doc_ref.id)
            batch.commit()
        return ids

    def get(self, collection: str, doc_id: str):
        if not doc_id:
            return None
        doc = self.db.collection(collection).document(doc_id).get()
        if doc.exists:
            return _with_id(doc)
        return None

    def update(self, collection: str, doc_id: str, data: dict):
        self.db.collection(collection).document(doc_id).update(dict(data))
        return True

    def delete(self, collection: str, doc_id: str):
        self.db.collection(collection).document(doc_id).delete()
        return True

    def _query(self, collection: str, filters=()):
        q = self.db.collection(collection)
        for field, op, value in filters:
            q = q.where(field, op, value)
        return q

    def query(self, collection: str, filters=(), order_by: str | None = None,
              descending: bool = False, limit: int | None = None) -> list:
        """
        Run an AND of (field, op, value) filters and return matching documents.

        Ordering happens client side so queries never need composite indexes.
        """
        docs = [_with_id(doc) for doc in self._query(collection, filters).stream()]
        if order_by:
            docs.sort(key=lambda d: (d.get(order_by) is None, d.get(order_by) or ""), reverse=descending)
        if limit:
            docs = docs[:limit]
        return docs

    def find_one(self, collection: str, filters=()):
        for doc in self._query(collection, filters).limit(1).stream():
            return _with_id(doc)
        return None

    def count(self, collection: str, filters=()) -> int:
        return sum(1 for _ in self._query(collection, filters).stream())

    def delete_where(self, collection: str, filters) -> int:
        refs = [doc.reference for doc in self._query(collection, filters).stream()]
        for start in range(0, len(refs), BATCH_LIMIT):
            batch = self.db.batch()
            for ref in refs[start:start + BATCH_LIMIT]:
                batch.delete(ref)
            batch.commit()
        return len(refs)

    def compare_and_set(self, collection: str, doc_id: str, field: str, expected, updates: dict) -> bool:
        """
        Atomically apply updates only if document[field] still holds the expected value.

        Args:
            expected: a single value or a tuple/list/set of accepted values

        Returns:
            bool: True if the update was applied, False if the field had moved on

        Raises:
            NotFoundError: if the document does not exist
        """
        accepted = tuple(expected) if isinstance(expected, (list, tuple, set)) else (expected,)
        doc_ref = self.db.collection(collection).document(doc_id)
        transaction = self.db.transaction()

        @firestore.transactional
        def txn_cas(transaction):
            snap = doc_ref.get(transaction=transaction)
            if not snap.exists:
                raise NotFoundError(f"{collection} document not found")
            current = (snap.to_dict() or {}).get(field)
            if current not in accepted:
                return False
            transaction.update(doc_ref, dict(updates))
            return True

        return txn_cas(transaction)

    # ================================================================================
    # USERS
    # ================================================================================
    def get_user(self, user_id):
        return self.get("users", user_id)

    def get_user_by_email(self, email: str):
        if not email:
            return None
        return self.find_one("users", [("email", "==", email.strip().lower())])

    def get_user_by_roll_number(self, roll_number: str):
        if not roll_number:
            return None
        return self.find_one("users", [("roll_number", "==", roll_number.strip().upper())])

    def user_ids_with_role(self, role: str) -> list:
        return [u["id"] for u in self.query("users", [("role", "==", role)])]

    # ================================================================================
    # CLUBS
    # ================================================================================
    def get_club(self, club_id):
        return self.get("clubs", club_id)

    def get_club_by_name(self, name: str):
        if not name:
            return None
        return self.find_one("clubs", [("name_lower", "==", name.strip().lower())])

    def get_clubs_map(self, club_ids=None) -> dict:
        if club_ids is None:
            return {c["id"]: c for c in self.query("clubs")}
        result = {}
        for club_id in set(club_ids):
            club = self.get_club(club_id)
            if club:
                result[club_id] = club
        return result

    # ================================================================================
    # MEMBERSHIPS
    # ================================================================================
    def get_membership(self, club_id, user_id, status: str | None = "approved"):
        filters = [("club_id", "==", club_id), ("user_id", "==", user_id)]
        if status:
            filters.append(("status", "==", status))
        return self.find_one("memberships", filters)

    def club_memberships(self, club_id, roles=None, status: str | None = "approved") -> list:
        filters = [("club_id", "==", club_id)]
        if status:
            filters.append(("status", "==", status))
        if roles:
            filters.append(("role", "in", list(roles)))
        return self.query("memberships", filters, order_by="joined_at")

    def user_memberships(self, user_id, status: str | None = "approved") -> list:
        filters = [("user_id", "==", user_id)]
        if status:
            filters.append(("status", "==", status))
        return self.query("memberships", filters, order_by="joined_at")

    def club_member_ids(self, club_id, roles=None) -> list:
        seen = []
        for m in self.club_memberships(club_id, roles=roles):
            if m.get("user_id") and m["user_id"] not in seen:
                seen.append(m["user_id"])
        return seen

    def count_club_members(self, club_id) -> int:
        return self.count("memberships", [("club_id", "==", club_id), ("status", "==", "approved")])

    # ================================================================================
    # EVENTS
    # ================================================================================
    def get_event(self, event_id):
        return self.get("events", event_id)

    def get_attendance(self, event_id, user_id):
        return self.find_one("attendance", [("event_id", "==", event_id), ("user_id", "==", user_id)])
