"""
Pytest configuration and fixtures.

The Mongo-backed EntityStore is replaced by an in-memory double with the
same interface and the same unique indexes, and the blob store writes to a
temporary directory, so the suite needs no running database.
"""
import copy
import os
import tempfile
from collections import defaultdict
from datetime import date, datetime, timedelta
from functools import lru_cache

# Keep StaticFiles and blob writes out of the working tree
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="contracting-uploads-"))

import pytest
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from pymongo.errors import DuplicateKeyError

from main import app
from database.auth import create_access_token, get_password_hash
from database.blob_store import LocalBlobStore
from database.db import get_blob_store, get_store
from database.operations import CLIENTS, ESTIMATIONS, PROJECTS, QUOTATIONS, USERS
from models.project import ProjectStatus
from models.user import UserRole

TEST_PASSWORD = "password123"

# Mirrors the unique indexes created by database.db.create_indexes
UNIQUE_FIELDS = {
    USERS: ("email",),
    CLIENTS: ("trn_number", "vat_number"),
    ESTIMATIONS: ("estimation_number",),
    QUOTATIONS: ("quotation_number", "project_id"),
}

MISSING = object()


def get_path(doc, path):
    value = doc
    for part in path.split("."):
        if isinstance(value, list):
            if not part.isdigit() or int(part) >= len(value):
                return MISSING
            value = value[int(part)]
        elif isinstance(value, dict):
            if part not in value:
                return MISSING
            value = value[part]
        else:
            return MISSING
    return value


def set_path(doc, path, new_value):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target[int(part)] if isinstance(target, list) else target.setdefault(part, {})
    last = parts[-1]
    if isinstance(target, list):
        target[int(last)] = new_value
    else:
        target[last] = new_value


def matches(doc, filter):
    for path, expected in filter.items():
        value = get_path(doc, path)
        if value is MISSING:
            if expected is not None:
                return False
        elif value != expected:
            return False
    return True


class InMemoryStore:
    """EntityStore double: equality filters, sorting, paging and unique keys."""

    def __init__(self):
        self.collections = defaultdict(dict)
        self.counters = {}
        self.last_timestamp = None
        self.fail_on = {}

    def _now(self):
        # Strictly increasing so "newest first" orderings are deterministic
        now = datetime.utcnow()
        if self.last_timestamp and now <= self.last_timestamp:
            now = self.last_timestamp + timedelta(microseconds=1)
        self.last_timestamp = now
        return now

    def _maybe_fail(self, operation, collection):
        error = self.fail_on.get((operation, collection))
        if error:
            raise error

    def _check_unique(self, collection, doc, doc_id=None):
        for field in UNIQUE_FIELDS.get(collection, ()):
            value = doc.get(field)
            if value is None:
                continue
            for other_id, other in self.collections[collection].items():
                if other_id != doc_id and other.get(field) == value:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {collection} index: {field}_1",
                        11000,
                        {"keyPattern": {field: 1}, "keyValue": {field: value}},
                    )

    async def create(self, collection, doc):
        self._maybe_fail("create", collection)
        now = self._now()
        doc = copy.deepcopy({**doc, "created_at": doc.get("created_at") or now, "updated_at": now})
        doc.pop("id", None)
        self._check_unique(collection, doc)
        doc["id"] = str(ObjectId())
        self.collections[collection][doc["id"]] = doc
        return copy.deepcopy(doc)

    async def find_by_id(self, collection, doc_id):
        doc = self.collections[collection].get(doc_id)
        return copy.deepcopy(doc) if doc else None

    async def find_one(self, collection, filter):
        for doc in self.collections[collection].values():
            if matches(doc, filter):
                return copy.deepcopy(doc)
        return None

    async def find(self, collection, filter, skip=0, limit=0, sort=None):
        docs = [doc for doc in self.collections[collection].values() if matches(doc, filter)]
        for field, direction in reversed(sort or []):
            docs.sort(key=lambda doc: get_path(doc, field), reverse=direction < 0)
        docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def update_by_id(self, collection, doc_id, patch, expected=None):
        self._maybe_fail("update", collection)
        doc = self.collections[collection].get(doc_id)
        if not doc or not matches(doc, expected or {}):
            return None
        updated = copy.deepcopy(doc)
        for path, value in {**patch, "updated_at": self._now()}.items():
            set_path(updated, path, copy.deepcopy(value))
        self._check_unique(collection, updated, doc_id)
        self.collections[collection][doc_id] = updated
        return copy.deepcopy(updated)

    async def delete_by_id(self, collection, doc_id):
        doc = self.collections[collection].pop(doc_id, None)
        return copy.deepcopy(doc) if doc else None

    async def count(self, collection, filter):
        return len([doc for doc in self.collections[collection].values() if matches(doc, filter)])

    async def next_sequence(self, name, floor=0):
        self.counters[name] = max(self.counters.get(name, 0), floor) + 1
        return self.counters[name]


@lru_cache(maxsize=1)
def hashed_test_password():
    return get_password_hash(TEST_PASSWORD)


def auth_headers(user):
    token = create_access_token({"sub": user["email"], "user_id": user["id"], "role": user["role"]})
    return {"Authorization": f"Bearer {token}"}


def estimation_payload(project_id, **overrides):
    payload = {
        "project_id": project_id,
        "work_start_date": date(2026, 11, 1),
        "work_end_date": date(2026, 11, 30),
        "valid_until": date(2026, 12, 31),
        "payment_due_by": 30,
        "materials": [{"description": "Ceramic tiles", "quantity": 2, "unit": "box", "unit_price": 100}],
        "labour": [],
        "terms_and_conditions": [],
    }
    payload.update(overrides)
    return payload


def quotation_payload(project_id, **overrides):
    payload = {
        "project_id": project_id,
        "valid_until": date(2026, 12, 31),
        "scope_of_work": ["Supply and fix floor tiles"],
        "items": [{"description": "Floor tiles", "quantity": 3, "unit": "m2", "unit_price": 50}],
        "terms_and_conditions": ["50% advance"],
        "vat_percentage": 5,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(str(tmp_path / "uploads"), "/uploads")


@pytest.fixture
def make_user(store):
    async def _make_user(role, email=None, is_active=True):
        return await store.create(USERS, {
            "email": email or f"{role.value}-{ObjectId()}@example.com",
            "first_name": role.value.title(),
            "last_name": "Tester",
            "phone_numbers": ["+971501234567"],
            "role": role.value,
            "address": None,
            "hashed_password": hashed_test_password(),
            "is_active": is_active,
        })
    return _make_user


@pytest.fixture
async def admin(make_user):
    return await make_user(UserRole.ADMIN)


@pytest.fixture
async def engineer(make_user):
    return await make_user(UserRole.ENGINEER)


@pytest.fixture
async def finance(make_user):
    return await make_user(UserRole.FINANCE)


@pytest.fixture
async def client_record(store, admin):
    return await store.create(CLIENTS, {
        "client_name": "Al Noor Properties",
        "client_address": "Sheikh Zayed Road, Dubai",
        "mobile_number": "+971501112233",
        "telephone_number": None,
        "trn_number": "100200300400500",
        "vat_number": None,
        "created_by": admin["id"],
    })


@pytest.fixture
def make_project(store, client_record, admin):
    async def _make_project(status=ProjectStatus.DRAFT, progress=0):
        return await store.create(PROJECTS, {
            "name": "Villa 12 renovation",
            "description": None,
            "client_id": client_record["id"],
            "site_address": "Street 4, Al Barsha",
            "site_location": "Dubai",
            "status": ProjectStatus(status).value,
            "progress": progress,
            "created_by": admin["id"],
        })
    return _make_project


@pytest.fixture
async def project(make_project):
    return await make_project()


@pytest.fixture
async def test_client(store, blobs):
    """HTTP client against the app with the store and blob store overridden."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_blob_store] = lambda: blobs
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
