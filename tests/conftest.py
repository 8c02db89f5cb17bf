"""Shared fixtures: a fresh in-memory application per test plus actor factories.

Domain tests run inside ``ctx`` (an application context). HTTP tests use
``client`` without an outer context so every request resolves its own actor.
"""
import uuid

import pytest

from app import create_app
from extensions import db
from models import User


@pytest.fixture
def app():
    app = create_app("testing")
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Create an actor in its own context and return its id."""

    def _make(role="citizen", department="General", name=None, **fields):
        with app.app_context():
            user = User(
                name=name or f"{role.title()} {uuid.uuid4().hex[:6]}",
                email=f"{uuid.uuid4().hex}@example.test",
                role=role,
                department=department,
                city=fields.pop("city", "Amravati"),
                **fields,
            )
            db.session.add(user)
            db.session.commit()
            return user.id

    return _make


@pytest.fixture
def users(make_user):
    return {
        "citizen": make_user("citizen", name="Asha"),
        "neighbour": make_user("citizen", name="Ravi"),
        "third": make_user("citizen", name="Meera"),
        "officer": make_user("department", department="Roads & Infrastructure", name="Officer Rao"),
        "water": make_user("department", department="Water Supply", name="Officer Khan"),
        "admin": make_user("admin", name="Admin"),
    }


@pytest.fixture
def actors(ctx, users):
    return {key: db.session.get(User, user_id) for key, user_id in users.items()}


@pytest.fixture
def as_actor():
    def _headers(user_id):
        return {"X-Actor-Id": user_id}

    return _headers


@pytest.fixture
def complaint_data():
    return {
        "title": "Large pothole near bus stand",
        "description": "A deep pothole has formed on the main road near the bus stand.",
        "department": "Roads & Infrastructure",
        "emergency": False,
        "location": {"address": "Bus stand road", "lat": 20.93, "lng": 77.75},
        "tags": ["road", "pothole"],
    }
