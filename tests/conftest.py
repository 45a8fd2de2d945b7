"""Pytest configuration and fixtures."""
import itertools
import os
from types import SimpleNamespace

# Point the app at in-memory SQLite before anything reads the settings.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

import models  # noqa: E402,F401
from db import build_engine, engine  # noqa: E402
from main import app  # noqa: E402
from models import NgoDetails, User  # noqa: E402
from routers.auth import create_access_token, hash_password  # noqa: E402

WINTER_COATS = {
    "name": "Winter Coats",
    "category": "clothing",
    "conditions": "good",
    "delivery_option": "pickup",
    "location": "City X",
    "description": "10 coats",
}


@pytest.fixture(autouse=True)
def reset_database():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def file_engine(tmp_path):
    """A file-backed SQLite database whose sessions get their own connections."""
    file_engine = build_engine(f"sqlite:///{tmp_path / 'needyconnect.db'}")
    SQLModel.metadata.create_all(file_engine)
    yield file_engine
    file_engine.dispose()


@pytest.fixture
def create_user():
    """Insert a user directly and return its id, credentials and auth headers."""
    counter = itertools.count(1)

    def _create(type="donor", status="active", name=None, password="secret123", bind=None):
        n = next(counter)
        with Session(bind or engine) as session:
            user = User(
                name=name or f"{type.title()} {n}",
                email=f"{type}{n}@example.org",
                password_hash=hash_password(password),
                type=type,
                status=status,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
            if type == "ngo":
                session.add(
                    NgoDetails(
                        ngo_id=user.id,
                        registration_number=f"REG-{n:03d}",
                        description="Helping people in need",
                        category="welfare",
                    )
                )
                session.commit()
            token = create_access_token(user)
            return SimpleNamespace(
                id=user.id,
                email=user.email,
                password=password,
                type=type,
                token=token,
                headers={"Authorization": f"Bearer {token}"},
            )

    return _create


@pytest.fixture
def create_donation(client):
    """Create a donation through the API as ``donor`` and return its id."""

    def _create(donor, **overrides):
        body = {**WINTER_COATS, **overrides}
        response = client.post("/donations", json=body, headers=donor.headers)
        assert response.status_code == 201, response.text
        return response.json()["donationId"]

    return _create
