"""Pytest fixtures for carbon tracker tests."""

from __future__ import annotations

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database
from main import app
from schemas import User

TEST_DB_NAME = "carbon_tracker_test"
TEST_JWT_SECRET = "carbon-tracker-test-signing-secret-0123456789"


@pytest.fixture(autouse=True)
def jwt_secret_env(monkeypatch):
    """Tokens need a signing secret; there is no built-in default."""
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)


@pytest.fixture
def mock_db(monkeypatch):
    """Point the database helpers at an in-memory mongomock database."""
    mongo = mongomock.MongoClient()
    db = mongo[TEST_DB_NAME]
    monkeypatch.setattr(database, "db", db)

    yield db

    mongo.drop_database(TEST_DB_NAME)


@pytest.fixture
def user_id(mock_db) -> ObjectId:
    """Insert a fresh user with a zeroed lifetime aggregate."""
    doc = User(username="tester", password="not-a-real-hash").model_dump(by_alias=True)
    return mock_db["user"].insert_one(doc).inserted_id


@pytest.fixture
def client(mock_db):
    """API client; entering the context runs startup (index creation)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def register(client):
    """Sign up and log in a user, returning (auth headers, user id)."""

    def _register(username: str = "alice", password: str = "s3cret-pass"):
        response = client.post("/signup", json={"username": username, "password": password})
        assert response.status_code == 201, response.text
        token = client.post("/login", json={"username": username, "password": password}).json()["token"]
        return {"Authorization": f"Bearer {token}"}, response.json()["id"]

    return _register
