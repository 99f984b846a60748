"""
Shared fixtures.

The environment is set before the application modules are imported: cheap
bcrypt rounds, development mode, no SMTP server and a rate limit high enough
that it never interferes. Each test gets a fresh in-memory MongoDB.
"""
import os

os.environ["ENVIRONMENT"] = "development"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_MAX"] = "100000"
os.environ["EMAIL_HOST"] = ""

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import ensure_indexes, get_db
from repositories import TourRepository, UserRepository
from security import hash_password, issue_session_token

PASSWORD = "pass1234"


@pytest.fixture
def db():
    database = mongomock.MongoClient().tours_test
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.state.limiter.reset()
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="user", password=PASSWORD, **fields):
        counter["n"] += 1
        data = {
            "name": f"Test User {counter['n']}",
            "email": f"user{counter['n']}@example.com",
            "password_hash": hash_password(password),
            "role": role,
        }
        data.update(fields)
        return UserRepository(db).create(data)

    return _make


@pytest.fixture
def make_tour(db):
    counter = {"n": 0}

    def _make(**fields):
        counter["n"] += 1
        data = {
            "name": f"The Test Tour Number {counter['n']:03d}",
            "duration": 7,
            "max_group_size": 10,
            "difficulty": "easy",
            "price": 500,
            "summary": "A tour used by the tests",
            "image_cover": "tour-cover.jpg",
        }
        data.update(fields)
        return TourRepository(db).create(data)

    return _make


def bearer(user):
    return {"Authorization": f"Bearer {issue_session_token(user['id'])}"}


@pytest.fixture
def auth():
    return bearer
