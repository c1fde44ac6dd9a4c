import itertools
import os

# cheap hashes keep the suite fast; must be set before auth is imported
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import contracts
import dashboards
import database
import invitations
import jobs
import listings
import main
import notifications
import orders
import users
import workflow

DB_MODULES = [database, auth, users, workflow, notifications, invitations, contracts, listings, orders, jobs, dashboards]

_seq = itertools.count(1)


@pytest.fixture
def mock_db(monkeypatch):
    db = mongomock.MongoClient()["sugarcane_test"]
    for module in DB_MODULES:
        monkeypatch.setattr(module, "db", db)
    return db


@pytest.fixture
def client(mock_db):
    return TestClient(main.app)


@pytest.fixture
def make_user(client):
    """Register a user of the given role; returns (user, auth headers)."""

    def _make(role, username=None, **fields):
        n = next(_seq)
        username = username or f"{role.lower()}{n}"
        payload = {
            "name": fields.pop("name", f"{role} {n}"),
            "username": username,
            "email": f"{username}@example.com",
            "phone": f"+91 {9000000000 + n}",
            "password": "secret123",
            "role": role,
            **fields,
        }
        res = client.post("/api/auth/register", json=payload)
        assert res.status_code == 201, res.json()
        data = res.json()["data"]
        return data["user"], {"Authorization": f"Bearer {data['token']}"}

    return _make
