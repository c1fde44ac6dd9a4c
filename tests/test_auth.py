from datetime import timedelta

from auth import create_access_token


def test_register_returns_user_and_token(client):
    res = client.post("/api/auth/register", json={
        "name": "Ravi Patil",
        "username": "Ravi_P",
        "email": "Ravi@Example.com",
        "phone": "+91 98765 43210",
        "password": "secret123",
        "role": "Farmer",
        "profile": {"farmSize": "12 acres", "associatedHHMs": ["nope"]},
    })
    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    user = body["data"]["user"]
    assert user["username"] == "ravi_p"
    assert user["email"] == "ravi@example.com"
    assert user["farmSize"] == "12 acres"
    assert "associatedHHMs" not in user
    assert "passwordHash" not in user
    assert body["data"]["token"]


def test_register_role_defaults(make_user):
    hhm, _ = make_user("HHM")
    factory, _ = make_user("Factory")
    worker, _ = make_user("Worker")
    assert hhm["associatedFactories"] == []
    assert factory["associatedHHMs"] == []
    assert worker["availability"] == "Available"


def test_register_rejects_bad_fields(client):
    base = {"name": "A", "username": "abc", "email": "a@b.co", "phone": "12345", "password": "secret123", "role": "Farmer"}
    for field, value in [("username", "ab"), ("email", "not-an-email"), ("phone", "12ab"),
                         ("password", "123"), ("role", "Admin")]:
        res = client.post("/api/auth/register", json={**base, field: value})
        assert res.status_code == 400, field
        assert res.json()["success"] is False


def test_register_missing_field_is_validation_error(client):
    res = client.post("/api/auth/register", json={"name": "A"})
    assert res.status_code == 400
    assert res.json()["message"] == "Validation failed"
    assert res.json()["errors"]


def test_register_duplicate_fields_conflict(client, make_user):
    make_user("Farmer", username="taken")
    res = client.post("/api/auth/register", json={
        "name": "B", "username": "other", "email": "taken@example.com",
        "phone": "+1 555 0000", "password": "secret123", "role": "HHM",
    })
    assert res.status_code == 409
    assert res.json()["message"] == "User with this email already exists"

    res = client.post("/api/auth/register", json={
        "name": "B", "username": "TAKEN", "email": "fresh@example.com",
        "phone": "+1 555 0000", "password": "secret123", "role": "HHM",
    })
    assert res.status_code == 409
    assert res.json()["message"] == "User with this username already exists"


def test_login_with_any_identifier(client, make_user):
    user, _ = make_user("Factory", username="mill")
    for identifier in ("mill", "MILL@example.com", user["phone"]):
        res = client.post("/api/auth/login", json={"identifier": identifier, "password": "secret123"})
        assert res.status_code == 200, identifier
        assert res.json()["data"]["user"]["id"] == user["id"]


def test_login_bad_credentials(client, make_user):
    make_user("Farmer", username="farmer_x")
    res = client.post("/api/auth/login", json={"username": "farmer_x", "password": "wrong-pass"})
    assert res.status_code == 401
    assert res.json()["message"] == "Invalid credentials"
    res = client.post("/api/auth/login", json={"username": "ghost", "password": "secret123"})
    assert res.status_code == 401


def test_login_deactivated_account(client, mock_db, make_user):
    user, headers = make_user("Worker", username="idle")
    mock_db["user"].update_one({"id": user["id"]}, {"$set": {"isActive": False}})
    res = client.post("/api/auth/login", json={"username": "idle", "password": "secret123"})
    assert res.status_code == 401
    assert client.get("/api/auth/verify", headers=headers).status_code == 401


def test_verify_token(client, make_user):
    user, headers = make_user("HHM")
    res = client.get("/api/auth/verify", headers=headers)
    assert res.status_code == 200
    assert res.json()["data"]["user"]["id"] == user["id"]


def test_expired_and_invalid_tokens(client, make_user):
    user, _ = make_user("HHM")
    expired = create_access_token({"sub": user["id"], "role": "HHM"}, expires_delta=timedelta(minutes=-5))
    res = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {expired}"})
    assert res.status_code == 401
    assert res.json()["message"] == "Token has expired. Please login again."

    res = client.get("/api/auth/verify", headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 401


def test_role_guard_message(client, make_user):
    _, headers = make_user("Worker")
    res = client.get("/api/farmer/hhms", headers=headers)
    assert res.status_code == 403
    assert res.json()["message"] == "Access denied. Required role: Farmer. Your role: Worker"
