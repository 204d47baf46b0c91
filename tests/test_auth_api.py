from datetime import datetime, timedelta, timezone

import jwt

from services.config import JWT_SECRET, JWT_ALGORITHM
from services.database import User

PASSWORD = "Str0ng!Pass"


def register(client, email="new@example.com", password=PASSWORD, name="New User"):
    return client.post("/api/auth/register", json={"email": email, "password": password, "name": name})


def test_register_returns_user_and_token(client):
    response = register(client)
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["user"]["email"] == "new@example.com"
    assert "password" not in body["data"]["user"]
    assert "passwordHash" not in body["data"]["user"]
    payload = jwt.decode(body["data"]["token"], JWT_SECRET, algorithms=[JWT_ALGORITHM])
    assert payload["userId"] == body["data"]["user"]["id"]


def test_register_normalizes_email(client, db):
    register(client, email="Mixed@Example.com")
    assert db.query(User).filter(User.email == "mixed@example.com").count() == 1


def test_register_duplicate_email_conflicts(client):
    register(client)
    response = register(client)
    assert response.status_code == 409
    assert response.json() == {"success": False, "message": "User with this email already exists"}


def test_register_weak_password(client):
    response = register(client, password="alllowercase1")
    assert response.status_code == 400
    assert response.json()["message"].startswith("Password validation failed")


def test_register_invalid_body_lists_fields(client):
    response = client.post("/api/auth/register", json={"email": "not-an-email", "password": "short"})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation error"
    assert {e["field"] for e in body["errors"]} == {"email", "password"}


def test_login(client):
    register(client)
    response = client.post("/api/auth/login", json={"email": "new@example.com", "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["data"]["token"]


def test_login_wrong_password_and_unknown_email_look_the_same(client):
    register(client)
    wrong = client.post("/api/auth/login", json={"email": "new@example.com", "password": "Wr0ng!Pass"})
    unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"success": False, "message": "Invalid credentials"}


def test_profile_requires_token(client):
    response = client.get("/api/auth/profile")
    assert response.status_code == 401
    assert response.json()["message"] == "Access token is required"


def test_profile_rejects_garbage_token(client):
    response = client.get("/api/auth/profile", headers={"Authorization": "Bearer not.a.jwt"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid token"


def test_profile_rejects_expired_token(client, make_user):
    user, _ = make_user()
    past = datetime.now(timezone.utc) - timedelta(days=1)
    token = jwt.encode({"userId": user.id, "email": user.email, "exp": past}, JWT_SECRET, algorithm=JWT_ALGORITHM)
    response = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["message"] == "Token expired"


def test_get_and_update_profile(client, make_user):
    _, headers = make_user()
    assert client.get("/api/auth/profile", headers=headers).json()["data"]["user"]["name"] == "Owner"

    response = client.put(
        "/api/auth/profile",
        json={"name": "Renamed", "avatar": "https://cdn.example.com/me.png"},
        headers=headers,
    )
    assert response.status_code == 200
    user = response.json()["data"]["user"]
    assert user["name"] == "Renamed"
    assert user["avatar"] == "https://cdn.example.com/me.png"


def test_change_password(client, make_user):
    user, headers = make_user()
    response = client.post(
        "/api/auth/change-password",
        json={"currentPassword": PASSWORD, "newPassword": "N3w!Password"},
        headers=headers,
    )
    assert response.status_code == 200
    login = client.post("/api/auth/login", json={"email": user.email, "password": "N3w!Password"})
    assert login.status_code == 200


def test_change_password_wrong_current(client, make_user):
    _, headers = make_user()
    response = client.post(
        "/api/auth/change-password",
        json={"currentPassword": "Wr0ng!Pass", "newPassword": "N3w!Password"},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Current password is incorrect"


def test_refresh_token(client, make_user):
    user, headers = make_user()
    response = client.post("/api/auth/refresh-token", headers=headers)
    token = response.json()["data"]["token"]
    assert jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])["userId"] == user.id


def test_delete_account_removes_businesses(client, make_user, make_business, db, business_service):
    user, headers = make_user()
    business = make_business(user)
    response = client.delete("/api/auth/account", headers=headers)
    assert response.status_code == 200
    assert business_service.get_by_id(db, business.id) is None
    assert client.get("/api/auth/profile", headers=headers).json()["message"] == "User not found"
