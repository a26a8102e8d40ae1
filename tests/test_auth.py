from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient
from jose import jwt

from app.config import settings
from app.utils import create_access_token
from tests.conftest import bearer, make_user_payload


@pytest.mark.asyncio
async def test_first_registered_user_is_the_only_admin(client: AsyncClient, register_user):
    """Only the very first registration receives the admin flag"""
    first = await register_user()
    second = await register_user()
    third = await register_user()

    assert first["user"]["isAdmin"] is True
    assert second["user"]["isAdmin"] is False
    assert third["user"]["isAdmin"] is False

    response = await client.get("/api/users", headers=first["headers"])
    admins = [u for u in response.json()["users"] if u["isAdmin"]]
    assert [u["id"] for u in admins] == [first["user"]["id"]]


@pytest.mark.asyncio
async def test_register_returns_user_without_password(client: AsyncClient):
    payload = make_user_payload()
    response = await client.post("/api/auth/register", json=payload)

    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["token"]
    assert data["user"]["email"] == payload["email"].lower()
    assert data["user"]["firstName"] == payload["firstName"]
    assert data["user"]["isActive"] is True
    assert data["user"]["registrationSource"] == "web"
    assert not any("password" in key.lower() for key in data["user"])


@pytest.mark.asyncio
async def test_register_duplicate_email_ignores_case_and_whitespace(client: AsyncClient, register_user):
    existing = await register_user(email="river.keeper@example.com")

    response = await client.post(
        "/api/auth/register",
        json=make_user_payload(email="  River.Keeper@EXAMPLE.com "),
    )

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "User with this email already exists"}
    assert existing["user"]["email"] == "river.keeper@example.com"


@pytest.mark.asyncio
async def test_register_reports_every_invalid_field(client: AsyncClient):
    response = await client.post(
        "/api/auth/register",
        json={"email": "not-an-email", "password": "123", "firstName": "", "lastName": "   "},
    )

    assert response.status_code == 400
    data = response.json()
    assert data["success"] is False
    assert {e["field"] for e in data["errors"]} == {"email", "password", "firstName", "lastName"}


@pytest.mark.asyncio
async def test_register_missing_fields(client: AsyncClient):
    response = await client.post("/api/auth/register", json={"email": "solo@example.com"})

    assert response.status_code == 400
    assert {e["field"] for e in response.json()["errors"]} == {"password", "firstName", "lastName"}


@pytest.mark.asyncio
async def test_register_checks_confirm_password_when_given(client: AsyncClient):
    mismatch = make_user_payload(confirmPassword="something-else")
    response = await client.post("/api/auth/register", json=mismatch)

    assert response.status_code == 400
    assert [e["field"] for e in response.json()["errors"]] == ["confirmPassword"]

    match = make_user_payload()
    match["confirmPassword"] = match["password"]
    response = await client.post("/api/auth/register", json=match)
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, register_user):
    registered = await register_user()

    response = await client.post(
        "/api/auth/login",
        json={"email": registered["payload"]["email"], "password": registered["payload"]["password"]},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["user"]["id"] == registered["user"]["id"]
    last_login = datetime.fromisoformat(data["user"]["lastLogin"])
    assert last_login >= datetime.fromisoformat(registered["user"]["lastLogin"])

    me = await client.get("/api/auth/me", headers=bearer(data["token"]))
    assert me.status_code == 200
    assert me.json()["user"]["email"] == registered["user"]["email"]


@pytest.mark.asyncio
async def test_login_failures_are_indistinguishable(client: AsyncClient, register_user):
    """Wrong password and unknown email must look exactly the same"""
    registered = await register_user()

    wrong_password = await client.post(
        "/api/auth/login",
        json={"email": registered["payload"]["email"], "password": "not-the-password"},
    )
    unknown_email = await client.post(
        "/api/auth/login",
        json={"email": "nobody@example.com", "password": "not-the-password"},
    )

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {
        "success": False,
        "message": "Invalid credentials",
    }


@pytest.mark.asyncio
async def test_login_requires_password(client: AsyncClient):
    response = await client.post("/api/auth/login", json={"email": "someone@example.com", "password": ""})

    assert response.status_code == 400
    assert [e["field"] for e in response.json()["errors"]] == ["password"]


@pytest.mark.asyncio
async def test_me_without_token(client: AsyncClient):
    response = await client.get("/api/auth/me")

    assert response.status_code == 401
    assert response.json()["message"] == "Access token required"


@pytest.mark.asyncio
async def test_me_with_malformed_token(client: AsyncClient):
    response = await client.get("/api/auth/me", headers=bearer("definitely.not.ajwt"))

    assert response.status_code == 403
    assert response.json()["message"] == "Invalid or expired token"


@pytest.mark.asyncio
async def test_me_with_expired_token(client: AsyncClient, admin):
    token = create_access_token(admin["user"]["id"], admin["user"]["email"], expires_delta=timedelta(minutes=-5))

    response = await client.get("/api/auth/me", headers=bearer(token))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_me_with_foreign_signature(client: AsyncClient, admin):
    token = jwt.encode(
        {"userId": admin["user"]["id"], "email": admin["user"]["email"]},
        "some-other-secret",
        algorithm=settings.ALGORITHM,
    )

    response = await client.get("/api/auth/me", headers=bearer(token))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_me_after_account_deleted(client: AsyncClient, admin, member):
    await client.delete(f"/api/admin/users/{member['user']['id']}", headers=admin["headers"])

    response = await client.get("/api/auth/me", headers=member["headers"])

    assert response.status_code == 404
    assert response.json()["message"] == "User not found"


@pytest.mark.asyncio
async def test_logout_does_not_revoke_token(client: AsyncClient, admin):
    response = await client.post("/api/auth/logout", headers=admin["headers"])
    assert response.status_code == 200
    assert response.json()["success"] is True

    me = await client.get("/api/auth/me", headers=admin["headers"])
    assert me.status_code == 200


@pytest.mark.asyncio
async def test_logout_requires_token(client: AsyncClient):
    response = await client.post("/api/auth/logout")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_account_activity_is_tracked(client: AsyncClient, repository, register_user):
    registered = await register_user()
    await client.post(
        "/api/auth/login",
        json={"email": registered["payload"]["email"], "password": registered["payload"]["password"]},
    )
    await client.post("/api/auth/logout", headers=registered["headers"])

    stats = await repository.stats()
    assert stats["trackingEvents"] == 3
