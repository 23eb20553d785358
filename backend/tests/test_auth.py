"""
Tests for accounts: registration, login, roles and the current account.
"""

import pytest
from httpx import AsyncClient

from gatehouse.models.user import User

PASSWORD = "securepassword123"


async def register(client: AsyncClient, email: str, username: str, **extra):
    return await client.post(
        "/api/v1/auth/register",
        json={"email": email, "username": username, "password": PASSWORD, **extra},
    )


async def login(client: AsyncClient, email: str, password: str):
    return await client.post("/api/v1/auth/login", json={"email": email, "password": password})


@pytest.mark.asyncio
async def test_register_defaults_to_attendee(client: AsyncClient):
    response = await register(client, "New@Example.com", "newuser", full_name="New User")
    assert response.status_code == 201
    body = response.json()
    assert body["email"] == "new@example.com"
    assert body["role"] == "attendee"
    assert body["full_name"] == "New User"
    assert "hashed_password" not in body


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["organizer", "staff"])
async def test_register_with_role(client: AsyncClient, role):
    response = await register(client, f"{role}@example.com", f"{role}_account", role=role)
    assert response.status_code == 201
    assert response.json()["role"] == role


@pytest.mark.asyncio
async def test_register_unknown_role(client: AsyncClient):
    response = await register(client, "boss@example.com", "boss", role="admin")
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize("email,username", [
    ("TEST@example.com", "someone_else"),
    ("fresh@example.com", "testuser"),
])
async def test_register_taken(client: AsyncClient, test_user, email, username):
    """Email (case-insensitively) and username are both unique."""
    response = await register(client, email, username)
    assert response.status_code == 409
    assert response.json()["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_register_short_password(client: AsyncClient):
    response = await client.post("/api/v1/auth/register", json={
        "email": "weak@example.com", "username": "weakuser", "password": "short",
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_issues_bearer_token(client: AsyncClient, test_user):
    response = await login(client, "Test@Example.COM", "testpassword123")
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] > 0

    me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.json()["id"] == test_user.id


@pytest.mark.asyncio
@pytest.mark.parametrize("email,password", [
    ("test@example.com", "wrongpassword"),
    ("nobody@example.com", "testpassword123"),
])
async def test_login_rejected(client: AsyncClient, test_user, email, password):
    """Unknown email and wrong password are indistinguishable."""
    response = await login(client, email, password)
    assert response.status_code == 401
    assert response.json() == {"code": "INVALID_CREDENTIALS", "detail": "Invalid email or password"}


@pytest.mark.asyncio
async def test_login_inactive_account(client: AsyncClient, test_user, session_factory):
    async with session_factory() as db:
        user = await db.get(User, test_user.id)
        user.is_active = False
        await db.commit()

    response = await login(client, "test@example.com", "testpassword123")
    assert response.status_code == 403
    assert response.json()["code"] == "ACCOUNT_DISABLED"


@pytest.mark.asyncio
async def test_me_returns_current_account(client: AsyncClient, staff_headers):
    response = await client.get("/api/v1/auth/me", headers=staff_headers)
    assert response.status_code == 200
    assert response.json()["role"] == "staff"
    assert response.json()["full_name"] == "Door Staff"


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer not-a-jwt"}])
async def test_me_requires_valid_token(client: AsyncClient, headers):
    response = await client.get("/api/v1/auth/me", headers=headers)
    assert response.status_code == 401
