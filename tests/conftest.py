"""Shared fixtures: temp-file SQLite database, fake Supabase auth, app client.

The app is imported after the environment is pinned: ``souq.config`` reads
it once at import time. Payments run on MockPay so no Stripe account is
needed; Stripe itself is covered in test_payment_adapters.py.
"""

import json
import os

os.environ["PAYMENTS_BACKEND"] = "mock"
os.environ["MOCK_SECRET"] = "test-mock-secret"
os.environ["WEBHOOK_EVENTS_BACKEND"] = "pg"
os.environ["SUPABASE_URL"] = "http://supabase.test"
os.environ["SUPABASE_ANON_KEY"] = "anon-key"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./souq-test.db"
os.environ["AUTO_CREATE_SCHEMA"] = "0"

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine,
)

from souq import server
from souq.auth import SupabaseAuth
from souq.model.db import Base, Product, UserProfile
from souq.server import app, get_auth, get_db

ALICE_ID = "user-alice"
BOB_ID = "user-bob"
ALICE = {"authorization": "Bearer token-alice"}
BOB = {"authorization": "Bearer token-bob"}

USERS = {
    "token-alice": {"id": ALICE_ID, "email": "alice@example.com",
                    "user_metadata": {"full_name": "Alice Seller"}},
    "token-bob": {"id": BOB_ID, "email": "bob@example.com",
                  "user_metadata": {"full_name": "Bob Buyer"}},
}
PASSWORDS = {
    "alice@example.com": ("secret123", "token-alice"),
    "bob@example.com": ("secret123", "token-bob"),
}


def _session(token: str) -> dict:
    return {
        "access_token": token,
        "refresh_token": f"refresh-{token}",
        "expires_in": 3600,
        "token_type": "bearer",
        "user": USERS[token],
    }


def supabase_handler(request: httpx.Request) -> httpx.Response:
    """Minimal GoTrue: password grant, refresh, signup, user, logout."""
    path = request.url.path
    body = json.loads(request.content) if request.content else {}
    bearer = request.headers.get("authorization", "")[len("Bearer "):]

    if path == "/auth/v1/user":
        user = USERS.get(bearer)
        if user is None:
            return httpx.Response(401, json={"msg": "invalid JWT"})
        return httpx.Response(200, json=user)

    if path == "/auth/v1/token":
        grant = request.url.params.get("grant_type")
        if grant == "password":
            entry = PASSWORDS.get(body.get("email"))
            if entry is None or entry[0] != body.get("password"):
                return httpx.Response(400, json={
                    "error": "invalid_grant",
                    "error_description": "Invalid login credentials",
                })
            return httpx.Response(200, json=_session(entry[1]))
        if grant == "refresh_token":
            token = body.get("refresh_token", "")[len("refresh-"):]
            if token not in USERS:
                return httpx.Response(400, json={
                    "error_description": "Invalid Refresh Token",
                })
            return httpx.Response(200, json=_session(token))
        if grant == "pkce":
            if body.get("auth_code") != "good-code":
                return httpx.Response(400, json={"msg": "invalid flow state"})
            return httpx.Response(200, json=_session("token-bob"))

    if path == "/auth/v1/signup":
        if body.get("email") in PASSWORDS:
            return httpx.Response(422, json={"msg": "User already registered"})
        return httpx.Response(200, json={
            "id": "user-new",
            "email": body.get("email"),
            "user_metadata": body.get("data") or {},
        })

    if path == "/auth/v1/logout":
        return httpx.Response(204)

    return httpx.Response(404, json={"msg": "not found"})


@pytest.fixture
async def auth_client():
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(supabase_handler),
    ) as http:
        yield SupabaseAuth(http, "http://supabase.test", "anon-key")


@pytest.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'souq.db'}", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
async def client(test_session_factory, auth_client):
    """App client with DB and Supabase dependencies overridden."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_auth] = lambda: auth_client

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def mock_pay():
    return server.adapter


@pytest.fixture
async def profiles(test_db):
    test_db.add_all([
        UserProfile(id=ALICE_ID, full_name="Alice Seller"),
        UserProfile(id=BOB_ID, full_name="Bob Buyer"),
    ])
    await test_db.commit()


@pytest.fixture
async def product(test_db, profiles):
    """An active 100 USD listing by Alice."""
    p = Product(
        title="Vintage Camera",
        description="Film camera in working order",
        price=100.0,
        category="Electronics",
        condition="Good",
        images=["https://img.test/camera.jpg"],
        seller_id=ALICE_ID,
    )
    test_db.add(p)
    await test_db.commit()
    return p


@pytest.fixture
async def sold_product(test_db, profiles):
    p = Product(
        title="Old Guitar", price=50.0, category="Home",
        condition="Used", seller_id=ALICE_ID, status="sold",
    )
    test_db.add(p)
    await test_db.commit()
    return p
