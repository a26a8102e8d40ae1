"""
Water Quality Tracker - Test Configuration and Fixtures
"""
import os
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from faker import Faker

# Set testing environment before the app reads its settings
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["PERSISTENCE_MODE"] = "memory"

from app.main import app
from app.database import build_engine, init_db
from app.repository import MemoryRepository, Repository, SQLRepository, get_repository

fake = Faker()

TEST_DATABASE_URL = "sqlite+aiosqlite://"


def make_user_payload(**overrides) -> dict:
    data = {
        "email": fake.unique.email(),
        "password": "testpassword123",
        "firstName": fake.first_name(),
        "lastName": fake.last_name(),
    }
    data.update(overrides)
    return data


def make_reading_payload(**overrides) -> dict:
    data = {
        "time": "09:30",
        "tester": "Jane Smith",
        "location": "North Inlet",
        "temperature": 18.5,
        "turbidity": 3.2,
        "dissolvedOxygen": 7.4,
        "ph": 7.1,
        "fecalColiform": 120,
        "siteNotes": "Clear water, light algae on rocks",
        "weather": "Sunny",
    }
    data.update(overrides)
    return data


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(params=["memory", "sqlite"])
async def repository(request) -> AsyncGenerator[Repository, None]:
    """Fresh, isolated storage for each test, on both backends"""
    if request.param == "memory":
        yield MemoryRepository()
        return

    engine = build_engine(TEST_DATABASE_URL)
    await init_db(engine)
    repo = SQLRepository(engine)
    yield repo
    await repo.close()


@pytest.fixture
async def client(repository: Repository) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with the repository dependency overridden"""
    app.dependency_overrides[get_repository] = lambda: repository

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def register_user(client: AsyncClient):
    """Register a user through the API and return payload, user, token and headers"""
    async def _register(**overrides) -> dict:
        payload = make_user_payload(**overrides)
        response = await client.post("/api/auth/register", json=payload)
        assert response.status_code == 201, response.text
        data = response.json()
        return {
            "payload": payload,
            "user": data["user"],
            "token": data["token"],
            "headers": bearer(data["token"]),
        }
    return _register


@pytest.fixture
async def admin(register_user) -> dict:
    """The first registered user, who becomes admin"""
    return await register_user()


@pytest.fixture
async def member(admin: dict, register_user) -> dict:
    """A regular user registered after the admin"""
    return await register_user()


@pytest.fixture
def reading_payload() -> dict:
    return make_reading_payload()
