# tests/conftest.py
import os
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

os.environ.setdefault("FOODDAY_SCHEDULER_ENABLED", "false")
os.environ.setdefault("FOODDAY_USE_MONGO", "false")
os.environ.setdefault("FOODDAY_LOG_FORMAT", "text")

import jwt
import pytest
from httpx import AsyncClient, ASGITransport
from asgi_lifespan import LifespanManager

import foodday.deps as deps
from foodday.core.config import Settings, settings
from foodday.deps import build_engine
from foodday.models.schemas import ListingCreate, Organization
from foodday.repos.inmemory import InMemoryRepo

TZ = ZoneInfo("America/Sao_Paulo")

# merchant in central Sao Paulo; one degree of latitude is ~111.2 km
MERCHANT_LOC = {"lat": -23.5505, "lng": -46.6333}

def north_of(point: dict, meters: float) -> dict:
    return {"lat": point["lat"] + meters / 111_195.0, "lng": point["lng"]}

def local(hour: int, minute: int) -> datetime:
    return datetime(2026, 10, 19, hour, minute, tzinfo=TZ)


@pytest.fixture(scope="session")
def anyio_backend():
    # keep AnyIO on asyncio for the whole test session
    return "asyncio"

@pytest.fixture
def test_settings():
    return Settings(
        timezone="America/Sao_Paulo",
        max_match_radius_m=10_000,
        registry_timeout_s=0.5,
        donation_grace_minutes=120,
        sweep_interval_s=0.01,
        scheduler_enabled=False,
    )

@pytest.fixture
def repo():
    return InMemoryRepo()

@pytest.fixture
def engine(repo, test_settings):
    return build_engine(repo, test_settings)

@pytest.fixture
def add_org(repo):
    async def _add(org_id: str, location=None, active: bool = True, name: str | None = None):
        org = Organization(id=org_id, name=name or f"ONG {org_id}", location=location, active=active)
        return await repo.insert_organization(org.to_doc())
    return _add

@pytest.fixture
def make_listing(engine):
    async def _make(merchant_id: str = "m1", **overrides):
        data = {
            "name": "Pao frances",
            "category": "Bakery",
            "original_price": 10.0,
            "promo_price": 4.0,
            "quantity": 5,
            "donation_eligible": True,
            "cutoff_time": "20:00",
            "location": MERCHANT_LOC,
            "store_name": "Padaria Central",
        }
        data.update(overrides)
        return await engine.listings.create_listing(merchant_id, ListingCreate(**data))
    return _make

@pytest.fixture
async def test_client(engine, monkeypatch):
    monkeypatch.setattr(deps, "_engine_singleton", engine)
    from foodday.main import app
    async with LifespanManager(app):
        transport = ASGITransport(app=app, raise_app_exceptions=True)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

def make_token(sub: str, role: str, minutes: int = 30) -> str:
    # stands in for the identity service that issues real tokens
    payload = {"sub": sub, "role": role, "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes)}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)

def auth_headers(sub: str, role: str) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, role)}"}
