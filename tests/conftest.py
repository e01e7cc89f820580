"""Shared fixtures: in-memory SQLite database, deterministic gateway, API client."""

import random
from decimal import Decimal
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.deps import get_gateway, get_session_authority
from app.core.access import ActorIdentity
from app.core.db import get_db
from app.core.revocation import TokenRevocationRegistry
from app.core.security import hash_password
from app.database.user_repo import UserRepository
from app.integrations.payment_gateway import SimulatedPaymentGateway
from app.main import app
from app.models import Base, Plan, User
from app.models.billing_enums import BillingCycle, UserRole
from app.services.session_service import SessionAuthority

TEST_API_KEY = "pk_test_key"
TEST_SECRET = "whsec_test_secret"
DEFAULT_PASSWORD = "Password123!"

NO_LATENCY = {
    "charge": (0, 0),
    "refund": (0, 0),
    "create_subscription": (0, 0),
    "cancel_subscription": (0, 0),
    "status": (0, 0),
}


def make_gateway(success_rate: float = 1.0, **kwargs) -> SimulatedPaymentGateway:
    """Simulated gateway with no latency and a fixed outcome."""
    rates = {name: success_rate for name in ("charge", "refund", "create_subscription", "cancel_subscription")}
    return SimulatedPaymentGateway(
        api_key=TEST_API_KEY,
        secret_key=TEST_SECRET,
        success_rates=rates,
        latency_ms=NO_LATENCY,
        rng=random.Random(7),
        **kwargs,
    )


def actor_for(user: User) -> ActorIdentity:
    return ActorIdentity(id=user.id, email=user.email, role=UserRole(user.role))


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return make_gateway()


@pytest.fixture
def authority():
    return SessionAuthority(TokenRevocationRegistry(high_water_mark=1000))


@pytest.fixture
def create_user(db):
    async def _create(
        email: str = "member@example.com",
        role: UserRole = UserRole.USER,
        password: str = DEFAULT_PASSWORD,
        name: Optional[str] = "Member",
    ) -> User:
        return await UserRepository.create(db, email, hash_password(password), name, role)

    return _create


@pytest.fixture
def create_plan(db):
    async def _create(
        name: str = "Basic Plan",
        price: str = "9.99",
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        trial_days: int = 0,
        is_active: bool = True,
        sort_order: int = 0,
    ) -> Plan:
        plan = Plan(
            name=name,
            description=f"{name} description",
            price=Decimal(price),
            currency="USD",
            billing_cycle=billing_cycle,
            max_users=5,
            features=[{"name": "Email Support", "description": "Email support during business hours"}],
            trial_days=trial_days,
            is_active=is_active,
            sort_order=sort_order,
        )
        db.add(plan)
        await db.commit()
        await db.refresh(plan)
        return plan

    return _create


@pytest.fixture
async def client(session_factory, gateway, authority):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_session_authority] = lambda: authority

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(authority):
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {authority.issue(user).access_token}"}

    return _headers
