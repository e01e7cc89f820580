"""Seed database with initial data (plans, admin and demo users)."""

import asyncio
import os
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.db import _ensure_async_url
from app.core.security import hash_password
from app.database.plan_repo import PlanRepository
from app.database.user_repo import UserRepository
from app.models import Plan, User
from app.models.billing_enums import BillingCycle, UserRole

PLANS_DATA = [
    {
        "name": "Basic Plan",
        "description": "Perfect for small teams",
        "price": Decimal("9.99"),
        "billing_cycle": BillingCycle.MONTHLY,
        "max_users": 5,
        "features": [
            {"name": "Basic Analytics", "description": "Simple analytics dashboard"},
            {"name": "Email Support", "description": "Email support during business hours"},
            {"name": "5GB Storage", "description": "5GB of data storage"},
        ],
        "trial_days": 7,
        "sort_order": 1,
    },
    {
        "name": "Professional Plan",
        "description": "For growing businesses",
        "price": Decimal("29.99"),
        "billing_cycle": BillingCycle.MONTHLY,
        "max_users": 25,
        "features": [
            {"name": "Advanced Analytics", "description": "Advanced analytics with custom reports"},
            {"name": "Priority Support", "description": "Priority support with faster response times"},
            {"name": "50GB Storage", "description": "50GB of data storage"},
            {"name": "API Access", "description": "Full API access"},
        ],
        "trial_days": 14,
        "sort_order": 2,
    },
    {
        "name": "Enterprise Plan",
        "description": "For large organizations",
        "price": Decimal("99.99"),
        "billing_cycle": BillingCycle.MONTHLY,
        "max_users": 100,
        "features": [
            {"name": "Dedicated Support", "description": "Dedicated account manager"},
            {"name": "Unlimited Storage", "description": "Unlimited data storage"},
            {"name": "SLA Guarantee", "description": "99.9% uptime SLA"},
        ],
        "trial_days": 30,
        "sort_order": 3,
    },
]


async def seed_plans(session: AsyncSession) -> list[Plan]:
    """Create or update the catalogue plans, matched by name."""
    plans: list[Plan] = []
    for plan_data in PLANS_DATA:
        plan = await PlanRepository.get_by_name(session, plan_data["name"])

        if plan:
            for key, value in plan_data.items():
                setattr(plan, key, value)
            print(f"✓ Updated plan: {plan_data['name']}")
        else:
            plan = Plan(**plan_data, currency="USD", is_active=True)
            session.add(plan)
            print(f"✓ Created plan: {plan_data['name']}")
        plans.append(plan)

    await session.commit()
    return plans


async def seed_user(
    session: AsyncSession, email: str, password: str, name: str, role: UserRole = UserRole.USER
) -> User:
    """Create a user unless one with that email already exists."""
    email = email.lower()
    existing_user = await UserRepository.get_by_email(session, email)

    if existing_user:
        print(f"✓ User already exists: {email}")
        return existing_user

    user = User(email=email, password_hash=hash_password(password), name=name, role=role, is_active=True)
    session.add(user)
    await session.commit()
    print(f"✓ Created {role.value}: {email}")
    return user


async def main() -> None:
    """Run all seed operations."""
    print("🌱 Seeding database...")

    engine = create_async_engine(_ensure_async_url(settings.DATABASE_URL), echo=False)
    async_session = async_sessionmaker(engine, expire_on_commit=False)

    async with async_session() as session:
        await seed_plans(session)
        await seed_user(
            session,
            os.environ.get("SEED_ADMIN_EMAIL", "admin@example.com"),
            os.environ.get("SEED_ADMIN_PASSWORD", "Admin123!"),
            "Admin User",
            UserRole.ADMIN,
        )
        await seed_user(session, "user@example.com", "User123!", "John Doe")

    await engine.dispose()

    print("✅ Database seeding completed!")


if __name__ == "__main__":
    asyncio.run(main())
