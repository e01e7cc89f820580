from decimal import Decimal

from app.core.security import verify_password
from app.models.billing_enums import UserRole
from app.schemas.plans import PlanCreateRequest, PlanUpdateRequest
from app.services.plan_service import PlanService
from scripts.seed_data import PLANS_DATA, seed_plans, seed_user


async def test_seed_plans_is_idempotent(db):
    await seed_plans(db)
    await seed_plans(db)

    plans = await PlanService.list_active(db)

    assert [p.name for p in plans] == [p["name"] for p in PLANS_DATA]
    assert plans[0].price == Decimal("9.99")
    assert plans[0].features[0]["name"] == "Basic Analytics"


async def test_seed_user_creates_admin_once(db):
    admin = await seed_user(db, "Admin@Example.com", "Admin123!", "Admin User", UserRole.ADMIN)
    again = await seed_user(db, "admin@example.com", "other", "Someone Else", UserRole.ADMIN)

    assert again.id == admin.id
    assert admin.email == "admin@example.com"
    assert admin.role == UserRole.ADMIN
    assert verify_password("Admin123!", admin.password_hash)


async def test_catalogue_orders_by_sort_order_then_price(db):
    for name, price, order in (("Pro", "29.99", 1), ("Starter", "4.99", 1), ("Legacy", "1.00", 5)):
        await PlanService.create(
            db, PlanCreateRequest(name=name, description=name, price=Decimal(price), sort_order=order)
        )

    plans = await PlanService.list_active(db)

    assert [p.name for p in plans] == ["Starter", "Pro", "Legacy"]


async def test_deactivated_plans_only_in_admin_listing(db):
    plan = await PlanService.create(db, PlanCreateRequest(name="Old", description="Old", price=Decimal("5")))
    await PlanService.deactivate(db, plan.id)

    assert await PlanService.list_active(db) == []
    assert [p.id for p in await PlanService.list_all(db)] == [plan.id]

    revived = await PlanService.update(db, plan.id, PlanUpdateRequest(is_active=True))
    assert revived.is_active is True
