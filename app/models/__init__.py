from app.models.base import Base
from app.models.models import User
from app.models.plan import Plan
from app.models.subscription import Subscription
from app.models.payment import Payment

__all__ = ["Base", "User", "Plan", "Subscription", "Payment"]
