"""Access policy: ownership or admin role decides who may touch a resource."""

import uuid
from dataclasses import dataclass

from app.models.billing_enums import UserRole
from app.utils.exceptions import ForbiddenException


@dataclass(frozen=True)
class ActorIdentity:
    """The authenticated identity behind a request, as encoded at token issuance."""

    id: uuid.UUID
    email: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def is_owner(actor: ActorIdentity, owner_id: uuid.UUID) -> bool:
    return actor.id == owner_id


def can_access(actor: ActorIdentity, owner_id: uuid.UUID) -> bool:
    return actor.is_admin or is_owner(actor, owner_id)


def ensure_access(actor: ActorIdentity, owner_id: uuid.UUID) -> None:
    if not can_access(actor, owner_id):
        raise ForbiddenException("Access denied")
