"""Ring-based authorization.

Every role carries a ``permission_ring``; lower numbers are more privileged
(0 is admin). An action is allowed when the caller's ring is less than or
equal to the ceiling configured for that action in ``config.PERMISSION_RINGS``.
The check runs before an operation, never inside it.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import config
from .database import unit_of_work
from .errors import NotFoundError, ValidationError
from .models import Role, User

logger = logging.getLogger(__name__)


@dataclass
class AccessDecision:
    allowed: bool
    ring: Optional[int]
    user: Optional[User]


def required_ring(action: str) -> int:
    try:
        return config.PERMISSION_RINGS[action]
    except KeyError:
        raise ValueError(f"no permission ring configured for action {action!r}") from None


def check_permission(db: Session, user_id: int, action: str) -> AccessDecision:
    ceiling = required_ring(action)
    user = db.get(User, user_id)
    if user is None or user.role is None:
        return AccessDecision(allowed=False, ring=None, user=user)
    ring = user.role.permission_ring
    return AccessDecision(allowed=ring <= ceiling, ring=ring, user=user)


def seed_defaults(db: Session) -> None:
    """Creates missing default roles, and the bootstrap admin when there are no users yet."""
    with unit_of_work(db, "seed roles"):
        existing = set(db.scalars(select(Role.name)))
        for name, ring, description in config.DEFAULT_ROLES:
            if name not in existing:
                db.add(Role(name=name, permission_ring=ring, description=description))
                logger.info("Seeded role %s (ring %s)", name, ring)
        db.flush()

        if db.scalars(select(User.id).limit(1)).first() is None:
            admin_role = min(db.scalars(select(Role)), key=lambda role: role.permission_ring)
            db.add(User(username=config.BOOTSTRAP_ADMIN, role=admin_role))
            logger.info("Created bootstrap user %s", config.BOOTSTRAP_ADMIN)


def list_roles(db: Session) -> List[Role]:
    return list(db.scalars(select(Role).order_by(Role.permission_ring, Role.name)))


def create_role(db: Session, name: str, permission_ring: int, description: str = "") -> Role:
    if isinstance(permission_ring, bool) or not isinstance(permission_ring, int) or permission_ring < 0:
        raise ValidationError("permission_ring must be an integer >= 0")
    name = name.strip()
    with unit_of_work(db, "create role"):
        if db.scalars(select(Role).where(Role.name == name)).first() is not None:
            raise ValidationError(f"role {name!r} already exists")
        role = Role(name=name, permission_ring=permission_ring, description=description)
        db.add(role)
    return role


def create_user(db: Session, username: str, role_name: str, email: Optional[str] = None) -> User:
    with unit_of_work(db, "create user"):
        role = db.scalars(select(Role).where(Role.name == role_name)).first()
        if role is None:
            raise NotFoundError("role", role_name)
        if db.scalars(select(User).where(User.username == username)).first() is not None:
            raise ValidationError(f"username {username!r} already taken")
        user = User(username=username, email=email, role=role)
        db.add(user)
    return user
