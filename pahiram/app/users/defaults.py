"""
Defaults applied to a user on their first login.

APCIS does not know about Pahiram roles, so a brand-new local user gets
the configured default role and no department.
"""

from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Course, Role


class NewUserDefaults(BaseModel):
    """Typed defaults merged into a new user; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_role_id: int
    department_id: Optional[int]


class DefaultsPolicy(Protocol):
    async def default_data(self, session: AsyncSession, course: Course) -> NewUserDefaults:
        ...


class RoleDefaultsPolicy:
    """Assign `role_name` to every new user, regardless of course."""

    def __init__(self, role_name: str = "BORROWER"):
        self.role_name = role_name

    async def default_data(self, session: AsyncSession, course: Course) -> NewUserDefaults:
        result = await session.execute(select(Role.id).where(Role.role == self.role_name))
        role_id = result.scalar_one_or_none()
        if role_id is None:
            raise LookupError(f"Default role '{self.role_name}' is not seeded")

        return NewUserDefaults(user_role_id=role_id, department_id=None)
