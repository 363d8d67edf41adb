"""
Users Package

Local mirror of APCIS users and courses.

Modules:
- repository: course/user lookup-or-create and lookup-table queries
- defaults: role/department defaults applied to first-time users
"""

from .defaults import NewUserDefaults, RoleDefaultsPolicy
from .repository import UserRepository

__all__ = [
    "NewUserDefaults",
    "RoleDefaultsPolicy",
    "UserRepository",
]
