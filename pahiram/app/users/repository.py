"""
Course and user persistence.

Creation is "insert, and on a unique violation re-fetch": two concurrent
first logins for the same apc_id (or course acronym) both try the insert,
the loser's SAVEPOINT rolls back and it reads the winner's row.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Course, Department, Role, User
from app.exceptions import PersistenceError
from app.models import ApcisCourse, ApcisUser
from app.users.defaults import DefaultsPolicy, NewUserDefaults

logger = logging.getLogger(__name__)


class UserRepository:

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Courses
    # =========================================================================

    async def find_course(self, acronym: str) -> Optional[Course]:
        result = await self.session.execute(
            select(Course).where(Course.course_acronym == acronym)
        )
        return result.scalar_one_or_none()

    async def find_or_create_course(self, remote_course: ApcisCourse) -> Course:
        """
        Return the course with this acronym, creating it from the APCIS
        fields if absent. Existing courses are never updated.

        Raises:
            PersistenceError: If the insert fails for a reason other than
                              a concurrent insert of the same acronym
        """
        course = await self.find_course(remote_course.course_acronym)
        if course:
            return course

        try:
            async with self.session.begin_nested():
                course = Course(**remote_course.model_dump())
                self.session.add(course)
            return course
        except IntegrityError as e:
            course = await self.find_course(remote_course.course_acronym)
            if course:
                logger.info(
                    "Course created concurrently, reusing it",
                    extra={"course_acronym": remote_course.course_acronym},
                )
                return course
            raise PersistenceError(f"Course insert failed: {e.orig}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Course insert failed: {e}") from e

    # =========================================================================
    # Users
    # =========================================================================

    async def find_user(self, apc_id: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.apc_id == apc_id))
        return result.scalar_one_or_none()

    async def user_exists(self, apc_id: str) -> bool:
        result = await self.session.execute(select(User.id).where(User.apc_id == apc_id))
        return result.scalar_one_or_none() is not None

    async def create_user(self, remote_user: ApcisUser, defaults: NewUserDefaults) -> User:
        """
        Insert a user from the APCIS record plus local defaults.

        Raises:
            PersistenceError: On any constraint violation, including a
                              duplicate apc_id
        """
        user = User(
            apc_id=remote_user.apc_id,
            first_name=remote_user.first_name,
            last_name=remote_user.last_name,
            email=remote_user.email,
            user_role_id=defaults.user_role_id,
            department_id=defaults.department_id,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(user)
        except SQLAlchemyError as e:
            raise PersistenceError(f"User insert failed: {e}") from e
        return user

    async def find_or_create_user(
        self,
        remote_user: ApcisUser,
        course: Course,
        defaults_policy: DefaultsPolicy,
    ) -> User:
        """
        Return the local user for this apc_id, creating it on first login.

        Returning users are returned as stored; their profile is not
        refreshed from APCIS.
        """
        user = await self.find_user(remote_user.apc_id)
        if user:
            return user

        defaults = await defaults_policy.default_data(self.session, course)
        try:
            user = await self.create_user(remote_user, defaults)
        except PersistenceError:
            user = await self.find_user(remote_user.apc_id)
            if user is None:
                raise
            logger.info(
                "User created concurrently, reusing it",
                extra={"user_id": user.id},
            )
            return user

        logger.info("Created local user on first login", extra={"user_id": user.id})
        return user

    # =========================================================================
    # Lookup tables
    # =========================================================================

    async def role_name(self, role_id: int) -> str:
        """Raises LookupError if the role does not exist."""
        result = await self.session.execute(select(Role.role).where(Role.id == role_id))
        name = result.scalar_one_or_none()
        if name is None:
            raise LookupError(f"Role {role_id} not found")
        return name

    async def department_code(self, department_id: Optional[int]) -> Optional[str]:
        if department_id is None:
            return None
        result = await self.session.execute(
            select(Department.department_acronym).where(Department.id == department_id)
        )
        code = result.scalar_one_or_none()
        if code is None:
            raise LookupError(f"Department {department_id} not found")
        return code
