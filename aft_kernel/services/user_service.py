"""
Service layer for users and role assignments.

Returns Actor DTOs, never ORM users.  An actor's role set is the primary
role plus every active additional role.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from aft_kernel.domain.dtos import Actor
from aft_kernel.domain.statuses import Role
from aft_kernel.exceptions import UserNotFoundError, ValidationError
from aft_kernel.logging_config import get_logger
from aft_kernel.models.user import UserModel, UserRoleModel
from aft_kernel.services.base import BaseService

logger = get_logger("services.user")


class UserService(BaseService[UserModel]):
    """Create users, grant and revoke roles, resolve actors."""

    def _get(self, user_id: UUID) -> UserModel:
        user = self.session.get(UserModel, user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user

    def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        primary_role: Role | str,
        additional_roles: tuple[Role | str, ...] = (),
        user_id: UUID | None = None,
    ) -> Actor:
        if not email or "@" not in email:
            raise ValidationError("email", "must be an email address")
        role = Role(primary_role)
        existing = self.session.execute(
            select(UserModel).where(UserModel.email == email)
        ).scalar_one_or_none()
        if existing is not None:
            raise ValidationError("email", f"'{email}' is already registered")

        user = UserModel(
            email=email,
            first_name=first_name,
            last_name=last_name,
            primary_role=role.value,
            is_active=True,
            created_at=self.clock.now(),
        )
        if user_id is not None:
            user.id = user_id
        self.session.add(user)
        self.session.flush()

        for extra_role in additional_roles:
            self.assign_role(user.id, extra_role)

        logger.info(
            "user_created",
            extra={"user_id": str(user.id), "primary_role": role.value},
        )
        return user.to_actor()

    def assign_role(
        self,
        user_id: UUID,
        role: Role | str,
        assigned_by: UUID | None = None,
    ) -> Actor:
        """Grant an additional role.  Re-granting a revoked role reactivates it."""
        user = self._get(user_id)
        role = Role(role)
        assignment = next(
            (a for a in user.role_assignments if a.role == role.value), None,
        )
        if assignment is None:
            user.role_assignments.append(
                UserRoleModel(
                    role=role.value,
                    is_active=True,
                    assigned_by=assigned_by,
                    assigned_at=self.clock.now(),
                )
            )
        else:
            assignment.is_active = True
            assignment.assigned_by = assigned_by
            assignment.assigned_at = self.clock.now()
        self.session.flush()
        logger.info(
            "role_assigned",
            extra={"user_id": str(user_id), "role": role.value},
        )
        return user.to_actor()

    def revoke_role(self, user_id: UUID, role: Role | str) -> Actor:
        """Deactivate an additional role.  The primary role cannot be revoked."""
        user = self._get(user_id)
        role = Role(role)
        if user.primary_role == role.value:
            raise ValidationError("role", "the primary role cannot be revoked")
        for assignment in user.role_assignments:
            if assignment.role == role.value:
                assignment.is_active = False
        self.session.flush()
        logger.info(
            "role_revoked",
            extra={"user_id": str(user_id), "role": role.value},
        )
        return user.to_actor()

    def get_actor(self, user_id: UUID) -> Actor:
        """Resolve an active user to an Actor."""
        user = self._get(user_id)
        if not user.is_active:
            raise UserNotFoundError(str(user_id))
        return user.to_actor()

    def find_actor(self, user_id: UUID | None) -> Actor | None:
        if user_id is None:
            return None
        user = self.session.get(UserModel, user_id)
        if user is None or not user.is_active:
            return None
        return user.to_actor()

    def require_role_holder(self, user_id: UUID, role: Role, field: str) -> Actor:
        """
        Resolve ``user_id`` and check it holds ``role``.

        Raises:
            UserNotFoundError: no such active user.
            ValidationError: the user does not hold ``role``; ``field`` names
                the input that referenced them.
        """
        actor = self.get_actor(user_id)
        if not actor.holds(role):
            raise ValidationError(field, f"user does not hold the '{role.value}' role")
        return actor

    def deactivate(self, user_id: UUID) -> None:
        user = self._get(user_id)
        user.is_active = False
        self.session.flush()
        logger.info("user_deactivated", extra={"user_id": str(user_id)})
