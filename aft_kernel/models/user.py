"""
User and role-assignment models.

A user's effective role set is the primary role plus every active row in
``aft_user_roles``.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aft_kernel.db.base import Base, UUIDString
from aft_kernel.domain.dtos import Actor
from aft_kernel.domain.statuses import Role


class UserModel(Base):
    """An AFT user."""

    __tablename__ = "aft_users"

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    primary_role: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    role_assignments: Mapped[list["UserRoleModel"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="UserRoleModel.user_id",
        lazy="selectin",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def effective_roles(self) -> frozenset[Role]:
        roles = {Role(self.primary_role)}
        roles.update(
            Role(assignment.role)
            for assignment in self.role_assignments
            if assignment.is_active
        )
        return frozenset(roles)

    def to_actor(self) -> Actor:
        return Actor(
            id=self.id,
            name=self.full_name,
            email=self.email,
            roles=self.effective_roles(),
        )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.primary_role})>"


class UserRoleModel(Base):
    """Additional role granted to a user."""

    __tablename__ = "aft_user_roles"

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_role"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("aft_users.id"), nullable=False, index=True,
    )
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    assigned_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)

    user: Mapped[UserModel] = relationship(
        back_populates="role_assignments", foreign_keys=[user_id],
    )

    def __repr__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"<UserRole {self.role} {state}>"
