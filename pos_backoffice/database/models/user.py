"""
Staff user model.

Users are owned by the identity service; the back office only reads them to
resolve the bearer token subject and to check who may approve amendments.
"""

import enum

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from pos_backoffice.database.base import BaseModel, create_table_args, str_enum


class UserRole(str, enum.Enum):
    """Staff role enumeration for role-based access control."""

    SALES = "sales"
    MANAGER = "manager"
    ADMIN = "admin"

    def has_permission(self, required_role: "UserRole") -> bool:
        """Check if this role is at least as privileged as ``required_role``."""
        role_hierarchy = {
            UserRole.SALES: 0,
            UserRole.MANAGER: 1,
            UserRole.ADMIN: 2,
        }
        return role_hierarchy[self] >= role_hierarchy[required_role]

    def can_approve_amendments(self) -> bool:
        """Managers and administrators decide pending amendments."""
        return self.has_permission(UserRole.MANAGER)


class User(BaseModel):
    """Store staff member (sales associate, manager or administrator)."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        comment="Login email address",
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)

    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    role: Mapped[UserRole] = mapped_column(
        str_enum(UserRole, "user_role"),
        nullable=False,
        default=UserRole.SALES,
        comment="Staff role for authorization",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Inactive accounts cannot authenticate",
    )

    __table_args__ = (create_table_args(comment="Back office staff accounts"),)
