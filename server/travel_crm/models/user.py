"""Staff user model definition."""

from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Boolean, String
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, TimestampMixin


class UserRole(str, Enum):
    """Staff role enumeration."""
    ADMIN = "ADMIN"
    SALES = "SALES"
    CS = "CS"
    MANAGER = "MANAGER"


class User(TimestampMixin, Base):
    """Internal staff account. Only the authentication boundary reads it."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PgUUID(as_uuid=True), primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(191), nullable=False)
    email: Mapped[str] = mapped_column(String(191), nullable=False, unique=True, index=True)
    role: Mapped[UserRole] = mapped_column(String(20), nullable=False, default=UserRole.SALES)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role={self.role})>"
