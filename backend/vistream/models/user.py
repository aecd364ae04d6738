"""User model — identity and role, owned by the auth service."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from vistream.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

ROLE_ADMIN = "admin"
ROLE_AFFILIATE = "user"
ROLE_CUSTOMER = "customer"
VALID_ROLES: frozenset[str] = frozenset({ROLE_ADMIN, ROLE_AFFILIATE, ROLE_CUSTOMER})


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A Vistream account. Role ``user`` is an affiliate who refers customers."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(20), default=ROLE_CUSTOMER, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    affiliation_code: Mapped[str | None] = mapped_column(String(4), unique=True, nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"
