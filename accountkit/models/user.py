"""User model — one identity owning its login methods."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from accountkit.models.base import Base, IntegerPrimaryKeyMixin, TimestampMixin

CREDENTIALS = "credentials"


class User(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "users"

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ── Lockout bookkeeping ──────────────────────────────────────────────────
    failed_login_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    last_failed_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lockout_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # NULL = not scheduled
    deletion_scheduled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    # Relationships (eager so policy checks never lazy-load under asyncio)
    emails: Mapped[list["Email"]] = relationship(  # noqa: F821
        "Email",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Email.id",
    )
    accounts: Mapped[list["Account"]] = relationship(  # noqa: F821
        "Account",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Account.id",
    )

    @property
    def credentials_email(self) -> "Email | None":  # noqa: F821
        return next((e for e in self.emails if e.provider == CREDENTIALS), None)

    @property
    def method_count(self) -> int:
        """Credentials emails plus OAuth accounts."""
        return sum(1 for e in self.emails if e.provider == CREDENTIALS) + len(self.accounts)

    def __repr__(self) -> str:
        return f"<User {self.username!r} id={self.id!r}>"
