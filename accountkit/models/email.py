"""Email model — an address tied to a user, tagged with the provider it came from."""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from accountkit.models.base import Base, IntegerPrimaryKeyMixin, TimestampMixin


class Email(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "emails"

    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False, index=True)

    # "credentials" | "google" | "github" | ...
    provider: Mapped[str] = mapped_column(String(30), nullable=False, default="credentials")

    # Only set for provider == "credentials"
    password: Mapped[str | None] = mapped_column(Text, nullable=True)

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user: Mapped["User"] = relationship("User", back_populates="emails")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Email {self.email!r} provider={self.provider!r}>"
