"""Account model — an OAuth grant linked to a user.

Access and refresh tokens are stored Fernet-encrypted (see core/crypto.py).
"""

from __future__ import annotations

from sqlalchemy import BigInteger, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from accountkit.models.base import Base, IntegerPrimaryKeyMixin, TimestampMixin


class Account(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("provider", "provider_account_id", name="uq_account_provider_subject"),
        UniqueConstraint("user_id", "provider", name="uq_account_user_provider"),
    )

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    # Provider's stable user ID (Google "sub", GitHub numeric id)
    provider_account_id: Mapped[str] = mapped_column(String(255), nullable=False)

    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Epoch seconds
    expires_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="accounts")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Account {self.provider}/{self.provider_account_id}>"
