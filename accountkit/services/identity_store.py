"""Identity store — persistence of users and their login methods.

IdentityStore is the only code that touches the ORM session for the account
tables. Every use case runs inside ``transaction()``: commit on success, full
rollback on any error. Unique constraints are the final arbiter of races; an
``IntegrityError`` raised at flush or commit time surfaces as ConflictError.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from accountkit.core.exceptions import ConflictError, NotFound
from accountkit.core.logging import get_logger
from accountkit.models import Account, Email, User

logger = get_logger(__name__)

_MUTABLE_USER_FIELDS = frozenset({
    "name",
    "username",
    "image",
    "failed_login_attempts",
    "last_failed_login",
    "lockout_until",
    "last_login_at",
    "deletion_scheduled_at",
})

# (markers, field, message). Markers cover PostgreSQL constraint names and
# SQLite "UNIQUE constraint failed: table.column" text; first match wins.
_UNIQUE_VIOLATIONS = (
    (("uq_account_provider_subject", "accounts.provider_account_id"),
     "provider_account_id", "This provider account is already linked"),
    (("uq_account_user_provider", "accounts.user_id"),
     "provider", "Only one account per provider can be linked"),
    (("username",), "username", "Username already exists"),
    (("email",), "email", "Email already exists"),
)


def conflict_from_integrity_error(exc: IntegrityError) -> ConflictError:
    """Name the field behind a unique-constraint failure when the driver says which."""
    text = str(exc.orig).lower()
    for markers, field, message in _UNIQUE_VIOLATIONS:
        if any(marker in text for marker in markers):
            return ConflictError(message, field=field)
    return ConflictError("Resource already exists")


class IdentityStore:
    """Repository for User, Email and Account rows bound to one session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        try:
            yield
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            logger.info("Unique constraint rejected write", error=str(exc.orig))
            raise conflict_from_integrity_error(exc) from exc
        except Exception:
            await self.session.rollback()
            raise

    # ── Lookups ───────────────────────────────────────────────────────────────

    async def get_user(self, user_id: int, for_update: bool = False) -> User:
        """Load a user with emails and accounts, always re-read from the database."""
        query = (
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        user = (await self.session.execute(query)).scalar_one_or_none()
        if user is None:
            raise NotFound("User not found")
        return user

    async def find_user_by_username(self, username: str) -> User | None:
        result = await self.session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def find_user_by_email(self, address: str) -> User | None:
        result = await self.session.execute(
            select(User).join(Email, Email.user_id == User.id).where(Email.email == address)
        )
        return result.scalar_one_or_none()

    async def find_email(self, address: str) -> Email | None:
        result = await self.session.execute(select(Email).where(Email.email == address))
        return result.scalar_one_or_none()

    async def find_account(self, provider: str, provider_account_id: str) -> Account | None:
        result = await self.session.execute(
            select(Account).where(
                Account.provider == provider,
                Account.provider_account_id == provider_account_id,
            )
        )
        return result.scalar_one_or_none()

    async def username_taken(self, username: str, exclude_user_id: int | None = None) -> bool:
        query = select(func.count()).select_from(User).where(User.username == username)
        if exclude_user_id is not None:
            query = query.where(User.id != exclude_user_id)
        return (await self.session.execute(query)).scalar_one() > 0

    # ── Mutations ─────────────────────────────────────────────────────────────

    async def create_user(
        self, username: str, name: str | None = None, image: str | None = None
    ) -> User:
        user = User(
            username=username,
            name=name,
            image=image,
            failed_login_attempts=0,
            emails=[],
            accounts=[],
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def update_user(self, user: User, **fields: Any) -> User:
        unknown = set(fields) - _MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Not updatable: {sorted(unknown)}")
        for field, value in fields.items():
            setattr(user, field, value)
        await self.session.flush()
        return user

    async def delete_user(self, user: User) -> None:
        await self.session.delete(user)
        await self.session.flush()

    async def add_email(
        self,
        user: User,
        address: str,
        provider: str,
        password_hash: str | None = None,
    ) -> Email:
        email = Email(email=address, provider=provider, password=password_hash)
        user.emails.append(email)
        await self.session.flush()
        return email

    async def update_email(self, email: Email, /, **fields: Any) -> Email:
        for field, value in fields.items():
            setattr(email, field, value)
        await self.session.flush()
        return email

    async def remove_email(self, user: User, email: Email) -> None:
        user.emails.remove(email)
        await self.session.flush()

    async def add_account(
        self,
        user: User,
        provider: str,
        provider_account_id: str,
        access_token: str | None = None,
        refresh_token: str | None = None,
        expires_at: int | None = None,
    ) -> Account:
        account = Account(
            provider=provider,
            provider_account_id=provider_account_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )
        user.accounts.append(account)
        await self.session.flush()
        return account

    async def update_account(self, account: Account, **fields: Any) -> Account:
        for field, value in fields.items():
            setattr(account, field, value)
        await self.session.flush()
        return account

    async def remove_account(self, user: User, account: Account) -> None:
        user.accounts.remove(account)
        await self.session.flush()
