"""Auth orchestrator — the use cases every web or API layer calls into.

Each public method is one unit of work on the session: it commits when it
returns and rolls back entirely when it raises. Failed password checks are
the exception to "raise means nothing changed": the lockout counters are
committed first and the error is raised afterwards.

Returning from a scheduled deletion requires explicit confirmation: signing
in to a PendingDeletion account raises PendingDeletionConfirmationRequired
unless ``confirm_restore`` is set, in which case the schedule is cleared.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from accountkit.core import crypto
from accountkit.core.clock import utcnow
from accountkit.core.config import Settings, get_settings
from accountkit.core.exceptions import (
    AccountError,
    ConflictError,
    InternalError,
    InvalidCredentials,
    NotFound,
    PendingDeletionConfirmationRequired,
    PolicyViolation,
    ValidationError,
)
from accountkit.core.logging import get_logger
from accountkit.models import CREDENTIALS, User
from accountkit.services import deletion
from accountkit.services.credentials import CredentialVerifier, check_password_strength
from accountkit.services.identity_store import IdentityStore
from accountkit.services.linking import LinkingPolicy
from accountkit.services.oauth import OAuthClient, OAuthIdentity

logger = get_logger(__name__)

# Concurrent first-time OAuth sign-ins may collide on username or email;
# the loser re-resolves against the now-committed rows.
_SIGN_IN_ATTEMPTS = 3

_WHITESPACE_RE = re.compile(r"\s+")


def derive_username(name: str | None, email: str) -> str:
    """Lowercased display name without whitespace, else the email local part."""
    base = _WHITESPACE_RE.sub("", name.lower()) if name else ""
    return base or email.split("@", 1)[0] or "user"


def _use_case(func):
    """Let AccountError through; log anything else and report it as InternalError."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except AccountError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error in use case", operation=func.__name__)
            raise InternalError() from exc

    return wrapper


class AuthService:
    """Register, sign in, link, unlink, update profile, reset password, schedule deletion."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        oauth: OAuthClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = IdentityStore(session)
        self.verifier = CredentialVerifier(self.settings)
        self.policy = LinkingPolicy(self.settings.max_auth_methods)
        self.oauth = oauth or OAuthClient(self.settings)
        self._clock = clock or utcnow

    # ── Registration ─────────────────────────────────────────────────────────

    @_use_case
    async def register(
        self, email: str, password: str, username: str, name: str | None = None
    ) -> User:
        missing = [f for f, v in (("email", email), ("password", password), ("username", username)) if not v]
        if missing:
            raise ValidationError("Missing required fields", fields=missing)
        check_password_strength(password)
        hashed = self.verifier.hash(password)

        async with self.store.transaction():
            if await self.store.find_email(email) is not None:
                raise ConflictError("Email already exists", field="email")
            if await self.store.username_taken(username):
                raise ConflictError("Username already exists", field="username")
            user = await self.store.create_user(username=username, name=name)
            await self.store.add_email(user, email, CREDENTIALS, hashed)

        logger.info("User registered", user_id=user.id, username=username)
        return user

    # ── Sign-in ───────────────────────────────────────────────────────────────

    @_use_case
    async def sign_in(self, email: str, password: str, confirm_restore: bool = False) -> User:
        if not email or not password:
            raise ValidationError("Missing credentials")
        now = self._clock()
        failure: AccountError | None = None

        async with self.store.transaction():
            record = await self.store.find_email(email)
            if record is None or record.provider != CREDENTIALS or not record.password:
                raise InvalidCredentials()
            user = await self.store.get_user(record.user_id, for_update=True)
            self.verifier.ensure_not_locked(user, now)
            if self.verifier.verify(password, record.password):
                self._complete_login(user, now, confirm_restore)
            else:
                failure = self.verifier.record_failure(user, now)

        if failure is not None:
            logger.warning(
                "Failed sign-in",
                user_id=user.id,
                attempts=user.failed_login_attempts,
                locked=failure.kind == "account_locked",
            )
            raise failure
        logger.info("User signed in", user_id=user.id, provider=CREDENTIALS)
        return user

    @_use_case
    async def sign_in_oauth(
        self, provider: str, code: str, redirect_uri: str, confirm_restore: bool = False
    ) -> User:
        identity = await self.oauth.exchange(provider, code, redirect_uri)
        return await self.sign_in_with_identity(identity, confirm_restore)

    @_use_case
    async def sign_in_with_identity(
        self, identity: OAuthIdentity, confirm_restore: bool = False
    ) -> User:
        """Sign in with a provider-verified identity, creating the user on first use."""
        for attempt in range(1, _SIGN_IN_ATTEMPTS + 1):
            creating = False
            try:
                async with self.store.transaction():
                    now = self._clock()
                    account = await self.store.find_account(
                        identity.provider, identity.provider_account_id
                    )
                    if account is not None:
                        user = await self.store.get_user(account.user_id, for_update=True)
                        self._ensure_restorable(user, now, confirm_restore)
                        await self.store.update_account(account, **self._token_fields(identity))
                    else:
                        email = await self.store.find_email(identity.email)
                        if email is not None:
                            user = await self.store.get_user(email.user_id, for_update=True)
                            self._ensure_restorable(user, now, confirm_restore)
                            self.policy.check_link_oauth(user, identity.provider, user.id)
                            await self.store.add_account(
                                user, identity.provider, identity.provider_account_id,
                                **self._token_fields(identity),
                            )
                        else:
                            creating = True
                            user = await self._create_oauth_user(identity)
                    self._complete_login(user, now, confirm_restore)
            except ConflictError:
                if not creating or attempt == _SIGN_IN_ATTEMPTS:
                    raise
                logger.info("Concurrent first sign-in detected, retrying", attempt=attempt)
                continue
            logger.info("User signed in", user_id=user.id, provider=identity.provider)
            return user
        raise InternalError()  # pragma: no cover

    async def _create_oauth_user(self, identity: OAuthIdentity) -> User:
        username = await self._free_username(derive_username(identity.name, identity.email))
        user = await self.store.create_user(
            username=username, name=identity.name, image=identity.image
        )
        await self.store.add_email(user, identity.email, identity.provider)
        await self.store.add_account(
            user, identity.provider, identity.provider_account_id,
            **self._token_fields(identity),
        )
        logger.info("User created from OAuth", user_id=user.id, provider=identity.provider)
        return user

    async def _free_username(self, base: str) -> str:
        """Probe ``base``, ``base1``, ``base2`` ... against the store."""
        for n in range(self.settings.username_probe_limit):
            candidate = base if n == 0 else f"{base}{n}"
            if not await self.store.username_taken(candidate):
                return candidate
        raise ConflictError("Could not allocate a unique username", field="username")

    @staticmethod
    def _token_fields(identity: OAuthIdentity) -> dict:
        return {
            "access_token": crypto.encrypt(identity.access_token),
            "refresh_token": crypto.encrypt(identity.refresh_token),
            "expires_at": identity.expires_at,
        }

    def _ensure_restorable(self, user: User, now: datetime, confirm_restore: bool) -> None:
        if deletion.is_pending(user) and not confirm_restore:
            raise PendingDeletionConfirmationRequired(deletion.days_remaining(user, now))

    def _complete_login(self, user: User, now: datetime, confirm_restore: bool) -> None:
        self._ensure_restorable(user, now, confirm_restore)
        if deletion.is_pending(user):
            deletion.cancel(user)
            logger.info("Scheduled deletion cancelled by sign-in", user_id=user.id)
        self.verifier.record_success(user, now)

    # ── Linking ───────────────────────────────────────────────────────────────

    @_use_case
    async def link_credentials(self, user_id: int, email: str, password: str) -> User:
        if not email or not password:
            raise ValidationError("Missing email or password")
        check_password_strength(password)
        hashed = self.verifier.hash(password)

        async with self.store.transaction():
            user = await self.store.get_user(user_id, for_update=True)
            existing = await self.store.find_email(email)
            self.policy.check_link_credentials(user, existing.user_id if existing else None)
            await self.store.add_email(user, email, CREDENTIALS, hashed)

        logger.info("Credentials linked", user_id=user_id)
        return user

    @_use_case
    async def link_oauth(self, user_id: int, provider: str, code: str, redirect_uri: str) -> User:
        # Fail fast before spending a provider round-trip
        self.oauth.get_provider(provider)
        async with self.store.transaction():
            user = await self.store.get_user(user_id)
            self.policy.check_link_oauth(user, provider)

        identity = await self.oauth.exchange(provider, code, redirect_uri)
        return await self.link_identity(user_id, identity)

    @_use_case
    async def link_identity(self, user_id: int, identity: OAuthIdentity) -> User:
        async with self.store.transaction():
            user = await self.store.get_user(user_id, for_update=True)
            existing = await self.store.find_email(identity.email)
            self.policy.check_link_oauth(
                user, identity.provider, existing.user_id if existing else None
            )
            other = await self.store.find_account(identity.provider, identity.provider_account_id)
            if other is not None:
                raise ConflictError(
                    f"This {identity.provider} account is already linked to another user"
                )
            if existing is None:
                await self.store.add_email(user, identity.email, identity.provider)
            await self.store.add_account(
                user, identity.provider, identity.provider_account_id,
                **self._token_fields(identity),
            )

        logger.info("OAuth account linked", user_id=user_id, provider=identity.provider)
        return user

    @_use_case
    async def unlink(self, user_id: int, email: str, provider: str) -> User:
        if not email or not provider:
            raise ValidationError("Missing email or provider")

        async with self.store.transaction():
            user = await self.store.get_user(user_id, for_update=True)
            email_row, account = self.policy.check_unlink(user, email, provider)
            if account is not None:
                await self.store.remove_account(user, account)
            if email_row is not None:
                heir = self.policy.address_heir(user) if email_row.provider == CREDENTIALS else None
                if heir is not None:
                    await self.store.update_email(email_row, provider=heir, password=None)
                else:
                    await self.store.remove_email(user, email_row)

        logger.info("Login method unlinked", user_id=user_id, provider=provider)
        return user

    # ── Profile & password ────────────────────────────────────────────────────

    @_use_case
    async def update_profile(
        self,
        user_id: int,
        username: str,
        email: str,
        name: str | None = None,
        current_password: str | None = None,
    ) -> User:
        if not username or not email:
            raise ValidationError("Username and email are required")
        now = self._clock()
        failure: AccountError | None = None

        async with self.store.transaction():
            user = await self.store.get_user(user_id, for_update=True)
            credentials = user.credentials_email
            if credentials is not None:
                if not current_password:
                    raise ValidationError("Current password is required", field="current_password")
                failure = self._check_current_password(user, credentials.password, current_password, now)

            if failure is None:
                if await self.store.username_taken(username, exclude_user_id=user.id):
                    raise ConflictError("Username is already taken", field="username")
                owner = await self.store.find_email(email)
                if owner is not None and owner.user_id != user.id:
                    raise ConflictError("Email is already in use", field="email")

                fields = {"username": username}
                if name is not None:
                    fields["name"] = name
                await self.store.update_user(user, **fields)

                # The address of the active method: credentials first, else the first OAuth one
                target = credentials or next(iter(user.emails), None)
                if target is None:
                    raise NotFound("No email address is linked to this account")
                if target.email != email:
                    await self.store.update_email(target, email=email)

        if failure is not None:
            raise failure
        logger.info("Profile updated", user_id=user_id)
        return user

    @_use_case
    async def reset_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        confirm_password: str | None = None,
    ) -> None:
        if not current_password or not new_password:
            raise ValidationError("Current and new passwords are required")
        check_password_strength(new_password, field="new_password")
        if confirm_password is not None and confirm_password != new_password:
            raise ValidationError("Passwords do not match", field="confirm_password")
        now = self._clock()
        failure: AccountError | None = None

        async with self.store.transaction():
            user = await self.store.get_user(user_id, for_update=True)
            credentials = user.credentials_email
            failure = self._check_current_password(
                user, credentials.password if credentials else None, current_password, now
            )
            if failure is None:
                if current_password == new_password:
                    raise ValidationError(
                        "New password must differ from the current password", field="new_password"
                    )
                await self.store.update_email(
                    credentials, password=self.verifier.hash_for_reset(new_password)
                )

        if failure is not None:
            raise failure
        logger.info("Password reset", user_id=user_id)

    def _check_current_password(
        self, user: User, hashed: str | None, plain: str, now: datetime
    ) -> AccountError | None:
        """Verify a current password, feeding the lockout counters on failure."""
        if not hashed:
            raise PolicyViolation("No password set for this account")
        self.verifier.ensure_not_locked(user, now)
        if self.verifier.verify(plain, hashed):
            return None
        failure = self.verifier.record_failure(user, now)
        if isinstance(failure, InvalidCredentials):
            failure = InvalidCredentials("Current password is incorrect")
        logger.warning("Current password rejected", user_id=user.id)
        return failure

    # ── Deletion ──────────────────────────────────────────────────────────────

    @_use_case
    async def schedule_deletion(self, user_id: int) -> datetime:
        now = self._clock()
        async with self.store.transaction():
            user = await self.store.get_user(user_id, for_update=True)
            scheduled_at = deletion.schedule(user, now, self.settings.deletion_grace_days)
        logger.info("Account deletion scheduled", user_id=user_id, at=scheduled_at.isoformat())
        return scheduled_at

    @_use_case
    async def get_user(self, user_id: int) -> User:
        async with self.store.transaction():
            return await self.store.get_user(user_id)
