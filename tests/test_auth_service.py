"""Tests for the auth use cases (register, sign-in, link, unlink, profile, password)."""

import pytest

from accountkit.core import crypto
from accountkit.core.exceptions import (
    AccountLocked,
    ConflictError,
    InternalError,
    InvalidCredentials,
    NotFound,
    PolicyViolation,
    UpstreamProviderError,
    ValidationError,
)
from accountkit.models import CREDENTIALS
from accountkit.services.oauth import OAuthIdentity
from accountkit.services.orchestrator import derive_username

PASSWORD = "Abcdef1!"
NEW_PASSWORD = "Zyxwvu9@"
REDIRECT = "http://test/callback"


async def _register(service, email="alice@example.com", username="alice") -> int:
    user = await service.register(email, PASSWORD, username, name="Alice")
    return user.id


# ── Registration ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_register(service):
    user = await service.register("alice@example.com", PASSWORD, "alice", name="Alice")
    assert user.id is not None
    assert user.username == "alice"
    assert user.last_login_at is None
    [email] = user.emails
    assert email.provider == CREDENTIALS
    assert email.password != PASSWORD
    assert service.verifier.verify(PASSWORD, email.password)


@pytest.mark.asyncio
async def test_register_duplicate_email(service):
    await _register(service)
    with pytest.raises(ConflictError, match="Email already exists"):
        await service.register("alice@example.com", PASSWORD, "other")


@pytest.mark.asyncio
async def test_register_duplicate_username(service):
    await _register(service)
    with pytest.raises(ConflictError, match="Username already exists"):
        await service.register("other@example.com", PASSWORD, "alice")


@pytest.mark.asyncio
async def test_register_weak_password(service):
    with pytest.raises(ValidationError) as exc_info:
        await service.register("alice@example.com", "abcdefgh", "alice")
    assert exc_info.value.details["field"] == "password"


@pytest.mark.asyncio
async def test_register_missing_fields(service):
    with pytest.raises(ValidationError) as exc_info:
        await service.register("", PASSWORD, "")
    assert exc_info.value.details["fields"] == ["email", "username"]


# ── Credentials sign-in and lockout ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_sign_in(service, clock):
    user_id = await _register(service)
    user = await service.sign_in("alice@example.com", PASSWORD)
    assert user.id == user_id
    assert user.last_login_at == clock.now


@pytest.mark.asyncio
async def test_sign_in_unknown_email(service):
    with pytest.raises(InvalidCredentials):
        await service.sign_in("nobody@example.com", PASSWORD)


@pytest.mark.asyncio
async def test_sign_in_with_oauth_only_address(service, oauth):
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@gmail.example")
    await service.sign_in_oauth("google", "g1", REDIRECT)
    with pytest.raises(InvalidCredentials):
        await service.sign_in("alice@gmail.example", PASSWORD)


@pytest.mark.asyncio
async def test_five_failures_lock_the_account(service, clock):
    user_id = await _register(service)
    for _ in range(4):
        with pytest.raises(InvalidCredentials):
            await service.sign_in("alice@example.com", "Wrong123!")
        clock.advance(minutes=1)

    with pytest.raises(AccountLocked) as exc_info:
        await service.sign_in("alice@example.com", "Wrong123!")
    assert exc_info.value.minutes_remaining == 30

    user = await service.get_user(user_id)
    assert user.failed_login_attempts == 5
    locked_until = user.lockout_until

    # Attempts while locked are refused up front and do not extend the lock
    clock.advance(minutes=5)
    with pytest.raises(AccountLocked):
        await service.sign_in("alice@example.com", "Wrong123!")
    clock.advance(minutes=5)
    with pytest.raises(AccountLocked) as exc_info:
        await service.sign_in("alice@example.com", PASSWORD)
    assert exc_info.value.minutes_remaining == 20
    user = await service.get_user(user_id)
    assert user.lockout_until == locked_until
    assert user.failed_login_attempts == 5

    clock.advance(minutes=21)
    user = await service.sign_in("alice@example.com", PASSWORD)
    assert user.failed_login_attempts == 0
    assert user.lockout_until is None
    assert user.last_failed_login is None


@pytest.mark.asyncio
async def test_failures_spread_over_time_do_not_lock(service, clock):
    user_id = await _register(service)
    for _ in range(6):
        with pytest.raises(InvalidCredentials):
            await service.sign_in("alice@example.com", "Wrong123!")
        clock.advance(minutes=16)

    user = await service.get_user(user_id)
    assert user.failed_login_attempts == 1
    assert user.lockout_until is None


# ── OAuth sign-in ─────────────────────────────────────────────────────────────

def test_derive_username():
    assert derive_username("Alice Smith", "a@example.com") == "alicesmith"
    assert derive_username(None, "bob.jones@example.com") == "bob.jones"
    assert derive_username("   ", "carol@example.com") == "carol"


@pytest.mark.asyncio
async def test_first_oauth_sign_in_creates_user(service, oauth, clock):
    oauth.add(
        "g1", provider="google", provider_account_id="g-1",
        email="alice@gmail.example", name="Alice", image="https://img.example/a.png",
    )
    user = await service.sign_in_oauth("google", "g1", REDIRECT)

    assert user.username == "alice"
    assert user.image == "https://img.example/a.png"
    assert user.last_login_at == clock.now
    assert [(e.email, e.provider) for e in user.emails] == [("alice@gmail.example", "google")]
    [account] = user.accounts
    assert account.provider_account_id == "g-1"
    # Tokens are encrypted at rest
    assert account.access_token != "token-g1"
    assert crypto.decrypt(account.access_token) == "token-g1"


@pytest.mark.asyncio
async def test_oauth_username_probing(service, oauth):
    await _register(service, email="alice@example.com", username="alice")
    oauth.add("g1", provider="google", provider_account_id="g-1", email="a1@gmail.example", name="Alice")
    oauth.add("h1", provider="github", provider_account_id="7", email="a2@github.example", name="Alice")

    first = await service.sign_in_oauth("google", "g1", REDIRECT)
    second = await service.sign_in_oauth("github", "h1", REDIRECT)
    assert first.username == "alice1"
    assert second.username == "alice2"


@pytest.mark.asyncio
async def test_repeat_oauth_sign_in_reuses_account(service, oauth):
    identity = oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@gmail.example")
    first_id = (await service.sign_in_oauth("google", "g1", REDIRECT)).id

    identity.access_token = "rotated"
    user = await service.sign_in_with_identity(identity)
    assert user.id == first_id
    assert len(user.accounts) == 1
    assert crypto.decrypt(user.accounts[0].access_token) == "rotated"


@pytest.mark.asyncio
async def test_oauth_sign_in_attaches_to_existing_address(service, oauth):
    user_id = await _register(service)
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@example.com")

    user = await service.sign_in_oauth("google", "g1", REDIRECT)
    assert user.id == user_id
    assert user.method_count == 2
    assert [a.provider for a in user.accounts] == ["google"]


@pytest.mark.asyncio
async def test_oauth_sign_in_respects_method_cap(service, oauth):
    user_id = await _register(service)
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@gmail.example")
    await service.link_oauth(user_id, "google", "g1", REDIRECT)

    oauth.add("h1", provider="github", provider_account_id="7", email="alice@example.com")
    with pytest.raises(PolicyViolation):
        await service.sign_in_oauth("github", "h1", REDIRECT)


@pytest.mark.asyncio
async def test_oauth_upstream_failure_creates_nothing(service, oauth):
    with pytest.raises(UpstreamProviderError):
        await service.sign_in_oauth("google", "unknown-code", REDIRECT)
    with pytest.raises(NotFound):
        await service.get_user(1)


@pytest.mark.asyncio
async def test_oauth_unsupported_provider(service):
    with pytest.raises(ValidationError, match="Unsupported provider"):
        await service.sign_in_oauth("myspace", "code", REDIRECT)


# ── Linking ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_link_credentials_to_oauth_user(service, oauth):
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@gmail.example")
    user_id = (await service.sign_in_oauth("google", "g1", REDIRECT)).id

    user = await service.link_credentials(user_id, "alice@example.com", PASSWORD)
    assert user.method_count == 2
    assert user.credentials_email.email == "alice@example.com"

    signed_in = await service.sign_in("alice@example.com", PASSWORD)
    assert signed_in.id == user_id


@pytest.mark.asyncio
async def test_link_credentials_weak_password(service, oauth):
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@gmail.example")
    user_id = (await service.sign_in_oauth("google", "g1", REDIRECT)).id
    with pytest.raises(ValidationError):
        await service.link_credentials(user_id, "alice@example.com", "password")


@pytest.mark.asyncio
async def test_link_oauth_then_cap(service, oauth):
    user_id = await _register(service)
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@gmail.example")
    oauth.add("h1", provider="github", provider_account_id="7", email="alice@github.example")

    user = await service.link_oauth(user_id, "google", "g1", REDIRECT)
    assert user.method_count == 2

    with pytest.raises(PolicyViolation, match="Maximum of 2 authentication methods reached"):
        await service.link_oauth(user_id, "github", "h1", REDIRECT)
    # Rejected before the provider round-trip
    assert oauth.exchanged == ["g1"]


@pytest.mark.asyncio
async def test_link_identity_owned_by_other_user(service, oauth):
    await _register(service, email="bob@example.com", username="bob")
    alice_id = await _register(service)
    identity = OAuthIdentity(provider="google", provider_account_id="g-1", email="bob@example.com")

    with pytest.raises(ConflictError):
        await service.link_identity(alice_id, identity)


@pytest.mark.asyncio
async def test_link_provider_account_owned_by_other_user(service, oauth):
    oauth.add("g1", provider="google", provider_account_id="g-1", email="bob@gmail.example")
    await service.sign_in_oauth("google", "g1", REDIRECT)
    alice_id = await _register(service)

    identity = OAuthIdentity(provider="google", provider_account_id="g-1", email="alice@gmail.example")
    with pytest.raises(ConflictError, match="already linked to another user"):
        await service.link_identity(alice_id, identity)


@pytest.mark.asyncio
async def test_unlink_oauth(service, oauth):
    user_id = await _register(service)
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@gmail.example")
    await service.link_oauth(user_id, "google", "g1", REDIRECT)

    user = await service.unlink(user_id, "alice@gmail.example", "google")
    assert user.accounts == []
    assert [e.provider for e in user.emails] == [CREDENTIALS]


@pytest.mark.asyncio
async def test_unlink_credentials_hands_shared_address_to_oauth(service, oauth):
    user_id = await _register(service)
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@example.com")
    user = await service.link_oauth(user_id, "google", "g1", REDIRECT)
    assert [(e.email, e.provider) for e in user.emails] == [("alice@example.com", CREDENTIALS)]

    user = await service.unlink(user_id, "alice@example.com", CREDENTIALS)
    assert [(e.email, e.provider) for e in user.emails] == [("alice@example.com", "google")]
    assert user.emails[0].password is None
    assert [a.provider for a in user.accounts] == ["google"]

    # The address stays taken and no longer accepts a password
    with pytest.raises(ConflictError):
        await service.register("alice@example.com", PASSWORD, "mallory")
    with pytest.raises(InvalidCredentials):
        await service.sign_in("alice@example.com", PASSWORD)

    user = await service.update_profile(user_id, "alice", "new@example.com")
    assert [(e.email, e.provider) for e in user.emails] == [("new@example.com", "google")]
    assert (await service.sign_in_oauth("google", "g1", REDIRECT)).id == user_id


@pytest.mark.asyncio
async def test_unlink_oauth_with_wrong_address_changes_nothing(service, oauth):
    user_id = await _register(service)
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@gmail.example")
    await service.link_oauth(user_id, "google", "g1", REDIRECT)

    with pytest.raises(NotFound):
        await service.unlink(user_id, "typo@gmail.example", "google")
    user = await service.get_user(user_id)
    assert [a.provider for a in user.accounts] == ["google"]
    assert sorted(e.email for e in user.emails) == ["alice@example.com", "alice@gmail.example"]


@pytest.mark.asyncio
async def test_update_profile_without_any_address(service):
    async with service.store.transaction():
        user = await service.store.create_user("ghost")
        await service.store.add_account(user, "github", "7")
    user_id = user.id

    with pytest.raises(NotFound, match="No email address"):
        await service.update_profile(user_id, "ghost", "ghost@example.com")
    assert (await service.get_user(user_id)).emails == []


@pytest.mark.asyncio
async def test_unlink_last_method(service):
    user_id = await _register(service)
    with pytest.raises(PolicyViolation, match="Cannot remove the last linked account"):
        await service.unlink(user_id, "alice@example.com", CREDENTIALS)
    assert (await service.get_user(user_id)).method_count == 1


# ── Profile ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_update_profile(service):
    user_id = await _register(service)
    user = await service.update_profile(
        user_id, "alice2", "alice2@example.com", name="Alice B", current_password=PASSWORD
    )
    assert user.username == "alice2"
    assert user.name == "Alice B"
    assert user.credentials_email.email == "alice2@example.com"


@pytest.mark.asyncio
async def test_update_profile_requires_current_password(service):
    user_id = await _register(service)
    with pytest.raises(ValidationError) as exc_info:
        await service.update_profile(user_id, "alice2", "alice@example.com")
    assert exc_info.value.details["field"] == "current_password"


@pytest.mark.asyncio
async def test_update_profile_wrong_password_counts_as_failure(service):
    user_id = await _register(service)
    with pytest.raises(InvalidCredentials, match="Current password is incorrect"):
        await service.update_profile(
            user_id, "alice2", "alice@example.com", current_password="Wrong123!"
        )
    user = await service.get_user(user_id)
    assert user.username == "alice"
    assert user.failed_login_attempts == 1


@pytest.mark.asyncio
async def test_update_profile_username_taken(service):
    await _register(service, email="bob@example.com", username="bob")
    user_id = await _register(service)
    with pytest.raises(ConflictError, match="Username is already taken"):
        await service.update_profile(user_id, "bob", "alice@example.com", current_password=PASSWORD)


@pytest.mark.asyncio
async def test_update_profile_email_taken(service):
    await _register(service, email="bob@example.com", username="bob")
    user_id = await _register(service)
    with pytest.raises(ConflictError, match="Email is already in use"):
        await service.update_profile(user_id, "alice", "bob@example.com", current_password=PASSWORD)


@pytest.mark.asyncio
async def test_update_profile_oauth_user_needs_no_password(service, oauth):
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@gmail.example")
    user_id = (await service.sign_in_oauth("google", "g1", REDIRECT)).id
    user = await service.update_profile(user_id, "ally", "ally@gmail.example")
    assert user.username == "ally"
    assert user.emails[0].email == "ally@gmail.example"


# ── Password reset ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reset_password(service):
    user_id = await _register(service)
    await service.reset_password(user_id, PASSWORD, NEW_PASSWORD, NEW_PASSWORD)

    user = await service.get_user(user_id)
    assert user.credentials_email.password.startswith("$2b$12$")
    assert (await service.sign_in("alice@example.com", NEW_PASSWORD)).id == user_id
    with pytest.raises(InvalidCredentials):
        await service.sign_in("alice@example.com", PASSWORD)


@pytest.mark.asyncio
async def test_reset_password_wrong_current(service):
    user_id = await _register(service)
    with pytest.raises(InvalidCredentials, match="Current password is incorrect"):
        await service.reset_password(user_id, "Wrong123!", NEW_PASSWORD)
    assert (await service.get_user(user_id)).failed_login_attempts == 1


@pytest.mark.asyncio
async def test_reset_password_locks_after_repeated_failures(service, clock):
    user_id = await _register(service)
    for _ in range(4):
        with pytest.raises(InvalidCredentials):
            await service.reset_password(user_id, "Wrong123!", NEW_PASSWORD)
    with pytest.raises(AccountLocked):
        await service.reset_password(user_id, "Wrong123!", NEW_PASSWORD)
    with pytest.raises(AccountLocked):
        await service.reset_password(user_id, PASSWORD, NEW_PASSWORD)


@pytest.mark.asyncio
async def test_reset_password_validation(service):
    user_id = await _register(service)
    with pytest.raises(ValidationError, match="Passwords do not match"):
        await service.reset_password(user_id, PASSWORD, NEW_PASSWORD, "Other123!")
    with pytest.raises(ValidationError, match="must differ"):
        await service.reset_password(user_id, PASSWORD, PASSWORD)
    with pytest.raises(ValidationError):
        await service.reset_password(user_id, PASSWORD, "weak")


@pytest.mark.asyncio
async def test_reset_password_without_credentials(service, oauth):
    oauth.add("g1", provider="google", provider_account_id="g-1", email="alice@gmail.example")
    user_id = (await service.sign_in_oauth("google", "g1", REDIRECT)).id
    with pytest.raises(PolicyViolation, match="No password set"):
        await service.reset_password(user_id, PASSWORD, NEW_PASSWORD)


# ── Error mapping ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unexpected_errors_become_internal(service, monkeypatch):
    async def broken(address):
        raise RuntimeError("database on fire")

    monkeypatch.setattr(service.store, "find_email", broken)
    with pytest.raises(InternalError) as exc_info:
        await service.sign_in("alice@example.com", PASSWORD)
    assert exc_info.value.kind == "internal_error"
    assert "fire" not in exc_info.value.message


@pytest.mark.asyncio
async def test_lockout_survives_in_new_session(service, engine, settings, oauth, clock):
    from sqlalchemy.ext.asyncio import async_sessionmaker

    from accountkit.services.orchestrator import AuthService

    user_id = await _register(service)
    for _ in range(5):
        with pytest.raises((InvalidCredentials, AccountLocked)):
            await service.sign_in("alice@example.com", "Wrong123!")

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        fresh = AuthService(session, settings=settings, oauth=oauth, clock=clock)
        with pytest.raises(AccountLocked):
            await fresh.sign_in("alice@example.com", PASSWORD)
        assert (await fresh.get_user(user_id)).failed_login_attempts == 5
