"""Linking policy — which login methods a user may add or remove.

A user holds at most ``max_methods`` (default 2) login methods, counted as
credentials emails plus OAuth accounts. Rules are checked in order and the
first violation wins:

1. the cap must not already be reached;
2. credentials: only one credentials email, and the address must be free;
3. OAuth provider P: only one P account, and never a second OAuth account
   next to a credentials email;
4. unlink: never remove the last method; an address shared with a linked
   OAuth provider is handed to that provider instead of being deleted.

Policy checks work on a User freshly loaded from the store, never on a
session-cached copy.
"""

from __future__ import annotations

from accountkit.core.exceptions import ConflictError, NotFound, PolicyViolation
from accountkit.models import CREDENTIALS, Account, Email, User


class LinkingPolicy:
    def __init__(self, max_methods: int = 2) -> None:
        self.max_methods = max_methods

    def _check_cap(self, user: User) -> None:
        if user.method_count >= self.max_methods:
            raise PolicyViolation(
                f"Maximum of {self.max_methods} authentication methods reached"
            )

    def check_link_credentials(self, user: User, email_owner_id: int | None) -> None:
        """*email_owner_id* is the user currently owning the target address, if any."""
        self._check_cap(user)
        if user.credentials_email is not None:
            raise PolicyViolation("Only one Email/Password method can be linked")
        if email_owner_id is not None:
            if email_owner_id != user.id:
                raise ConflictError("This email is already linked to another account", field="email")
            raise ConflictError("This email is already linked to your account", field="email")

    def check_link_oauth(self, user: User, provider: str, email_owner_id: int | None = None) -> None:
        self._check_cap(user)
        if any(acc.provider == provider for acc in user.accounts):
            raise PolicyViolation(f"Only one {provider} account can be linked")
        if user.credentials_email is not None and len(user.accounts) >= 1:
            raise PolicyViolation("Only one OAuth method can be linked with credentials")
        if email_owner_id is not None and email_owner_id != user.id:
            raise ConflictError("This email is already linked to another account", field="email")

    def check_unlink(
        self, user: User, address: str, provider: str
    ) -> tuple[Email | None, Account | None]:
        """Return the (email, account) rows an unlink must remove."""
        if user.method_count <= 1:
            raise PolicyViolation("Cannot remove the last linked account")

        if provider == CREDENTIALS:
            email = next(
                (e for e in user.emails if e.provider == CREDENTIALS and e.email == address),
                None,
            )
            if email is None:
                raise NotFound("No Email/Password method with this address is linked")
            return email, None

        account = next((a for a in user.accounts if a.provider == provider), None)
        if account is None:
            raise NotFound(f"No {provider} account is linked")
        # The provider's address row goes with it. A provider without its own
        # row shares the credentials address, which stays.
        provider_emails = [e for e in user.emails if e.provider == provider]
        email = next((e for e in provider_emails if e.email == address), None)
        if email is None and provider_emails:
            raise NotFound(f"No {provider} account with this address is linked")
        return email, account

    def address_heir(self, user: User) -> str | None:
        """OAuth provider left without an Email row of its own, if any.

        Such a provider signs in with the credentials address, so unlinking
        credentials hands the row over instead of deleting it.
        """
        own = {e.provider for e in user.emails}
        return next((a.provider for a in user.accounts if a.provider not in own), None)
