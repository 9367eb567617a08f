"""accountkit — user accounts, login-method linking, lockout and scheduled deletion."""

__version__ = "0.1.0"
