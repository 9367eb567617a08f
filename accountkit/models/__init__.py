"""SQLAlchemy ORM models."""

from accountkit.models.account import Account
from accountkit.models.base import Base
from accountkit.models.email import Email
from accountkit.models.user import CREDENTIALS, User

__all__ = ["Base", "Account", "CREDENTIALS", "Email", "User"]
