# =============================================================================
# Authentication Providers
# =============================================================================
# Provider interface with a Basic Auth implementation. The authenticated
# user is recorded as the requester of inference runs.
# =============================================================================

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class AuthenticatedUser:
    """A caller that passed authentication."""

    username: str
    display_name: Optional[str] = None
    email: Optional[str] = None

    def __post_init__(self) -> None:
        if self.display_name is None:
            self.display_name = self.username

    @property
    def requested_by(self) -> str:
        """Identity stored on runs this user admits."""
        return self.email or self.username


class AuthProvider(ABC):
    """Authentication provider interface."""

    @abstractmethod
    def authenticate(self, username: str, password: str) -> Optional[AuthenticatedUser]:
        """Return the user for valid credentials, None otherwise."""


class BasicAuthProvider(AuthProvider):
    """HTTP Basic Authentication against a single configured account."""

    def __init__(self, username: str, password: str) -> None:
        self._username = username
        self._password = password

    def authenticate(self, username: str, password: str) -> Optional[AuthenticatedUser]:
        # Constant-time comparison of both fields
        username_ok = secrets.compare_digest(username.encode(), self._username.encode())
        password_ok = secrets.compare_digest(password.encode(), self._password.encode())
        if username_ok and password_ok:
            return AuthenticatedUser(username=username)
        return None
