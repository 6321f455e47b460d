"""
Base classes and types for identity providers.
The provisioner and the access endpoint only talk to IdentityProvider.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class IdentityAccount:
    """Account as seen through the provider (opaque id + email)."""
    id: str
    email: str
    full_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionTokens:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


class IdentityProvider(ABC):
    """Base class for identity providers."""

    @abstractmethod
    def get_account_by_email(self, email: str) -> IdentityAccount | None:
        """Exact, case-sensitive lookup."""
        pass

    @abstractmethod
    def create_account(
        self,
        email: str,
        full_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> IdentityAccount:
        """
        Create an account with a generated credential that is never returned.
        Returns the existing account if one was created concurrently.
        Raises UpstreamError when the provider cannot create it.
        """
        pass

    @abstractmethod
    def issue_session(self, account_id: str) -> SessionTokens:
        pass

    @abstractmethod
    def verify_access_token(self, token: str) -> str:
        """Return the account id; raises AuthenticationError."""
        pass

    @abstractmethod
    def refresh_session(self, refresh_token: str) -> SessionTokens:
        """Raises AuthenticationError for invalid/expired refresh tokens."""
        pass
