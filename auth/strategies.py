"""
auth/strategies.py -- Authentication strategies.

A strategy turns some proof of identity into a local Credential:

    strategy.resolve(proof) -> Credential     (raises AuthError on failure)

LocalStrategy        -- email + password.
FederatedStrategy    -- a FederatedProfile from an OAuth provider; one
                        instance per provider (GoogleOAuthStrategy,
                        GitHubOAuthStrategy).

Strategies are plain objects handed to AuthService at construction time and
selected by name per route. There is no global registry.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from auth.errors import InvalidCredentials, NotFound, UnverifiedAccount
from auth.models import Credential, FederatedProfile
from auth.store import CredentialStore


class AuthStrategy(Protocol):
    name: str

    def resolve(self, proof: Any) -> Credential: ...


@dataclass(frozen=True)
class PasswordLogin:
    email: str
    password: str


class LocalStrategy:
    """Email/password login.

    Order of checks:
      1. unknown email     -> InvalidCredentials (after a dummy bcrypt run) [C1]
      2. password          -> PasswordMismatch, or InvalidCredentials for a
                              federated-only account
      3. verification      -> UnverifiedAccount

    The password is checked before the verified flag so only someone who
    knows the password learns that the account is unverified.
    """

    name = "local"

    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def resolve(self, proof: PasswordLogin) -> Credential:
        try:
            credential = self.store.find_by_email(proof.email)
        except NotFound:
            self.store.dummy_check(proof.password)
            raise InvalidCredentials() from None
        self.store.check_password(credential, proof.password)
        if not credential.is_verified:
            raise UnverifiedAccount()
        return credential


class FederatedStrategy:
    """Maps a provider-confirmed profile to a local Credential."""

    def __init__(self, store: CredentialStore, provider: str) -> None:
        self.store = store
        self.name = provider

    def resolve(self, proof: FederatedProfile) -> Credential:
        if not proof.email:
            raise InvalidCredentials()
        return self.store.find_or_create_federated(
            email=proof.email,
            display_name=proof.display_name,
            provider=self.name,
            provider_id=proof.provider_id,
        )


class GoogleOAuthStrategy(FederatedStrategy):
    def __init__(self, store: CredentialStore) -> None:
        super().__init__(store, "google")


class GitHubOAuthStrategy(FederatedStrategy):
    def __init__(self, store: CredentialStore) -> None:
        super().__init__(store, "github")
