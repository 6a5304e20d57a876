"""
Authentication providers.

Token verification and password handling are delegated to Supabase Auth in
production; ``InMemoryAuthProvider`` stands in for it during development and
tests.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol

from supabase import AuthError as ProviderAuthError
from supabase import Client, create_client

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Sign-in or sign-up was rejected by the provider."""


@dataclass
class AuthUser:
    id: str
    email: str
    display_name: Optional[str] = None


@dataclass
class AuthSession:
    user: AuthUser
    # None when the provider requires email confirmation first.
    access_token: Optional[str] = None


class AuthProvider(Protocol):
    def get_user(self, access_token: str) -> Optional[AuthUser]:
        ...

    def sign_in(self, email: str, password: str) -> AuthSession:
        ...

    def sign_up(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> AuthSession:
        ...


def _hash_password(password: str, salt: str) -> str:
    return hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()


@dataclass
class InMemoryAuthProvider:
    """Test double issuing opaque bearer tokens."""

    accounts: dict = field(default_factory=dict)
    tokens: dict = field(default_factory=dict)

    def _issue(self, user: AuthUser) -> AuthSession:
        token = secrets.token_urlsafe(24)
        self.tokens[token] = user
        return AuthSession(user=user, access_token=token)

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        return self.tokens.get(access_token)

    def sign_in(self, email: str, password: str) -> AuthSession:
        account = self.accounts.get(email.lower())
        if not account:
            raise AuthError("Invalid login credentials")
        salt, digest, user = account
        if not hmac.compare_digest(digest, _hash_password(password, salt)):
            raise AuthError("Invalid login credentials")
        return self._issue(user)

    def sign_up(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> AuthSession:
        key = email.lower()
        if key in self.accounts:
            raise AuthError("User already registered")
        salt = secrets.token_hex(8)
        user = AuthUser(id=str(uuid.uuid4()), email=key, display_name=display_name)
        self.accounts[key] = (salt, _hash_password(password, salt), user)
        return self._issue(user)


class SupabaseAuthProvider:
    """Delegates token checks and credential flows to Supabase Auth."""

    def __init__(self, url: str, key: str):
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY are required")
        self._client: Client = create_client(url, key)

    @staticmethod
    def _to_user(user) -> AuthUser:
        metadata = getattr(user, "user_metadata", None) or {}
        return AuthUser(
            id=user.id, email=user.email, display_name=metadata.get("display_name")
        )

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        try:
            response = self._client.auth.get_user(access_token)
        except ProviderAuthError as exc:
            logger.info("Rejected access token: %s", exc)
            return None
        if not response or not response.user:
            return None
        return self._to_user(response.user)

    def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            response = self._client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except ProviderAuthError as exc:
            raise AuthError(str(exc)) from exc
        return AuthSession(
            user=self._to_user(response.user),
            access_token=response.session.access_token if response.session else None,
        )

    def sign_up(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> AuthSession:
        credentials = {"email": email, "password": password}
        if display_name:
            credentials["options"] = {"data": {"display_name": display_name}}
        try:
            response = self._client.auth.sign_up(credentials)
        except ProviderAuthError as exc:
            raise AuthError(str(exc)) from exc
        if not response.user:
            raise AuthError("Sign up did not return a user")
        return AuthSession(
            user=self._to_user(response.user),
            access_token=response.session.access_token if response.session else None,
        )
