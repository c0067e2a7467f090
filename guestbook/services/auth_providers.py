"""
OAuth authentication providers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from guestbook.models.user import AuthProvider
from guestbook.settings import settings


@dataclass
class OAuthUserInfo:
    """User info returned from OAuth provider."""

    provider: str
    sub: str  # Subject ID from provider
    email: str
    name: str
    picture: str | None = None


class OAuthProvider(ABC):
    """Base class for OAuth providers."""

    token_url: str

    def __init__(self, redirect_uri_override: str | None = None):
        self.redirect_uri = redirect_uri_override or settings.oauth_redirect_uri(self.name)

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        pass

    @property
    @abstractmethod
    def authorization_url(self) -> str:
        """Authorization URL for OAuth flow."""
        pass

    @abstractmethod
    def get_authorization_params(self, state: str) -> dict[str, str]:
        """Get authorization URL parameters."""
        pass

    @abstractmethod
    async def get_user_info(self, access_token: str) -> OAuthUserInfo:
        """Get user info from provider."""
        pass

    def build_authorization_url(self, state: str) -> str:
        """Full redirect target for the sign-in step."""
        return f"{self.authorization_url}?{urlencode(self.get_authorization_params(state))}"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange authorization code for tokens."""
        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.redirect_uri,
                },
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            return response.json()


class GoogleOAuthProvider(OAuthProvider):
    """Google OAuth provider."""

    name = AuthProvider.GOOGLE.value
    authorization_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    userinfo_url = "https://www.googleapis.com/oauth2/v2/userinfo"

    def __init__(self, redirect_uri_override: str | None = None):
        super().__init__(redirect_uri_override)
        self.client_id = settings.google_client_id
        self.client_secret = settings.google_client_secret

    def get_authorization_params(self, state: str) -> dict[str, str]:
        """Get Google OAuth authorization parameters."""
        return {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
        }

    async def get_user_info(self, access_token: str) -> OAuthUserInfo:
        """Get user info from Google."""
        async with httpx.AsyncClient() as client:
            response = await client.get(
                self.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            data = response.json()

        email = data["email"]
        return OAuthUserInfo(
            provider=self.name,
            sub=str(data["id"]),
            email=email,
            name=data.get("name") or email.split("@")[0],
            picture=data.get("picture"),
        )


class GitHubOAuthProvider(OAuthProvider):
    """GitHub OAuth provider.

    GitHub hides the email on the profile when the user keeps it private,
    so the primary verified address is fetched from /user/emails.
    """

    name = AuthProvider.GITHUB.value
    authorization_url = "https://github.com/login/oauth/authorize"
    token_url = "https://github.com/login/oauth/access_token"
    userinfo_url = "https://api.github.com/user"
    emails_url = "https://api.github.com/user/emails"

    def __init__(self, redirect_uri_override: str | None = None):
        super().__init__(redirect_uri_override)
        self.client_id = settings.github_client_id
        self.client_secret = settings.github_client_secret

    def get_authorization_params(self, state: str) -> dict[str, str]:
        """Get GitHub OAuth authorization parameters."""
        return {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": "read:user user:email",
            "state": state,
        }

    async def get_user_info(self, access_token: str) -> OAuthUserInfo:
        """Get user info from GitHub."""
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
        }
        async with httpx.AsyncClient() as client:
            response = await client.get(self.userinfo_url, headers=headers)
            response.raise_for_status()
            data = response.json()

            email = data.get("email")
            if not email:
                response = await client.get(self.emails_url, headers=headers)
                response.raise_for_status()
                emails = response.json()
                primary = next((e for e in emails if e.get("primary") and e.get("verified")), None)
                email = primary["email"] if primary else f"{data['login']}@users.noreply.github.com"

        return OAuthUserInfo(
            provider=self.name,
            sub=str(data["id"]),
            email=email,
            name=data.get("name") or data["login"],
            picture=data.get("avatar_url"),
        )


def get_oauth_provider(provider_name: str) -> OAuthProvider | None:
    """Get OAuth provider by name."""
    providers = {
        AuthProvider.GOOGLE.value: GoogleOAuthProvider if settings.google_oauth_enabled else None,
        AuthProvider.GITHUB.value: GitHubOAuthProvider if settings.github_oauth_enabled else None,
    }

    provider_class = providers.get(provider_name)
    if provider_class:
        return provider_class()
    return None


def get_available_providers() -> list[str]:
    """Get list of available OAuth providers."""
    providers = []
    if settings.google_oauth_enabled:
        providers.append(AuthProvider.GOOGLE.value)
    if settings.github_oauth_enabled:
        providers.append(AuthProvider.GITHUB.value)
    return providers
