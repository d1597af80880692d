"""OAuth refresh-token handling for bearer-token backends."""

from __future__ import annotations

import enum

import httpx

from cloud_vault.core.exceptions import AuthenticationError, ConfigError
from cloud_vault.core.obfuscate import deobfuscate
from cloud_vault.logging import get_logger

log = get_logger(__name__)


class TokenState(enum.StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class AuthTokenManager:
    """Exchange a long-lived refresh token for short-lived access tokens.

    The client id, client secret and refresh token are kept in their obfuscated
    form and decoded only while building the token request. The refresh token is
    sent to the token endpoint and nowhere else.
    """

    def __init__(
            self,
            token_url: str,
            client_id: str,
            client_secret: str,
            refresh_token: str,
            client: httpx.Client,
    ) -> None:
        self.token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._client = client
        self._access_token = ""
        self.state = TokenState.UNAUTHENTICATED

    @property
    def access_token(self) -> str:
        return self._access_token

    @property
    def has_token(self) -> bool:
        return bool(self._access_token)

    def refresh(self) -> bool:
        """Request a new access token. Returns False if the endpoint refused.

        A refused request leaves the previous token in place.

        Raises:
            AuthenticationError: If the endpoint cannot be reached or the stored
                credentials cannot be decoded.
        """
        if not self._refresh_token:
            raise AuthenticationError("No refresh token configured; link the account first")

        try:
            form = {
                "client_id": deobfuscate(self._client_id),
                "client_secret": deobfuscate(self._client_secret),
                "refresh_token": deobfuscate(self._refresh_token),
                "grant_type": "refresh_token",
            }
        except ConfigError as exc:
            raise AuthenticationError(f"Stored credentials are unreadable: {exc}") from exc
        try:
            response = self._client.post(self.token_url, data=form)
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Token endpoint unreachable: {exc}") from exc

        if not response.is_success:
            self.state = TokenState.UNAUTHENTICATED
            log.warning("token_refresh_rejected", status=response.status_code)
            return False

        try:
            self._access_token = response.json()["access_token"]
        except (ValueError, KeyError) as exc:
            raise AuthenticationError("Token endpoint returned no access token") from exc

        self.state = TokenState.AUTHENTICATED
        log.debug("token_refreshed")
        return True

    def ensure_token(self) -> str:
        """Return a usable access token, refreshing first if there is none."""
        if not self._access_token:
            self.refresh()
        if not self._access_token:
            raise AuthenticationError("Could not obtain an access token")
        return self._access_token

    def mark_expired(self) -> None:
        """Record that the remote rejected the current token."""
        self.state = TokenState.UNAUTHENTICATED

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.ensure_token()}"}
