"""Azure AD bearer tokens through the MSAL device code flow."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any
from urllib.parse import urlsplit

import msal
import requests

from ratelimit_probe.auth.base import TokenProvider, TokenProviderError, TokenUsageError

logger = logging.getLogger(__name__)

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"


def resource_for_url(url: str) -> str:
    """Return the resource identifier (scheme://host/) a token must be issued for."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"not an absolute URL: {url!r}")
    try:
        parts.port
    except ValueError as e:
        raise ValueError(f"invalid port in URL: {url!r}") from e
    return f"{parts.scheme}://{parts.netloc}/"


class AzureDeviceCodeTokenProvider(TokenProvider):
    """Acquire and refresh tokens for one user via the device code flow.

    acquire() prints the verification instructions and blocks until the user
    completes sign-in in a browser. refresh() redeems the cached refresh
    token for a new access token without user interaction.

    Args:
        tenant_id: Azure AD tenant.
        client_id: Public client application ID.
        resource: Resource the token is for, e.g. "https://management.azure.com/".
        authority_host: Identity provider host. Falls back to the
            RATELIMIT_PROBE_AUTHORITY_HOST environment variable.
        app: Pre-built MSAL application (used by tests).

    Example:
        ```python
        provider = AzureDeviceCodeTokenProvider(tenant, client, resource_for_url(url))
        first = provider.acquire()
        second = provider.refresh()
        ```
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        resource: str,
        authority_host: str | None = None,
        app: msal.PublicClientApplication | None = None,
    ) -> None:
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if not client_id:
            raise ValueError("client_id is required")
        host = authority_host or os.getenv("RATELIMIT_PROBE_AUTHORITY_HOST", DEFAULT_AUTHORITY_HOST)
        self._authority = f"{host.rstrip('/')}/{tenant_id}"
        self._scopes = [f"{resource.rstrip('/')}/.default"]
        self._lock = threading.Lock()
        self._account: dict[str, Any] | None = None
        self._acquired = False
        if app is None:
            try:
                app = msal.PublicClientApplication(client_id=client_id, authority=self._authority)
            except (ValueError, requests.RequestException) as e:
                raise TokenProviderError(f"failed to create the token source: {e}") from e
        self._app = app

    @property
    def authority(self) -> str:
        return self._authority

    @property
    def scopes(self) -> list[str]:
        return list(self._scopes)

    def acquire(self) -> str:
        """Run the interactive device code flow and return an access token.

        Raises:
            TokenProviderError: If the flow cannot start or does not complete.
        """
        with self._lock:
            try:
                flow = self._app.initiate_device_flow(scopes=self._scopes)
            except requests.RequestException as e:
                raise TokenProviderError(f"failed to start device auth flow: {e}") from e
            if "user_code" not in flow:
                raise TokenProviderError(
                    "failed to start device auth flow: "
                    f"{flow.get('error_description', 'unknown error')}"
                )

            print(flow["message"], flush=True)
            logger.info("Device flow started, waiting up to %ss for sign-in", flow.get("expires_in"))

            try:
                result = self._app.acquire_token_by_device_flow(flow)
            except requests.RequestException as e:
                raise TokenProviderError(f"failed to finish device auth flow: {e}") from e
            token = self._access_token(result, "failed to finish device auth flow")

            self._account = self._find_account(result)
            self._acquired = True
            logger.info("Access token acquired via device flow")
            return token

    def refresh(self) -> str:
        """Redeem the refresh token for a new access token.

        Raises:
            TokenUsageError: If acquire() has not completed successfully.
            TokenProviderError: If the refresh fails.
        """
        with self._lock:
            if not self._acquired:
                raise TokenUsageError("acquire() must be called before refresh()")
            if self._account is None:
                raise TokenProviderError("no signed-in account available to refresh")

            try:
                result = self._app.acquire_token_silent(
                    self._scopes, account=self._account, force_refresh=True
                )
            except requests.RequestException as e:
                raise TokenProviderError(f"failed to refresh the token: {e}") from e
            token = self._access_token(result, "failed to refresh the token")
            logger.debug("Access token refreshed")
            return token

    def _find_account(self, result: dict[str, Any]) -> dict[str, Any] | None:
        accounts = self._app.get_accounts()
        if not accounts:
            return None
        username = result.get("id_token_claims", {}).get("preferred_username")
        for account in accounts:
            if username and account.get("username") == username:
                return account
        return accounts[0]

    @staticmethod
    def _access_token(result: dict[str, Any] | None, message: str) -> str:
        if result and "access_token" in result:
            return result["access_token"]
        description = (result or {}).get("error_description", "no token returned")
        raise TokenProviderError(f"{message}: {description}")
