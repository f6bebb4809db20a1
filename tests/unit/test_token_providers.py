"""Tests for the token providers.

The Azure provider is exercised against a mocked MSAL application; no
identity provider is contacted.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from ratelimit_probe.auth import (
    AzureDeviceCodeTokenProvider,
    StaticTokenProvider,
    TokenProvider,
    TokenProviderError,
    TokenUsageError,
    resource_for_url,
)

RESOURCE = "https://management.azure.com/"


@pytest.fixture
def msal_app() -> MagicMock:
    app = MagicMock()
    app.initiate_device_flow.return_value = {
        "user_code": "ABCD1234",
        "message": "To sign in, open https://microsoft.com/devicelogin and enter ABCD1234",
        "expires_in": 900,
    }
    app.acquire_token_by_device_flow.return_value = {
        "access_token": "token-1",
        "id_token_claims": {"preferred_username": "probe@contoso.com"},
    }
    app.get_accounts.return_value = [
        {"username": "someone@contoso.com"},
        {"username": "probe@contoso.com"},
    ]
    app.acquire_token_silent.return_value = {"access_token": "token-2"}
    return app


@pytest.fixture
def provider(clean_env, msal_app) -> AzureDeviceCodeTokenProvider:
    return AzureDeviceCodeTokenProvider("contoso", "client-id", RESOURCE, app=msal_app)


class TestStaticTokenProvider:
    """Test cases for StaticTokenProvider."""

    def test_implements_protocol(self) -> None:
        assert isinstance(StaticTokenProvider(["a"]), TokenProvider)

    def test_acquire_then_refresh_cycles_tokens(self) -> None:
        provider = StaticTokenProvider(["a", "b"])
        assert provider.acquire() == "a"
        assert provider.refresh() == "b"
        assert provider.refresh() == "a"

    def test_refresh_before_acquire_is_usage_error(self) -> None:
        with pytest.raises(TokenUsageError):
            StaticTokenProvider(["a"]).refresh()

    def test_requires_a_token(self) -> None:
        with pytest.raises(ValueError):
            StaticTokenProvider(["", ""])


class TestResourceForUrl:
    """Test cases for resource_for_url."""

    def test_strips_path_and_query(self) -> None:
        url = "https://management.azure.com/subscriptions/123?api-version=2020-01-01"
        assert resource_for_url(url) == "https://management.azure.com/"

    def test_keeps_port(self) -> None:
        assert resource_for_url("http://127.0.0.1:8765/probe") == "http://127.0.0.1:8765/"

    @pytest.mark.parametrize("url", ["not a url", "/relative/path", "https://"])
    def test_rejects_relative_urls(self, url) -> None:
        with pytest.raises(ValueError):
            resource_for_url(url)

    @pytest.mark.parametrize(
        "url", ["http://api.example.com:abc/items", "https://api.example.com:70000/"]
    )
    def test_rejects_invalid_ports(self, url) -> None:
        with pytest.raises(ValueError, match="invalid port"):
            resource_for_url(url)


class TestAzureDeviceCodeTokenProviderConfig:
    """Test cases for authority and scope construction."""

    def test_authority_and_scopes(self, provider) -> None:
        assert provider.authority == "https://login.microsoftonline.com/contoso"
        assert provider.scopes == ["https://management.azure.com/.default"]

    def test_authority_host_from_environment(self, clean_env, monkeypatch, msal_app) -> None:
        monkeypatch.setenv("RATELIMIT_PROBE_AUTHORITY_HOST", "https://login.example.net/")
        provider = AzureDeviceCodeTokenProvider("t", "c", RESOURCE, app=msal_app)
        assert provider.authority == "https://login.example.net/t"

    def test_builds_public_client_application(self, clean_env) -> None:
        with patch("ratelimit_probe.auth.azure.msal.PublicClientApplication") as mock_app_cls:
            AzureDeviceCodeTokenProvider("contoso", "client-id", RESOURCE)

        mock_app_cls.assert_called_once_with(
            client_id="client-id", authority="https://login.microsoftonline.com/contoso"
        )

    def test_invalid_authority_is_provider_error(self, clean_env) -> None:
        with patch(
            "ratelimit_probe.auth.azure.msal.PublicClientApplication",
            side_effect=ValueError("invalid authority"),
        ):
            with pytest.raises(TokenProviderError):
                AzureDeviceCodeTokenProvider("contoso", "client-id", RESOURCE)

    @pytest.mark.parametrize("tenant_id, client_id", [("", "c"), ("t", "")])
    def test_requires_tenant_and_client(self, msal_app, tenant_id, client_id) -> None:
        with pytest.raises(ValueError):
            AzureDeviceCodeTokenProvider(tenant_id, client_id, RESOURCE, app=msal_app)


class TestAzureDeviceCodeTokenProviderAcquire:
    """Test cases for the interactive device flow."""

    def test_acquire_runs_device_flow(self, provider, msal_app, capsys) -> None:
        assert provider.acquire() == "token-1"

        msal_app.initiate_device_flow.assert_called_once_with(
            scopes=["https://management.azure.com/.default"]
        )
        msal_app.acquire_token_by_device_flow.assert_called_once()
        assert "ABCD1234" in capsys.readouterr().out

    def test_flow_initiation_failure(self, provider, msal_app) -> None:
        msal_app.initiate_device_flow.return_value = {
            "error": "invalid_client",
            "error_description": "AADSTS700016: application not found",
        }
        with pytest.raises(TokenProviderError, match="AADSTS700016"):
            provider.acquire()
        msal_app.acquire_token_by_device_flow.assert_not_called()

    def test_flow_completion_failure(self, provider, msal_app) -> None:
        msal_app.acquire_token_by_device_flow.return_value = {
            "error": "expired_token",
            "error_description": "device code expired",
        }
        with pytest.raises(TokenProviderError, match="device code expired"):
            provider.acquire()

    def test_network_failure_is_provider_error(self, provider, msal_app) -> None:
        msal_app.initiate_device_flow.side_effect = requests.ConnectionError("offline")
        with pytest.raises(TokenProviderError, match="offline"):
            provider.acquire()


class TestAzureDeviceCodeTokenProviderRefresh:
    """Test cases for token refresh."""

    def test_refresh_before_acquire_is_usage_error(self, provider, msal_app) -> None:
        with pytest.raises(TokenUsageError):
            provider.refresh()
        msal_app.acquire_token_silent.assert_not_called()

    def test_refresh_after_failed_acquire_is_usage_error(self, provider, msal_app) -> None:
        msal_app.acquire_token_by_device_flow.return_value = {"error": "authorization_declined"}
        with pytest.raises(TokenProviderError):
            provider.acquire()
        with pytest.raises(TokenUsageError):
            provider.refresh()

    def test_refresh_forces_new_token_for_signed_in_account(self, provider, msal_app) -> None:
        provider.acquire()

        assert provider.refresh() == "token-2"
        msal_app.acquire_token_silent.assert_called_once_with(
            ["https://management.azure.com/.default"],
            account={"username": "probe@contoso.com"},
            force_refresh=True,
        )

    def test_refresh_failure(self, provider, msal_app) -> None:
        provider.acquire()
        msal_app.acquire_token_silent.return_value = None
        with pytest.raises(TokenProviderError):
            provider.refresh()

    def test_refresh_without_cached_account(self, provider, msal_app) -> None:
        msal_app.get_accounts.return_value = []
        provider.acquire()
        with pytest.raises(TokenProviderError, match="no signed-in account"):
            provider.refresh()
