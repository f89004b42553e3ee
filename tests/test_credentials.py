"""Tests for Google OAuth and credential management."""

import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from sheet_sync.errors import AuthError, RemoteError
from sheet_sync.google import (
    CredentialManager,
    GoogleOAuthClient,
    GoogleOAuthConfig,
    TokenResponse,
)
from sheet_sync.utils import StorageManager


def store_credential(
    storage: StorageManager,
    user_id: str = "user_1",
    expires_in: timedelta = timedelta(hours=1),
) -> None:
    """Store a credential expiring after the given delta."""
    storage.set_credential(
        user_id,
        {
            "user_id": user_id,
            "access_token": "stored_access_token",
            "refresh_token": "stored_refresh_token",
            "expires_at": (datetime.now(timezone.utc) + expires_in).isoformat(),
        },
    )


class TestGoogleOAuthClient:
    """Test GoogleOAuthClient functionality."""

    def test_authorization_url(self, oauth_config: GoogleOAuthConfig) -> None:
        """Test that the authorization URL requests offline access."""
        url = GoogleOAuthClient(oauth_config).get_authorization_url(state="xyz")
        params = parse_qs(urlparse(url).query)

        assert url.startswith(GoogleOAuthConfig.AUTHORIZE_URL)
        assert params["client_id"] == ["test_client_id"]
        assert params["access_type"] == ["offline"]
        assert params["prompt"] == ["consent"]
        assert params["state"] == ["xyz"]
        assert "spreadsheets" in params["scope"][0]

    def test_refresh_access_token(self, oauth_config: GoogleOAuthConfig) -> None:
        """Test a successful refresh grant."""
        response = httpx.Response(200, json={"access_token": "fresh", "expires_in": 1800})

        with patch("sheet_sync.google.oauth.httpx.post", return_value=response) as mock_post:
            token = GoogleOAuthClient(oauth_config).refresh_access_token("refresh_1")

        assert token.access_token == "fresh"
        assert token.expires_in == 1800
        assert token.refresh_token is None
        payload = mock_post.call_args.kwargs["data"]
        assert payload["grant_type"] == "refresh_token"
        assert payload["refresh_token"] == "refresh_1"
        assert mock_post.call_args.kwargs["timeout"] == oauth_config.timeout

    def test_refresh_rejected(self, oauth_config: GoogleOAuthConfig) -> None:
        """Test that a revoked refresh token raises AuthError."""
        response = httpx.Response(400, json={"error": "invalid_grant"})

        with patch("sheet_sync.google.oauth.httpx.post", return_value=response):
            with pytest.raises(AuthError, match="reconnect"):
                GoogleOAuthClient(oauth_config).refresh_access_token("revoked")

    def test_token_endpoint_down(self, oauth_config: GoogleOAuthConfig) -> None:
        """Test that server and transport failures raise RemoteError."""
        client = GoogleOAuthClient(oauth_config)

        with patch("sheet_sync.google.oauth.httpx.post", return_value=httpx.Response(503)):
            with pytest.raises(RemoteError):
                client.refresh_access_token("refresh_1")

        with patch(
            "sheet_sync.google.oauth.httpx.post",
            side_effect=httpx.ConnectTimeout("timed out"),
        ):
            with pytest.raises(RemoteError):
                client.refresh_access_token("refresh_1")

    def test_exchange_code(self, oauth_config: GoogleOAuthConfig) -> None:
        """Test exchanging an authorization code."""
        response = httpx.Response(
            200,
            json={"access_token": "a", "refresh_token": "r", "expires_in": 3600},
        )

        with patch("sheet_sync.google.oauth.httpx.post", return_value=response) as mock_post:
            token = GoogleOAuthClient(oauth_config).exchange_code("code_1")

        assert token.refresh_token == "r"
        assert mock_post.call_args.kwargs["data"]["grant_type"] == "authorization_code"


class TestCredentialManager:
    """Test CredentialManager functionality."""

    def test_valid_token_not_refreshed(
        self,
        storage_manager: StorageManager,
        mock_oauth_client: MagicMock,
    ) -> None:
        """Test that an unexpired token is returned as is."""
        store_credential(storage_manager)
        manager = CredentialManager(storage_manager, mock_oauth_client)

        assert manager.get_valid_access_token("user_1") == "stored_access_token"
        mock_oauth_client.refresh_access_token.assert_not_called()

    def test_expired_token_refreshed(
        self,
        storage_manager: StorageManager,
        mock_oauth_client: MagicMock,
    ) -> None:
        """Test that an expired token is refreshed once and persisted."""
        store_credential(storage_manager, expires_in=timedelta(minutes=-1))
        manager = CredentialManager(storage_manager, mock_oauth_client)

        token = manager.get_valid_access_token("user_1")

        assert token == "new_access_token"
        mock_oauth_client.refresh_access_token.assert_called_once_with("stored_refresh_token")

        credential = manager.get_credential("user_1")
        assert credential.access_token == "new_access_token"
        assert credential.refresh_token == "new_refresh_token"
        expected_expiry = datetime.now(timezone.utc) + timedelta(seconds=3600)
        assert abs((credential.expires_at - expected_expiry).total_seconds()) < 5

        # The refreshed token is now valid
        assert manager.get_valid_access_token("user_1") == "new_access_token"
        assert mock_oauth_client.refresh_access_token.call_count == 1

    def test_refresh_keeps_refresh_token(
        self,
        storage_manager: StorageManager,
        mock_oauth_client: MagicMock,
    ) -> None:
        """Test that the stored refresh token survives when none is returned."""
        store_credential(storage_manager, expires_in=timedelta(minutes=-1))
        mock_oauth_client.refresh_access_token.return_value = TokenResponse(access_token="fresh")
        manager = CredentialManager(storage_manager, mock_oauth_client)

        manager.get_valid_access_token("user_1")

        assert manager.get_credential("user_1").refresh_token == "stored_refresh_token"

    def test_missing_credential(
        self,
        storage_manager: StorageManager,
        mock_oauth_client: MagicMock,
    ) -> None:
        """Test that a user who never connected gets an AuthError."""
        manager = CredentialManager(storage_manager, mock_oauth_client)

        with pytest.raises(AuthError, match="not connected"):
            manager.get_valid_access_token("user_1")

    def test_rejected_refresh(
        self,
        storage_manager: StorageManager,
        mock_oauth_client: MagicMock,
    ) -> None:
        """Test that a rejected refresh leaves the stored credential untouched."""
        store_credential(storage_manager, expires_in=timedelta(minutes=-1))
        mock_oauth_client.refresh_access_token.side_effect = AuthError("invalid_grant")
        manager = CredentialManager(storage_manager, mock_oauth_client)

        with pytest.raises(AuthError):
            manager.get_valid_access_token("user_1")

        assert manager.get_credential("user_1").access_token == "stored_access_token"

    def test_concurrent_refresh_single_flight(
        self,
        storage_manager: StorageManager,
        mock_oauth_client: MagicMock,
        token_response: TokenResponse,
    ) -> None:
        """Test that concurrent callers for one user share a single refresh."""
        store_credential(storage_manager, expires_in=timedelta(minutes=-1))

        def slow_refresh(refresh_token: str) -> TokenResponse:
            time.sleep(0.05)
            return token_response

        mock_oauth_client.refresh_access_token.side_effect = slow_refresh
        manager = CredentialManager(storage_manager, mock_oauth_client)

        with ThreadPoolExecutor(max_workers=5) as pool:
            tokens = list(pool.map(lambda _: manager.get_valid_access_token("user_1"), range(5)))

        assert tokens == ["new_access_token"] * 5
        assert mock_oauth_client.refresh_access_token.call_count == 1

    def test_save_token(
        self,
        storage_manager: StorageManager,
        mock_oauth_client: MagicMock,
        token_response: TokenResponse,
    ) -> None:
        """Test storing the tokens of a fresh authorization."""
        manager = CredentialManager(storage_manager, mock_oauth_client)

        credential = manager.save_token("user_1", token_response)

        assert credential.refresh_token == "new_refresh_token"
        assert manager.get_credential("user_1") == credential

    def test_save_token_without_refresh_token(
        self,
        storage_manager: StorageManager,
        mock_oauth_client: MagicMock,
    ) -> None:
        """Test that a first authorization must yield a refresh token."""
        manager = CredentialManager(storage_manager, mock_oauth_client)

        with pytest.raises(AuthError):
            manager.save_token("user_1", TokenResponse(access_token="a"))

    def test_disconnect(
        self,
        storage_manager: StorageManager,
        mock_oauth_client: MagicMock,
    ) -> None:
        """Test forgetting a credential."""
        store_credential(storage_manager)
        manager = CredentialManager(storage_manager, mock_oauth_client)

        manager.disconnect("user_1")

        assert manager.get_credential("user_1") is None
