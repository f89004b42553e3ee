"""OAuth 2.0 authentication and credential lifecycle for Google Sheets."""

import logging
import threading
import webbrowser
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from threading import Thread
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
from pydantic import ValidationError

from sheet_sync.errors import AuthError, RemoteError
from sheet_sync.google.models import Credential, TokenResponse
from sheet_sync.utils import StorageManager

logger = logging.getLogger(__name__)


class GoogleOAuthConfig:
    """Configuration for Google OAuth."""

    AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str = "http://localhost:8000/callback",
        timeout: float = 30.0,
    ) -> None:
        """Initialize OAuth configuration.

        Args:
            client_id: OAuth client ID.
            client_secret: OAuth client secret.
            redirect_uri: OAuth redirect URI.
            timeout: Timeout in seconds for token endpoint calls.
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout


class AuthorizationCallbackHandler(BaseHTTPRequestHandler):
    """HTTP request handler for OAuth callback."""

    authorization_code: str | None = None
    error: str | None = None

    def do_GET(self) -> None:
        """Handle GET request from OAuth redirect."""
        parsed_path = urlparse(self.path)
        if parsed_path.path != "/callback":
            self.send_response(404)
            self.end_headers()
            return

        query_params = parse_qs(parsed_path.query)

        if "error" in query_params:
            AuthorizationCallbackHandler.error = query_params["error"][0]
            self.send_response(400)
            self.send_header("Content-type", "text/html")
            self.end_headers()
            self.wfile.write(
                b"<html><body><h1>Authorization Error</h1>"
                b"<p>The authorization failed. You can close this window.</p>"
                b"</body></html>"
            )
            return

        if "code" in query_params:
            AuthorizationCallbackHandler.authorization_code = query_params["code"][0]
            self.send_response(200)
            self.send_header("Content-type", "text/html")
            self.end_headers()
            self.wfile.write(
                b"<html><body><h1>Google Sheets Connected</h1>"
                b"<p>You can close this window.</p>"
                b"</body></html>"
            )
            return

        self.send_response(400)
        self.end_headers()

    def log_message(self, format: str, *args: Any) -> None:
        """Suppress log messages."""
        pass


class GoogleOAuthClient:
    """Client for the Google OAuth 2.0 authorization-code and refresh flows."""

    SCOPES = [
        "https://www.googleapis.com/auth/spreadsheets",
    ]

    def __init__(self, config: GoogleOAuthConfig) -> None:
        """Initialize Google OAuth client.

        Args:
            config: OAuth configuration.
        """
        self.config = config

    def get_authorization_url(self, state: str = "state") -> str:
        """Generate authorization URL for user to visit.

        Args:
            state: CSRF protection state parameter.

        Returns:
            Authorization URL.
        """
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": " ".join(self.SCOPES),
            "state": state,
            # offline access + forced consent so Google always returns a refresh token
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GoogleOAuthConfig.AUTHORIZE_URL}?{urlencode(params)}"

    def handle_callback(self) -> TokenResponse:
        """Start local server to handle OAuth callback and obtain tokens.

        Returns:
            Token response with access and refresh tokens.

        Raises:
            AuthError: If authorization fails or times out.
        """
        parsed_uri = urlparse(self.config.redirect_uri)
        host = parsed_uri.hostname or "localhost"
        port = parsed_uri.port or 8000

        AuthorizationCallbackHandler.authorization_code = None
        AuthorizationCallbackHandler.error = None

        server = HTTPServer((host, port), AuthorizationCallbackHandler)
        server_thread = Thread(target=server.handle_request)
        server_thread.daemon = True
        server_thread.start()

        auth_url = self.get_authorization_url()
        logger.info(f"Opening browser for authorization: {auth_url}")
        webbrowser.open(auth_url)

        logger.info("Waiting for authorization callback...")
        server_thread.join(timeout=300)
        server.server_close()

        if AuthorizationCallbackHandler.error:
            raise AuthError(f"Authorization failed: {AuthorizationCallbackHandler.error}")

        if not AuthorizationCallbackHandler.authorization_code:
            raise AuthError("Authorization timeout or no authorization code received")

        return self.exchange_code(AuthorizationCallbackHandler.authorization_code)

    def exchange_code(self, code: str) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from callback.

        Returns:
            Token response.

        Raises:
            AuthError: If Google rejects the code.
            RemoteError: If the token endpoint cannot be reached.
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "redirect_uri": self.config.redirect_uri,
        }
        token = self._request_token(payload)
        logger.info("Successfully obtained OAuth token")
        return token

    def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """Obtain a new access token with a refresh-token grant.

        Args:
            refresh_token: Stored refresh token.

        Returns:
            Token response.

        Raises:
            AuthError: If the refresh token was revoked or is invalid.
            RemoteError: If the token endpoint cannot be reached.
        """
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        return self._request_token(payload)

    def _request_token(self, payload: dict[str, str]) -> TokenResponse:
        try:
            response = httpx.post(
                GoogleOAuthConfig.TOKEN_URL,
                data=payload,
                timeout=self.config.timeout,
            )
        except httpx.TransportError as e:
            raise RemoteError(f"Token endpoint unreachable: {e}") from e

        if response.status_code >= 500:
            raise RemoteError(
                f"Token endpoint error: {response.text}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise AuthError(
                f"Google rejected the token request ({response.status_code}): "
                f"{response.text}. Please reconnect Google Sheets."
            )

        try:
            return TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise RemoteError(f"Malformed token response: {e}") from e


class CredentialManager:
    """Owns the access/refresh token lifecycle of each user's credential.

    Refreshes are serialized per user: Google invalidates the previous
    access token on every refresh, so concurrent callers for one user wait
    for the in-flight refresh and reuse its result.
    """

    def __init__(self, storage: StorageManager, oauth_client: GoogleOAuthClient) -> None:
        """Initialize credential manager.

        Args:
            storage: Credential store.
            oauth_client: Client for the token endpoint.
        """
        self.storage = storage
        self.oauth_client = oauth_client
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            if user_id not in self._locks:
                self._locks[user_id] = threading.Lock()
            return self._locks[user_id]

    def get_credential(self, user_id: str) -> Credential | None:
        """Load the stored credential for a user."""
        raw = self.storage.get_credential(user_id)
        if raw is None:
            return None
        try:
            return Credential.model_validate({**raw, "user_id": user_id})
        except ValidationError as e:
            logger.warning(f"Stored credential for user {user_id} is invalid: {e}")
            return None

    def save_token(self, user_id: str, token: TokenResponse) -> Credential:
        """Store the tokens from a fresh authorization for a user.

        Args:
            user_id: Owning user id.
            token: Token response from the code exchange.

        Returns:
            The stored credential.

        Raises:
            AuthError: If Google did not return a refresh token.
        """
        existing = self.get_credential(user_id)
        refresh_token = token.refresh_token or (existing.refresh_token if existing else None)
        if not refresh_token:
            raise AuthError(
                "Google did not return a refresh token. Revoke the app's access "
                "and connect again."
            )

        credential = Credential(
            user_id=user_id,
            access_token=token.access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=token.expires_in),
        )
        with self._user_lock(user_id):
            self.storage.set_credential(user_id, credential.model_dump(mode="json"))
        logger.info(f"Stored Google credential for user {user_id}")
        return credential

    def get_valid_access_token(self, user_id: str) -> str:
        """Return a usable access token, refreshing it if it has expired.

        Args:
            user_id: Owning user id.

        Returns:
            Access token.

        Raises:
            AuthError: If the user never connected, or the refresh was rejected.
            RemoteError: If the token endpoint could not be reached.
        """
        with self._user_lock(user_id):
            credential = self.get_credential(user_id)
            if credential is None:
                raise AuthError(
                    f"Google Sheets not connected for user {user_id}. "
                    "Please run: sheet-sync connect"
                )

            if not credential.is_expired():
                return credential.access_token

            logger.info(f"Access token for user {user_id} expired, refreshing...")
            token = self.oauth_client.refresh_access_token(credential.refresh_token)

            refreshed = credential.model_copy(
                update={
                    "access_token": token.access_token,
                    "refresh_token": token.refresh_token or credential.refresh_token,
                    "expires_at": datetime.now(timezone.utc) + timedelta(seconds=token.expires_in),
                }
            )
            self.storage.set_credential(user_id, refreshed.model_dump(mode="json"))

            logger.info(f"Access token for user {user_id} refreshed")
            return refreshed.access_token

    def disconnect(self, user_id: str) -> None:
        """Forget the stored credential for a user."""
        with self._user_lock(user_id):
            self.storage.delete_credential(user_id)
