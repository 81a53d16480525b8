"""OAuth2 authorization-code and refresh-token lifecycle for Microsoft Graph."""

import logging
import secrets
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from .errors import TransientNetworkError, UnauthenticatedError

AUTHORITY_URL = 'https://login.microsoftonline.com'
DEFAULT_SCOPES = ['user.read', 'notes.read']
OFFLINE_SCOPE = 'offline_access'
REFRESH_TOKEN_KEY = 'refresh_token'


class AuthSession:
    """
    Owns the access token used by every Graph request.

    The refresh token is kept in memory and, if the user opted in, in the
    persistent settings store so that later runs can sign in silently.
    """

    def __init__(
        self,
        client_id: str,
        tenant: str = 'common',
        redirect_uri: str = 'http://localhost:8400/',
        scopes: Optional[List[str]] = None,
        store=None,
        remember_sign_in: bool = True,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the auth session.

        Args:
            client_id: Azure application (client) ID
            tenant: Tenant segment of the authority URL
            redirect_uri: Redirect URI registered for the application
            scopes: Graph scopes to request (offline_access is always added)
            store: Settings store with get/set, used to persist the refresh token
            remember_sign_in: Persist the refresh token between runs
            session: Optional requests session (for tests)
            timeout: HTTP timeout in seconds
            logger: Logger instance
        """
        if not client_id:
            raise ValueError("client_id is required")

        self.client_id = client_id
        self.tenant = tenant
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes or DEFAULT_SCOPES)
        self.store = store
        self.remember_sign_in = remember_sign_in
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.fetcher.auth')

        self.state = secrets.token_urlsafe(24)
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

        if self.store is not None and self.remember_sign_in:
            self.refresh_token = self.store.get(REFRESH_TOKEN_KEY)
            if self.refresh_token:
                self.logger.debug("Loaded stored refresh token")

    @property
    def token_url(self) -> str:
        return f"{AUTHORITY_URL}/{self.tenant}/oauth2/v2.0/token"

    @property
    def requested_scope(self) -> str:
        scopes = [s for s in self.scopes if s != OFFLINE_SCOPE]
        return ' '.join(scopes + [OFFLINE_SCOPE])

    def authorization_url(self) -> str:
        """Build the URL the user opens in a browser to sign in."""
        params = {
            'client_id': self.client_id,
            'scope': self.requested_scope,
            'response_type': 'code',
            'redirect_uri': self.redirect_uri,
            'response_mode': 'query',
            'state': self.state,
        }
        return f"{AUTHORITY_URL}/{self.tenant}/oauth2/v2.0/authorize?{urlencode(params)}"

    def authorize(self, code: str, state: Optional[str] = None) -> str:
        """
        Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the redirect
            state: State returned with the redirect; checked when given

        Returns:
            The new access token

        Raises:
            UnauthenticatedError: On state mismatch or when no token is issued
        """
        if state is not None and state != self.state:
            raise UnauthenticatedError(
                f"An incorrect state was returned. Expected {self.state}, got {state}"
            )

        token_data = self._request_token({
            'client_id': self.client_id,
            'scope': self.requested_scope,
            'code': code,
            'redirect_uri': self.redirect_uri,
            'grant_type': 'authorization_code',
        })
        self._apply_token_response(token_data)
        self.logger.info("Signed in to Microsoft Graph")
        return self.access_token

    def current_token(self) -> str:
        """Return the active access token, refreshing first if there is none."""
        if not self.access_token:
            return self.refresh()
        return self.access_token

    def refresh(self) -> str:
        """
        Exchange the stored refresh token for a new access token.

        Raises:
            UnauthenticatedError: If there is no refresh token or it was rejected
        """
        if not self.refresh_token:
            raise UnauthenticatedError()

        self.logger.info("Refreshing access token")
        token_data = self._request_token({
            'client_id': self.client_id,
            'scope': self.requested_scope,
            'refresh_token': self.refresh_token,
            'grant_type': 'refresh_token',
        })
        self._apply_token_response(token_data)
        return self.access_token

    def sign_out(self) -> None:
        """Forget all tokens, including the persisted refresh token."""
        self.access_token = None
        self.refresh_token = None
        if self.store is not None:
            self.store.set(REFRESH_TOKEN_KEY, None)

    def _request_token(self, form: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = self.session.post(self.token_url, data=form, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Token request failed: {e}")
            raise TransientNetworkError(self.token_url, e)

        try:
            token_data = response.json()
        except ValueError:
            token_data = {}

        if not response.ok or not token_data.get('access_token'):
            description = token_data.get('error_description') or token_data.get('error') or response.text[:200]
            self.logger.error(f"Token endpoint returned {response.status_code}: {description}")
            raise UnauthenticatedError(f"Sign-in failed: {description}")

        return token_data

    def _apply_token_response(self, token_data: Dict[str, Any]) -> None:
        self.access_token = token_data['access_token']

        new_refresh_token = token_data.get('refresh_token')
        if new_refresh_token:
            self.refresh_token = new_refresh_token
            # Persist before returning so an interrupted run keeps the rotated token
            if self.store is not None and self.remember_sign_in:
                self.store.set(REFRESH_TOKEN_KEY, new_refresh_token)
