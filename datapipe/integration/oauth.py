"""OAuth strategies and signed API consumers used by connectors"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional
import httpx
import structlog
from authlib.integrations.httpx_client import AsyncOAuth1Client, AsyncOAuth2Client
from pydantic import BaseModel
from ..common.config import settings
from ..common.exceptions import ApiRequestError, AuthenticationError

logger = structlog.get_logger(__name__)

# verify(token, token_secret_or_refresh_token, profile) -> profile
VerifyCallback = Callable[[str, Optional[str], Dict[str, Any]], Dict[str, Any]]


class AuthorizationRequest(BaseModel):
    """
    Pending OAuth handshake kept by the host between redirect and callback.

    Attributes:
        url: Provider URL the user is redirected to.
        state: Key that comes back on the callback (request token or OAuth2 state).
        secret: Request token secret (OAuth 1.0a only).
    """
    url: str
    state: str
    secret: Optional[str] = None


class OAuthStrategy(ABC):
    """Base class for OAuth authentication strategies"""

    name = "oauth"

    def __init__(self, callback_url: str, verify: VerifyCallback, timeout: Optional[float] = None):
        self.callback_url = callback_url
        self.verify = verify
        self.timeout = timeout or settings.http_timeout
        self.logger = logger.bind(strategy=self.name)

    @abstractmethod
    async def authorize(self, params: Optional[Dict[str, Any]] = None) -> AuthorizationRequest:
        """
        Start the OAuth dance.

        Args:
            params: Extra parameters appended to the provider's authorization URL.

        Returns:
            The pending request holding the redirect URL.
        """
        pass

    @abstractmethod
    async def authenticate(self, callback_params: Dict[str, str], request: AuthorizationRequest) -> Dict[str, Any]:
        """
        Complete the OAuth dance from the provider's callback parameters.

        Returns:
            The user profile after the verify callback ran.

        Raises:
            AuthenticationError: If the user denied access or the token exchange failed.
        """
        pass

    @staticmethod
    @abstractmethod
    def callback_state(callback_params: Dict[str, str]) -> Optional[str]:
        """Key identifying the pending request a callback belongs to"""
        pass


class OAuth1Strategy(OAuthStrategy):
    """Three-legged OAuth 1.0a strategy"""

    name = "oauth1"

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        callback_url: str,
        verify: VerifyCallback,
        request_token_url: str,
        user_authorization_url: str,
        access_token_url: str,
        timeout: Optional[float] = None
    ):
        super().__init__(callback_url, verify, timeout)
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.request_token_url = request_token_url
        self.user_authorization_url = user_authorization_url
        self.access_token_url = access_token_url

    def _client(self, **kwargs) -> AsyncOAuth1Client:
        return AsyncOAuth1Client(self.consumer_key, self.consumer_secret, timeout=self.timeout, **kwargs)

    async def authorize(self, params: Optional[Dict[str, Any]] = None) -> AuthorizationRequest:
        try:
            async with self._client(redirect_uri=self.callback_url) as client:
                request_token = await client.fetch_request_token(self.request_token_url)
                url = client.create_authorization_url(
                    self.user_authorization_url,
                    request_token=request_token["oauth_token"],
                    **(params or {})
                )
        except Exception as e:
            self.logger.error("Failed to obtain request token", error=str(e))
            raise AuthenticationError(f"Failed to obtain request token: {e}")

        return AuthorizationRequest(
            url=url,
            state=request_token["oauth_token"],
            secret=request_token.get("oauth_token_secret")
        )

    async def authenticate(self, callback_params: Dict[str, str], request: AuthorizationRequest) -> Dict[str, Any]:
        verifier = callback_params.get("oauth_verifier")
        if not verifier:
            raise AuthenticationError("Authorization was denied by the user")

        try:
            async with self._client(token=request.state, token_secret=request.secret) as client:
                token = await client.fetch_access_token(self.access_token_url, verifier=verifier)
        except Exception as e:
            self.logger.error("Access token exchange failed", error=str(e))
            raise AuthenticationError(f"Access token exchange failed: {e}")

        profile = self.build_profile(token)
        return self.verify(token.get("oauth_token"), token.get("oauth_token_secret"), profile)

    @staticmethod
    def build_profile(token: Dict[str, Any]) -> Dict[str, Any]:
        """Minimal user profile derived from the access token response"""
        return {
            "provider": "oauth1",
            "id": token.get("xoauth_yahoo_guid") or token.get("user_id"),
            "_raw": dict(token),
        }

    @staticmethod
    def callback_state(callback_params: Dict[str, str]) -> Optional[str]:
        return callback_params.get("oauth_token")


class OAuth2Strategy(OAuthStrategy):
    """OAuth 2.0 authorization code strategy"""

    name = "oauth2"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        callback_url: str,
        verify: VerifyCallback,
        authorization_url: str,
        token_url: str,
        scope: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        super().__init__(callback_url, verify, timeout)
        self.client_id = client_id
        self.client_secret = client_secret
        self.authorization_url = authorization_url
        self.token_url = token_url
        self.scope = scope

    def _client(self) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            self.client_id,
            self.client_secret,
            scope=self.scope,
            redirect_uri=self.callback_url,
            timeout=self.timeout
        )

    async def authorize(self, params: Optional[Dict[str, Any]] = None) -> AuthorizationRequest:
        async with self._client() as client:
            url, state = client.create_authorization_url(self.authorization_url, **(params or {}))
        return AuthorizationRequest(url=url, state=state)

    async def authenticate(self, callback_params: Dict[str, str], request: AuthorizationRequest) -> Dict[str, Any]:
        if callback_params.get("error"):
            description = callback_params.get("error_description") or callback_params["error"]
            raise AuthenticationError(f"Authorization failed: {description}")

        code = callback_params.get("code")
        if not code:
            raise AuthenticationError("Authorization code is missing from the callback")
        if callback_params.get("state") != request.state:
            raise AuthenticationError("OAuth state mismatch")

        try:
            async with self._client() as client:
                token = await client.fetch_token(self.token_url, code=code)
        except Exception as e:
            self.logger.error("Authorization code exchange failed", error=str(e))
            raise AuthenticationError(f"Authorization code exchange failed: {e}")

        profile = self.build_profile(token)
        profile["expires_at"] = token.get("expires_at")
        return self.verify(token.get("access_token"), token.get("refresh_token"), profile)

    @staticmethod
    def build_profile(token: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "provider": "oauth2",
            "id": token.get("xoauth_yahoo_guid") or token.get("user_id"),
            "_raw": dict(token),
        }

    @staticmethod
    def callback_state(callback_params: Dict[str, str]) -> Optional[str]:
        return callback_params.get("state")


class OAuth1Consumer:
    """
    Signs API calls with an OAuth 1.0a access token.

    Holds the consumer credentials; the per-user token and secret are passed with each call.
    """

    def __init__(
        self,
        request_token_url: str,
        access_token_url: str,
        consumer_key: str,
        consumer_secret: str,
        version: str = "1.0",
        signature_method: str = "HMAC-SHA1",
        timeout: Optional[float] = None
    ):
        if version != "1.0":
            raise ValueError(f"Unsupported OAuth version: {version}")
        self.request_token_url = request_token_url
        self.access_token_url = access_token_url
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.version = version
        self.signature_method = signature_method
        self.timeout = timeout or settings.http_timeout

    async def get(self, url: str, token: str, token_secret: Optional[str]) -> str:
        """
        Issue a signed GET request.

        Returns:
            The response body.

        Raises:
            ApiRequestError: On a non-2xx response.
        """
        async with AsyncOAuth1Client(
            self.consumer_key,
            self.consumer_secret,
            token=token,
            token_secret=token_secret,
            signature_method=self.signature_method,
            timeout=self.timeout
        ) as client:
            response = await client.get(url)
        return _response_text(url, response)


class OAuth2Consumer:
    """Bearer-token API calls plus access token refresh"""

    def __init__(self, client_id: str, client_secret: str, token_url: str, timeout: Optional[float] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.timeout = timeout or settings.http_timeout

    async def get(self, url: str, access_token: str) -> str:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(url, headers={"Authorization": f"Bearer {access_token}"})
        return _response_text(url, response)

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new access token.

        Raises:
            AuthenticationError: If the provider rejects the refresh token.
        """
        try:
            async with AsyncOAuth2Client(self.client_id, self.client_secret, timeout=self.timeout) as client:
                token = await client.refresh_token(self.token_url, refresh_token=refresh_token)
        except Exception as e:
            raise AuthenticationError(f"Access token refresh failed: {e}")
        return dict(token)


def _response_text(url: str, response: httpx.Response) -> str:
    if response.is_error:
        raise ApiRequestError(url, response.status_code, response.text)
    return response.text
