"""Salesforce connection management with JWT bearer login and a shared token cache"""
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse
import threading
import time
import logging

import requests
from simple_salesforce import SalesforceLogin
from simple_salesforce.exceptions import SalesforceAuthenticationFailed

from app.config import Settings, get_settings
from app.services.errors import AuthenticationError, TransportError
from app.services.tooling_api import ToolingApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
    access_token: str
    instance_url: str
    issued_at: float


def login_domain(login_url: str) -> str:
    """Map a login URL to the ``domain`` argument simple_salesforce expects.

    https://login.salesforce.com    -> login
    https://test.salesforce.com     -> test
    https://acme.my.salesforce.com  -> acme.my
    """
    host = urlparse(login_url).netloc or login_url
    host = host.split(":")[0]
    suffix = ".salesforce.com"
    if host.endswith(suffix):
        return host[: -len(suffix)]
    return host


class SalesforceTokenProvider:
    """Owns the bearer token for one set of credentials.

    Tokens are reused until they get close to expiry. Refreshes are
    serialized so concurrent tool calls trigger at most one login.
    """

    def __init__(self, settings: Settings, login=SalesforceLogin, clock=time.time):
        self._settings = settings
        self._login = login
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[AccessToken] = None

    def _is_fresh(self, token: Optional[AccessToken]) -> bool:
        if token is None:
            return False
        max_age = self._settings.token_ttl_seconds - self._settings.token_refresh_margin_seconds
        return (self._clock() - token.issued_at) < max_age

    def get_access_token(self) -> AccessToken:
        token = self._token
        if self._is_fresh(token):
            return token

        with self._lock:
            # Another thread may have refreshed while we waited.
            if self._is_fresh(self._token):
                return self._token
            self._token = self._request_token()
            return self._token

    def _request_token(self) -> AccessToken:
        missing = self._settings.missing_credentials()
        if missing:
            raise AuthenticationError(
                "Missing Salesforce credentials: " + ", ".join(missing)
            )

        logger.info("🔗 Requesting Salesforce access token for %s", self._settings.username)
        try:
            session_id, sf_instance = self._login(
                username=self._settings.username,
                consumer_key=self._settings.consumer_key,
                privatekey=self._settings.private_key,
                domain=login_domain(self._settings.login_url),
                sf_version=self._settings.api_version,
            )
        except SalesforceAuthenticationFailed as e:
            raise AuthenticationError(f"Salesforce authentication failed: {e.message}") from e
        except requests.RequestException as e:
            raise TransportError(f"Salesforce login request failed: {e}") from e

        instance_url = sf_instance if sf_instance.startswith("http") else f"https://{sf_instance}"
        logger.info("✅ Connected to %s", instance_url)
        return AccessToken(session_id, instance_url.rstrip("/"), self._clock())

    def invalidate(self) -> bool:
        with self._lock:
            had_token = self._token is not None
            self._token = None
        return had_token

    def status(self) -> dict:
        token = self._token
        if token is None:
            return {"authenticated": False, "username": self._settings.username or None}
        return {
            "authenticated": self._is_fresh(token),
            "username": self._settings.username,
            "instance_url": token.instance_url,
            "age_minutes": round((self._clock() - token.issued_at) / 60, 1),
        }


_lock = threading.Lock()
_token_provider: Optional[SalesforceTokenProvider] = None
_tooling_client = None


def get_token_provider() -> SalesforceTokenProvider:
    global _token_provider
    with _lock:
        if _token_provider is None:
            _token_provider = SalesforceTokenProvider(get_settings())
        return _token_provider


def get_tooling_client() -> ToolingApiClient:
    """Return the process-wide Tooling API client bound to the shared token provider."""
    global _tooling_client
    provider = get_token_provider()
    with _lock:
        if _tooling_client is None:
            settings = get_settings()
            _tooling_client = ToolingApiClient(
                provider,
                api_version=settings.api_version,
                timeout=settings.request_timeout_seconds,
            )
        return _tooling_client


def clear_connection_cache():
    """Drop the cached token and client to force a new login on the next call"""
    global _token_provider, _tooling_client
    with _lock:
        _token_provider = None
        _tooling_client = None
