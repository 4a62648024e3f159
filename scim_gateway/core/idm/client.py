"""Low-level HTTP client for the IDM REST API.

Handles service-account authentication, token management, and HTTP operations.
Request-scoped callers pass their own bearer token explicitly with ``token=``.
"""
from __future__ import annotations
import os
from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta

import requests

from .exceptions import IdmAPIError

# (connect, read) seconds
REQUEST_TIMEOUT = (10, 30)
API_VERSION_HEADER = "resource=1.0"


class IdmClient:
    """HTTP client for the IDM REST API with automatic service-token refresh.

    Two ways of authenticating a call:
    - ``token=...`` on the call itself (caller's bearer token, used by the
      SCIM request path)
    - the service account configured via ``authenticate_service_account``
      (used for configuration reads during schema rebuilds)

    Usage:
        client = IdmClient("http://idm:8080")
        client.authenticate_service_account(token_url, "scim-gateway", "secret")
        response = client.get("/openidm/config/managed")
    """

    def __init__(self, base_url: Optional[str] = None):
        """Initialize IDM client.

        Args:
            base_url: IDM base URL (defaults to IDM_BASE_URL env var)
        """
        self.base_url = (base_url or os.environ.get("IDM_BASE_URL", "http://idm:8080")).rstrip("/")
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._auth_params: Dict[str, Any] = {}

    def authenticate_service_account(self, token_url: str, client_id: str, client_secret: str) -> str:
        """Authenticate as service account and store credentials for auto-refresh.

        Args:
            token_url: OAuth 2.0 token endpoint
            client_id: Service account client ID
            client_secret: Service account client secret

        Returns:
            Access token
        """
        self._auth_params = {
            "token_url": token_url,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        self._refresh_service_token()
        return self._token

    def set_static_token(self, token: str, expires_in: int = 3600) -> None:
        """Use a pre-obtained token for service calls (CLI and tests)."""
        self._auth_params = {}
        self._token = token
        self._token_expires_at = datetime.now() + timedelta(seconds=expires_in)

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def _refresh_service_token(self) -> None:
        token, expires_in = self._get_service_account_token(**self._auth_params)
        self._token = token
        # Renew slightly before the server-side expiry
        self._token_expires_at = datetime.now() + timedelta(seconds=max(expires_in - 10, 10))

    def _ensure_authenticated(self) -> str:
        """Return a valid service token, refreshing if necessary."""
        if not self._token or not self._token_expires_at:
            if not self._auth_params:
                raise IdmAPIError(401, "Not authenticated - call authenticate_service_account first", "")
            self._refresh_service_token()
        elif datetime.now() >= self._token_expires_at:
            if not self._auth_params:
                raise IdmAPIError(401, "Service token expired and no credentials to renew it", "")
            self._refresh_service_token()
        return self._token

    def _headers(self, token: Optional[str], extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        bearer = token if token else self._ensure_authenticated()
        headers = dict(extra or {})
        headers["Authorization"] = f"Bearer {bearer}"
        headers["Accept-API-Version"] = API_VERSION_HEADER
        headers.setdefault("Accept", "application/json")
        return headers

    def get(self, path: str, params: Optional[Dict] = None, token: Optional[str] = None, **kwargs) -> requests.Response:
        """Execute GET request.

        Args:
            path: API endpoint path (e.g., "/openidm/managed/alpha_user")
            params: Query parameters
            token: Caller bearer token; the service token is used when omitted
            **kwargs: Additional arguments for requests.get

        Returns:
            Response object

        Raises:
            IdmAPIError: On HTTP error or transport failure
        """
        url = f"{self.base_url}{path}"
        headers = self._headers(token, kwargs.pop("headers", None))
        try:
            resp = requests.get(url, params=params, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as exc:
            raise IdmAPIError(0, f"Request failed: {exc}", url) from exc
        self._handle_error(resp, url)
        return resp

    def post(self, path: str, json: Optional[Dict] = None, params: Optional[Dict] = None,
             token: Optional[str] = None, **kwargs) -> requests.Response:
        """Execute POST request (IDM actions such as ``_action=create``).

        Raises:
            IdmAPIError: On HTTP error or transport failure
        """
        url = f"{self.base_url}{path}"
        headers = self._headers(token, kwargs.pop("headers", None))
        try:
            resp = requests.post(url, json=json, params=params, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as exc:
            raise IdmAPIError(0, f"Request failed: {exc}", url) from exc
        self._handle_error(resp, url)
        return resp

    def put(self, path: str, json: Optional[Dict] = None, token: Optional[str] = None, **kwargs) -> requests.Response:
        """Execute PUT request (full replacement of a managed object).

        Raises:
            IdmAPIError: On HTTP error or transport failure
        """
        url = f"{self.base_url}{path}"
        headers = self._headers(token, kwargs.pop("headers", None))
        try:
            resp = requests.put(url, json=json, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as exc:
            raise IdmAPIError(0, f"Request failed: {exc}", url) from exc
        self._handle_error(resp, url)
        return resp

    def patch(self, path: str, json: Optional[List[Dict]] = None, token: Optional[str] = None,
              **kwargs) -> requests.Response:
        """Execute PATCH request with a list of IDM patch operations.

        Raises:
            IdmAPIError: On HTTP error or transport failure
        """
        url = f"{self.base_url}{path}"
        headers = self._headers(token, kwargs.pop("headers", None))
        try:
            resp = requests.patch(url, json=json, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as exc:
            raise IdmAPIError(0, f"Request failed: {exc}", url) from exc
        self._handle_error(resp, url)
        return resp

    def delete(self, path: str, token: Optional[str] = None, **kwargs) -> requests.Response:
        """Execute DELETE request.

        Raises:
            IdmAPIError: On HTTP error or transport failure
        """
        url = f"{self.base_url}{path}"
        headers = self._headers(token, kwargs.pop("headers", None))
        try:
            resp = requests.delete(url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as exc:
            raise IdmAPIError(0, f"Request failed: {exc}", url) from exc
        self._handle_error(resp, url)
        return resp

    def _get_service_account_token(self, token_url: str, client_id: str, client_secret: str) -> tuple[str, int]:
        """Fetch a service account token using client credentials flow."""
        data = {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        }
        try:
            resp = requests.post(token_url, data=data, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as exc:
            raise IdmAPIError(0, f"Token request failed: {exc}", token_url) from exc
        if resp.status_code != 200:
            raise IdmAPIError(resp.status_code, resp.text, token_url)
        payload = resp.json()
        return payload["access_token"], int(payload.get("expires_in", 60))

    def _handle_error(self, resp: requests.Response, url: str) -> None:
        """Raise IdmAPIError if the response status indicates an error."""
        if resp.status_code >= 400:
            raise IdmAPIError(resp.status_code, resp.text, url)
