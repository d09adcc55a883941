"""Thin Tooling API gateway: authenticated REST calls with classified errors.

No retries happen here. Callers decide which calls are safe to repeat.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from app.services.errors import RemoteApiError, TransportError, ValidationError

logger = logging.getLogger(__name__)

_METHODS = {"get", "post", "patch", "delete"}


class ToolingApiClient:
    def __init__(self, token_provider, api_version: str = "59.0", timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.token_provider = token_provider
        self.api_version = str(api_version).lstrip("v")
        self.timeout = timeout
        self.session = session or requests.Session()

    def call(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
             params: Optional[Dict[str, Any]] = None) -> Any:
        """Issue one request against ``/services/data/vXX.X{path}``.

        Args:
            method: get, post, patch or delete.
            path: Tooling path, e.g. ``/tooling/sobjects/ApexClass/``.
            body: JSON body for post/patch.
            params: Query string parameters.

        Returns:
            Parsed JSON, or None for empty (204) responses.
        """
        resp = self._send(method, path, body, params)
        if resp.status_code == 204 or not resp.content:
            return None
        return _parse_body(resp)

    def _send(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
              params: Optional[Dict[str, Any]] = None) -> requests.Response:
        method = method.lower()
        if method not in _METHODS:
            raise ValidationError(f"Unsupported HTTP method: {method}")
        if not path.startswith("/tooling/"):
            raise ValidationError(f"Tooling API path must start with /tooling/: {path}")

        token = self.token_provider.get_access_token()
        url = f"{token.instance_url}/services/data/v{self.api_version}{path}"
        headers = {
            "Authorization": f"Bearer {token.access_token}",
            "Accept": "application/json",
        }

        try:
            resp = self.session.request(
                method.upper(),
                url,
                headers=headers,
                json=body if method in ("post", "patch") else None,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method.upper()} {path} failed: {e}") from e

        logger.debug("%s %s -> %s", method.upper(), path, resp.status_code)

        if not 200 <= resp.status_code < 300:
            raise RemoteApiError(resp.status_code, _parse_body(resp))
        return resp

    # -------------------------------------------------------------------------
    # sObject helpers
    # -------------------------------------------------------------------------

    def query(self, soql: str) -> List[Dict[str, Any]]:
        """Run a Tooling SOQL query and return its records without ``attributes``."""
        clean = " ".join(soql.strip().split())
        result = self.call("get", "/tooling/query/", params={"q": clean}) or {}
        records = result.get("records", [])
        for record in records:
            record.pop("attributes", None)
        return records

    def create(self, sobject: str, fields: Dict[str, Any]) -> str:
        resp = self._send("post", f"/tooling/sobjects/{sobject}/", fields)
        result = _parse_body(resp) if resp.content else {}
        if not isinstance(result, dict):
            raise RemoteApiError(resp.status_code, result, f"Creating {sobject} returned no record id")
        if not result.get("success", True) or not result.get("id"):
            reason = result.get("errors") or result
            raise RemoteApiError(resp.status_code, result, f"Creating {sobject} failed: {reason}")
        return result["id"]

    def update(self, sobject: str, record_id: str, fields: Dict[str, Any]) -> None:
        self.call("patch", f"/tooling/sobjects/{sobject}/{record_id}", fields)

    def delete(self, sobject: str, record_id: str) -> None:
        self.call("delete", f"/tooling/sobjects/{sobject}/{record_id}")

    def retrieve(self, sobject: str, record_id: str) -> Dict[str, Any]:
        return self.call("get", f"/tooling/sobjects/{sobject}/{record_id}") or {}


def _parse_body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text
