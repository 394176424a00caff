"""HTTP client for the Azure Resource Graph API.

Handles bearer-token injection and maps HTTP failures onto typed errors.
Nothing here retries: a failed request fails the call.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from azure_vminfo.auth import AnyCredential, AuthManager
from azure_vminfo.config import Config
from azure_vminfo.models.query import QueryRequest, QueryResponse
from azure_vminfo.utils.errors import (
    AuthDenied,
    AuthExpired,
    InvalidQuery,
    NetworkFailure,
)

logger = logging.getLogger(__name__)

RESOURCE_GRAPH_PATH = "/providers/Microsoft.ResourceGraph/resources"
RESOURCE_GRAPH_API_VERSION = "2021-03-01"

_EXPIRED_CODES = {"ExpiredAuthenticationToken", "InvalidAuthenticationToken", "AuthenticationFailed"}
_DENIED_CODES = {"AccessDenied", "AuthorizationFailed", "Forbidden"}


class ResourceGraphClient:
    """Posts KQL queries to Resource Graph on behalf of one credential."""

    def __init__(
        self,
        config: Config,
        auth: AuthManager,
        credential: AnyCredential,
        verbose: bool = False,
    ) -> None:
        self._config = config
        self._auth = auth
        self._credential = credential
        self._verbose = verbose
        self._url = config.settings.resource_endpoint.rstrip("/") + RESOURCE_GRAPH_PATH
        self._http = httpx.Client(timeout=config.settings.http_timeout)

    def query_page(self, request: QueryRequest) -> QueryResponse:
        """Fetch one page of results.

        Raises:
            AuthExpired: The token was rejected.
            AuthDenied: The identity lacks read access.
            InvalidQuery: Resource Graph rejected the query.
            NetworkFailure: Transport error, throttling, server error, or a bad body.
        """
        body = request.to_body()
        headers = self._build_headers()

        if self._verbose:
            logger.info(
                f"POST {self._url} $skip={request.options.skip} $top={request.options.top}"
            )
            logger.info(f"Query: {request.query}")

        try:
            response = self._http.post(
                self._url,
                headers=headers,
                json=body,
                params={"api-version": RESOURCE_GRAPH_API_VERSION},
            )
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Request to Resource Graph failed: {e}") from e

        if self._verbose:
            logger.info(f"Response: {response.status_code}")

        if response.status_code >= 400:
            self._raise_for_status(response)

        try:
            return QueryResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise NetworkFailure(
                f"Could not parse Resource Graph response: {e}",
                status_code=response.status_code,
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        code, message = _azure_error(response)
        detail = f"{code}: {message}" if code else message

        if status == 401 or code in _EXPIRED_CODES:
            raise AuthExpired(f"Resource Graph rejected the token (HTTP {status}): {detail}")
        if status == 403 or code in _DENIED_CODES:
            raise AuthDenied(f"Access denied by Resource Graph (HTTP {status}): {detail}")
        if status == 400:
            raise InvalidQuery(f"Resource Graph rejected the query: {detail}")
        raise NetworkFailure(f"API error (HTTP {status}): {detail}", status_code=status)

    def _build_headers(self) -> dict[str, str]:
        """Build request headers with a valid bearer token."""
        token = self._auth.get_valid_token(self._credential)
        return {
            "Authorization": f"{token.token_type or 'Bearer'} {token.access_token}",
            "Content-Type": "application/json",
        }

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()
        self._auth.close()


def _azure_error(response: httpx.Response) -> tuple[str, str]:
    """Extract ``{"error": {"code", "message"}}`` from an ARM error body."""
    try:
        body: Any = response.json()
    except Exception:
        return "", response.text
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("code", "")), str(error.get("message", response.text))
    return "", response.text
