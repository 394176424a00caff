"""OAuth2 authentication for the Azure Resource Graph API.

Handles token acquisition, refresh, persistence, and expiry tracking.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

import httpx

from azure_vminfo.config import Config
from azure_vminfo.flows import (
    AuthEndpoints,
    ChallengeHandler,
    DeviceCodeCallback,
    client_credentials_flow,
    device_code_flow,
    interactive_flow,
    refresh_flow,
)
from azure_vminfo.models.auth import (
    Interactive,
    ServicePrincipal,
    Token,
    TokenRecord,
    TokenStatus,
    UserDeviceCode,
    utcnow,
)
from azure_vminfo.token_store import TokenStore
from azure_vminfo.utils.errors import AuthDenied, AuthError

logger = logging.getLogger(__name__)

AnyCredential = UserDeviceCode | ServicePrincipal | Interactive


class AuthManager:
    """Manages OAuth2 access tokens for the Resource Graph API.

    The token store is both a read-through cache and the write target: every
    token obtained by a flow or a refresh is persisted before it is returned.
    """

    def __init__(
        self,
        config: Config,
        store: TokenStore | None = None,
        *,
        on_device_code: DeviceCodeCallback | None = None,
        on_challenge: ChallengeHandler | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._store = store or TokenStore(config.paths.token_file)
        self._endpoints = AuthEndpoints(
            authority_host=config.settings.authority_host,
            resource_endpoint=config.settings.resource_endpoint,
        )
        self._on_device_code = on_device_code
        self._on_challenge = on_challenge
        self._sleep = sleep
        self._clock = clock
        self._http = httpx.Client(timeout=config.settings.http_timeout)

    @property
    def store(self) -> TokenStore:
        return self._store

    def get_valid_token(self, credential: AnyCredential) -> Token:
        """Get a usable token, refreshing or re-acquiring if needed.

        Args:
            credential: The identity to authenticate as.

        Returns:
            A token that is valid for at least the expiry buffer.
        """
        record = self._store.load()
        if record is not None and record.matches(credential):
            token = record.token
            if token.is_usable(self._clock()):
                return token

            if token.refresh_token:
                try:
                    return self.refresh(credential, token.refresh_token)
                except AuthError as e:
                    logger.warning(f"Token refresh failed, logging in again: {e}")
        elif record is not None:
            logger.info(
                f"Stored token belongs to a different {record.kind} login; ignoring it"
            )

        return self.acquire_token(credential)

    def acquire_token(self, credential: AnyCredential) -> Token:
        """Run the full login flow for the credential's kind and persist the result."""
        logger.info(f"Acquiring token via {credential.kind} flow")
        if isinstance(credential, ServicePrincipal):
            token = client_credentials_flow(
                self._http, self._endpoints, credential, clock=self._clock
            )
        elif isinstance(credential, UserDeviceCode):
            token = device_code_flow(
                self._http,
                self._endpoints,
                credential,
                notify=self._on_device_code or _log_device_code,
                sleep=self._sleep,
                clock=self._clock,
                fallback_interval=self._config.settings.device_code_interval,
            )
        elif isinstance(credential, Interactive):
            if self._on_challenge is None:
                raise AuthDenied(
                    "Interactive login needs a browser; run `vminfo --login --interactive`"
                )
            token = interactive_flow(
                self._http,
                self._endpoints,
                credential,
                challenge=self._on_challenge,
                clock=self._clock,
            )
        else:
            raise TypeError(f"Unsupported credential type: {type(credential).__name__}")

        self._save(credential, token)
        return token

    def refresh(self, credential: AnyCredential, refresh_token: str) -> Token:
        """Exchange a refresh token and persist the new token."""
        logger.info("Access token expired; refreshing")
        token = refresh_flow(
            self._http, self._endpoints, credential, refresh_token, clock=self._clock
        )
        self._save(credential, token)
        return token

    def logout(self) -> bool:
        """Forget the persisted token. Safe to call when nothing is stored."""
        return self._store.clear()

    def get_status(self, credential: AnyCredential | None = None) -> TokenStatus:
        """Get the persisted token status."""
        record = self._store.load()
        if record is None or (credential is not None and not record.matches(credential)):
            return TokenStatus(has_token=False, is_expired=True)

        now = self._clock()
        expires_at = record.token.expires_at
        is_expired = not record.token.is_usable(now)
        seconds_remaining = None
        if not is_expired:
            seconds_remaining = int((expires_at - now).total_seconds())

        return TokenStatus(
            has_token=True,
            is_expired=is_expired,
            kind=record.kind,
            expires_at=expires_at,
            seconds_remaining=seconds_remaining,
        )

    def _save(self, credential: AnyCredential, token: Token) -> None:
        self._store.save(
            TokenRecord(
                kind=credential.kind,
                tenant_id=credential.tenant_id,
                client_id=credential.client_id,
                token=token,
                saved_at=self._clock(),
            )
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()


def _log_device_code(details) -> None:
    logger.warning(
        details.message
        or f"Open {details.verification_uri} and enter the code {details.user_code}"
    )
