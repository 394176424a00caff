"""OAuth2 acquisition flows against the Microsoft identity platform.

Each flow is a plain function from a credential to a :class:`Token`. None of
them touch the token store; persisting the result is the caller's job.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
from pydantic import BaseModel, ValidationError

from azure_vminfo.models.auth import (
    DeviceCodeResponse,
    Interactive,
    ServicePrincipal,
    Token,
    TokenResponse,
    UserDeviceCode,
    utcnow,
)
from azure_vminfo.utils.errors import (
    AuthDenied,
    AuthError,
    AuthExpired,
    AuthFlowTimedOut,
    NetworkFailure,
)

logger = logging.getLogger(__name__)

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
# RFC 8628 §3.5: add 5 seconds on every slow_down
SLOW_DOWN_STEP = 5

DeviceCodeCallback = Callable[[DeviceCodeResponse], None]
# Receives the authorize URL, returns the redirect URL (or bare code), None to abort
ChallengeHandler = Callable[[str], str | None]


class DeviceFlowState(str, Enum):
    REQUESTED = "requested"
    POLLING = "polling"
    GRANTED = "granted"
    DENIED = "denied"
    EXPIRED = "expired"


class AuthEndpoints(BaseModel):
    """Identity platform URLs and the Resource Manager scopes."""
    authority_host: str = "https://login.microsoftonline.com"
    resource_endpoint: str = "https://management.azure.com"

    def _base(self, tenant_id: str) -> str:
        return f"{self.authority_host.rstrip('/')}/{tenant_id}/oauth2/v2.0"

    def token_url(self, tenant_id: str) -> str:
        return f"{self._base(tenant_id)}/token"

    def device_code_url(self, tenant_id: str) -> str:
        return f"{self._base(tenant_id)}/devicecode"

    def authorize_url(self, tenant_id: str) -> str:
        return f"{self._base(tenant_id)}/authorize"

    @property
    def user_scope(self) -> str:
        return f"{self.resource_endpoint.rstrip('/')}/user_impersonation offline_access"

    @property
    def app_scope(self) -> str:
        return f"{self.resource_endpoint.rstrip('/')}/.default"


# ── HTTP helpers ──────────────────────────────────────────────────────

def _post_form(http: httpx.Client, url: str, data: dict[str, str]) -> httpx.Response:
    try:
        return http.post(url, data=data)
    except httpx.HTTPError as e:
        raise NetworkFailure(f"Request to identity provider failed: {e}") from e


def _oauth_error(response: httpx.Response) -> tuple[str, str]:
    """Pull (error, error_description) out of an OAuth error body."""
    try:
        body = response.json()
    except Exception:
        return "", response.text
    if not isinstance(body, dict):
        return "", response.text
    return str(body.get("error", "")), str(body.get("error_description", response.text))


def _raise_for_token_error(
    response: httpx.Response, failure: type[AuthError], context: str
) -> None:
    if response.status_code == 200:
        return
    error, description = _oauth_error(response)
    if response.status_code == 429 or response.status_code >= 500:
        raise NetworkFailure(
            f"{context} failed (HTTP {response.status_code}): {description}",
            status_code=response.status_code,
        )
    if error in ("access_denied", "authorization_declined"):
        raise AuthDenied(f"{context} was declined: {description}")
    raise failure(f"{context} failed (HTTP {response.status_code}): {error or description}")


def _parse_token(response: httpx.Response, now: datetime | None = None) -> Token:
    try:
        return TokenResponse(**response.json()).to_token(now)
    except (ValueError, TypeError, ValidationError) as e:
        raise AuthError(f"Could not parse token response: {e}") from e


# ── Flows ─────────────────────────────────────────────────────────────

def client_credentials_flow(
    http: httpx.Client,
    endpoints: AuthEndpoints,
    credential: ServicePrincipal,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> Token:
    """Exchange a client ID and secret for an app token (RFC 6749 §4.4)."""
    response = _post_form(
        http,
        endpoints.token_url(credential.tenant_id),
        {
            "grant_type": "client_credentials",
            "client_id": credential.client_id,
            "client_secret": credential.client_secret,
            "scope": endpoints.app_scope,
        },
    )
    _raise_for_token_error(response, AuthError, "Service principal login")
    return _parse_token(response, clock())


def device_code_flow(
    http: httpx.Client,
    endpoints: AuthEndpoints,
    credential: UserDeviceCode,
    *,
    notify: DeviceCodeCallback,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], datetime] = utcnow,
    fallback_interval: int = 5,
) -> Token:
    """Run the device authorization grant (RFC 8628) to completion.

    Polls at the interval the provider asks for until the user completes the
    sign-in, declines it, or the device code expires.

    Raises:
        AuthDenied: The user declined the request.
        AuthFlowTimedOut: The device code expired before the user finished.
        NetworkFailure: Transport error talking to the provider.
    """
    response = _post_form(
        http,
        endpoints.device_code_url(credential.tenant_id),
        {"client_id": credential.client_id, "scope": endpoints.user_scope},
    )
    _raise_for_token_error(response, AuthError, "Device code request")
    try:
        details = DeviceCodeResponse(**response.json())
    except (ValueError, TypeError, ValidationError) as e:
        raise AuthError(f"Could not parse device code response: {e}") from e

    state = DeviceFlowState.REQUESTED
    deadline = clock() + timedelta(seconds=details.expires_in)
    interval = details.interval or fallback_interval
    logger.info(f"Device code flow {state.value}; expires in {details.expires_in}s")
    notify(details)

    state = DeviceFlowState.POLLING
    token_url = endpoints.token_url(credential.tenant_id)
    while True:
        sleep(interval)
        if clock() >= deadline:
            state = DeviceFlowState.EXPIRED
            break

        poll = _post_form(
            http,
            token_url,
            {
                "grant_type": DEVICE_CODE_GRANT,
                "client_id": credential.client_id,
                "device_code": details.device_code,
            },
        )
        if poll.status_code == 200:
            state = DeviceFlowState.GRANTED
            logger.info(f"Device code flow {state.value}")
            return _parse_token(poll, clock())

        error, description = _oauth_error(poll)
        if error == "authorization_pending":
            logger.debug("Device code flow still pending")
            continue
        if error == "slow_down":
            interval += SLOW_DOWN_STEP
            logger.info(f"Provider asked to slow down; polling every {interval}s")
            continue
        if error in ("authorization_declined", "access_denied"):
            state = DeviceFlowState.DENIED
            logger.info(f"Device code flow {state.value}")
            raise AuthDenied(f"Device code login was declined: {description}")
        if error in ("expired_token", "code_expired"):
            state = DeviceFlowState.EXPIRED
            break
        _raise_for_token_error(poll, AuthError, "Device code login")

    logger.info(f"Device code flow {state.value}")
    raise AuthFlowTimedOut(
        f"Device code expired after {details.expires_in}s before the login was completed"
    )


def _pkce_pair() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def _parse_redirect(redirect: str) -> dict[str, str]:
    """Accept a full redirect URL, a bare query string, or just the code."""
    redirect = redirect.strip()
    query = urlparse(redirect).query if "://" in redirect else redirect.lstrip("?")
    if "=" not in query:
        return {"code": redirect}
    return {k: v[0] for k, v in parse_qs(query).items()}


def interactive_flow(
    http: httpx.Client,
    endpoints: AuthEndpoints,
    credential: Interactive,
    *,
    challenge: ChallengeHandler,
    clock: Callable[[], datetime] = utcnow,
) -> Token:
    """Authorization-code login with PKCE; the browser part is ``challenge``.

    Raises:
        AuthDenied: The user aborted or refused consent, or state did not match.
        AuthFlowTimedOut: The challenge handler timed out.
    """
    verifier, code_challenge = _pkce_pair()
    state = secrets.token_urlsafe(16)
    authorize_url = endpoints.authorize_url(credential.tenant_id) + "?" + urlencode({
        "client_id": credential.client_id,
        "response_type": "code",
        "redirect_uri": credential.redirect_uri,
        "response_mode": "query",
        "scope": endpoints.user_scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    })

    try:
        redirect = challenge(authorize_url)
    except TimeoutError as e:
        raise AuthFlowTimedOut(f"Interactive login timed out: {e}") from e
    if not redirect:
        raise AuthDenied("Interactive login was aborted")

    params = _parse_redirect(redirect)
    if "error" in params:
        description = params.get("error_description", params["error"])
        if params["error"] in ("access_denied", "consent_required"):
            raise AuthDenied(f"Interactive login was declined: {description}")
        raise AuthError(f"Interactive login failed: {description}")
    if "state" in params and params["state"] != state:
        raise AuthDenied("Interactive login returned a mismatched state parameter")
    if "code" not in params:
        raise AuthError("Interactive login redirect carried no authorization code")

    response = _post_form(
        http,
        endpoints.token_url(credential.tenant_id),
        {
            "grant_type": "authorization_code",
            "client_id": credential.client_id,
            "code": params["code"],
            "redirect_uri": credential.redirect_uri,
            "code_verifier": verifier,
            "scope": endpoints.user_scope,
        },
    )
    _raise_for_token_error(response, AuthError, "Interactive login")
    return _parse_token(response, clock())


def refresh_flow(
    http: httpx.Client,
    endpoints: AuthEndpoints,
    credential: UserDeviceCode | ServicePrincipal | Interactive,
    refresh_token: str,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> Token:
    """Trade a refresh token for a new access token.

    Raises:
        AuthExpired: The refresh token was rejected (revoked or expired).
    """
    data = {
        "grant_type": "refresh_token",
        "client_id": credential.client_id,
        "refresh_token": refresh_token,
    }
    if isinstance(credential, ServicePrincipal):
        data["client_secret"] = credential.client_secret
        data["scope"] = endpoints.app_scope
    else:
        data["scope"] = endpoints.user_scope

    response = _post_form(http, endpoints.token_url(credential.tenant_id), data)
    _raise_for_token_error(response, AuthExpired, "Token refresh")
    token = _parse_token(response, clock())
    if not token.refresh_token:
        token = token.model_copy(update={"refresh_token": refresh_token})
    return token
