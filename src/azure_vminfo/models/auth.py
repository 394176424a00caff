"""Auth-related data models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator


# Buffer before expiry to trigger refresh (matches legacy 5-min behavior)
EXPIRY_BUFFER = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserDeviceCode(BaseModel):
    """A user signing in through the device-code flow."""
    kind: Literal["device_code"] = "device_code"
    tenant_id: str
    client_id: str

    model_config = {"frozen": True}


class ServicePrincipal(BaseModel):
    """An app registration using the client-credentials grant."""
    kind: Literal["service_principal"] = "service_principal"
    tenant_id: str
    client_id: str
    client_secret: str = Field(repr=False)

    model_config = {"frozen": True}


class Interactive(BaseModel):
    """A user signing in through a browser challenge (auth code + PKCE)."""
    kind: Literal["interactive"] = "interactive"
    tenant_id: str
    client_id: str
    redirect_uri: str = "http://localhost:8400"

    model_config = {"frozen": True}


Credential = Annotated[
    Union[UserDeviceCode, ServicePrincipal, Interactive],
    Field(discriminator="kind"),
]

CredentialKind = Literal["device_code", "service_principal", "interactive"]


class Token(BaseModel):
    """An access token with its optional refresh token and absolute expiry."""
    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    expires_at: datetime
    token_type: str = "Bearer"

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_usable(self, now: datetime | None = None) -> bool:
        """True while ``now`` is strictly before ``expires_at`` minus the buffer."""
        now = now or utcnow()
        return now + EXPIRY_BUFFER < self.expires_at


class TokenResponse(BaseModel):
    """Response from the Microsoft identity platform token endpoint."""
    access_token: str
    token_type: str = "Bearer"
    # v1 endpoints return these as strings; pydantic coerces them
    expires_in: int = 3600
    expires_on: int | None = None
    refresh_token: str | None = None
    scope: str | None = None

    def to_token(self, now: datetime | None = None) -> Token:
        now = now or utcnow()
        if self.expires_on:
            expires_at = datetime.fromtimestamp(self.expires_on, tz=timezone.utc)
        else:
            expires_at = now + timedelta(seconds=self.expires_in)
        return Token(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=expires_at,
            token_type=self.token_type,
        )


class DeviceCodeResponse(BaseModel):
    """Response from the device authorization endpoint (RFC 8628 §3.2)."""
    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int = 900
    interval: int | None = None
    message: str | None = None


class TokenRecord(BaseModel):
    """What the token store persists: the token plus who it belongs to."""
    kind: CredentialKind
    tenant_id: str
    client_id: str
    token: Token
    saved_at: datetime = Field(default_factory=utcnow)

    def matches(self, credential: UserDeviceCode | ServicePrincipal | Interactive) -> bool:
        return (
            self.kind == credential.kind
            and self.tenant_id == credential.tenant_id
            and self.client_id == credential.client_id
        )


class TokenStatus(BaseModel):
    """Current state of the persisted access token."""
    has_token: bool
    is_expired: bool
    kind: CredentialKind | None = None
    expires_at: datetime | None = None
    seconds_remaining: int | None = None
