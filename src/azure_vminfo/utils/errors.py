"""Error types and structured error handling for agent-friendly output."""

from __future__ import annotations

import json
import sys

from rich.console import Console

console = Console(stderr=True)


class VMInfoError(RuntimeError):
    """Base class for every error raised by azure-vminfo."""

    code = "RUNTIME_ERROR"
    needs_login = False
    transient = False


class AuthError(VMInfoError):
    """Authentication failed and the caller has to log in again."""

    code = "AUTH_ERROR"
    needs_login = True


class AuthExpired(AuthError):
    """Token is unusable and refresh / re-acquisition also failed."""

    code = "AUTH_EXPIRED"


class AuthDenied(AuthError):
    """The user declined the device-code or interactive challenge."""

    code = "AUTH_DENIED"


class AuthFlowTimedOut(AuthError):
    """Device-code polling ran past the provider's expiry."""

    code = "AUTH_TIMEOUT"


class NetworkFailure(VMInfoError):
    """Transport error or retryable HTTP status on any request."""

    code = "NETWORK_ERROR"
    transient = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidQuery(VMInfoError, ValueError):
    """Malformed regular expression, empty term list or rejected query."""

    code = "INVALID_QUERY"


class CacheCorrupt(VMInfoError):
    """Unreadable cache or token file. Recovered locally, never surfaced."""

    code = "CACHE_CORRUPT"


class PartialFetchAborted(VMInfoError):
    """A page failed mid-pagination; nothing was cached."""

    code = "PARTIAL_FETCH"

    def __init__(self, page: int, fetched: int, cause: Exception) -> None:
        super().__init__(
            f"Fetch aborted on page {page} after {fetched} records: {cause}"
        )
        self.page = page
        self.fetched = fetched
        self.cause = cause
        self.needs_login = getattr(cause, "needs_login", False)
        self.transient = getattr(cause, "transient", False)


_LOGIN_HINT = "Credentials need renewing — run `vminfo --login`"
_RETRY_HINT = "Transient failure — wait a moment and retry"

# Actionable hints keyed by error substring
_ERROR_HINTS: list[tuple[str, str]] = [
    ("401", _LOGIN_HINT),
    ("token", _LOGIN_HINT),
    ("unauthorized", _LOGIN_HINT),
    ("declined", "Login was declined — run `vminfo --login` and approve the request"),
    ("429", "Rate limited — wait a moment and retry"),
    ("rate limit", "Rate limited — wait a moment and retry"),
    ("throttl", "Rate limited — wait a moment and retry"),
    ("regular expression", "Check the pattern syntax or drop --match-regexp"),
    ("tenant_id", "Set AZURE_VMINFO_TENANT_ID or tenant_id in config.yaml"),
    ("client_id", "Set AZURE_VMINFO_CLIENT_ID or client_id in config.yaml"),
    ("client_secret", "Set AZURE_VMINFO_CLIENT_SECRET or client_secret in config.yaml"),
    ("timeout", "Request timed out — try again or check network connectivity"),
    ("connection", "Connection error — check network connectivity"),
]


def _get_hint(error_message: str) -> str | None:
    """Match an error message to an actionable hint."""
    lower = error_message.lower()
    for pattern, hint in _ERROR_HINTS:
        if pattern.lower() in lower:
            return hint
    return None


def _get_code(error: Exception, message: str) -> str:
    if isinstance(error, VMInfoError) and type(error) is not VMInfoError:
        return error.code

    lower = message.lower()
    if "401" in message or "unauthorized" in lower:
        return "AUTH_ERROR"
    if "429" in message or "rate limit" in lower:
        return "RATE_LIMITED"
    if "timeout" in lower:
        return "TIMEOUT"
    if "connection" in lower:
        return "CONNECTION_ERROR"
    return "RUNTIME_ERROR"


def handle_error(error: Exception) -> None:
    """Handle an error with structured output to stdout and human-readable output to stderr.

    Outputs a JSON error object to stdout for agent consumption:
    {"error": true, "code": "AUTH_EXPIRED", "message": "...", "hint": "..."}

    Also prints a human-readable error to stderr.
    """
    message = str(error)
    code = _get_code(error, message)

    if getattr(error, "needs_login", False):
        hint: str | None = _LOGIN_HINT
    elif getattr(error, "transient", False):
        hint = _get_hint(message) or _RETRY_HINT
    else:
        hint = _get_hint(message)

    # Structured JSON to stdout for agents
    error_obj: dict[str, object] = {
        "error": True,
        "code": code,
        "message": message,
    }
    if hint:
        error_obj["hint"] = hint

    json.dump(error_obj, sys.stdout)
    sys.stdout.write("\n")

    # Human-readable to stderr
    console.print(f"[red]Error:[/red] {message}")
    if hint:
        console.print(f"[dim]Hint: {hint}[/dim]")
