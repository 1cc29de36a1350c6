"""Exception taxonomy for the Probable trading client.

Remote rejections are classified once, when the response is wrapped, so
callers decide on retries by exception type instead of message matching.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

CREDENTIAL_EXPIRED_CODE = "PAS-4008"

_CREDENTIAL_EXPIRED_MARKERS = ("Invalid API key", "API key has expired", CREDENTIAL_EXPIRED_CODE)
_INSUFFICIENT_BALANCE_MARKERS = ("insufficient", "not enough balance")


class ProbableError(Exception):
    """Base class for every error raised by this package."""


class PreconditionError(ProbableError):
    """A local precondition failed before any signature or network call."""


class SignerMismatchError(PreconditionError):
    """The order signer is not the address controlling the wallet key."""

    def __init__(self, signer: str, wallet_address: str | None):
        super().__init__(
            f"signer does not match: order signer {signer} != wallet {wallet_address}"
        )
        self.signer = signer
        self.wallet_address = wallet_address


class ChainError(ProbableError):
    """JSON-RPC error or reverted transaction."""


class ApiError(ProbableError):
    """Remote rejection from the order-entry service.

    Args:
        message: Human-readable description.
        status_code: HTTP status, if a response was received.
        code: Structured error code from the response body (e.g. ``PAS-4008``).
        response: The ``httpx.Response`` that was rejected.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        response: httpx.Response | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.response = response


class CredentialExpiredError(ApiError):
    """The API key was rejected as invalid or expired; regenerate and retry once."""


class InsufficientBalanceError(ApiError):
    """Collateral balance is too low for the order."""

    def __init__(
        self,
        required: Decimal | None = None,
        balance: Decimal | None = None,
        detail: str | None = None,
        **kwargs,
    ):
        parts = []
        if balance is not None:
            parts.append(f"current balance {balance}")
        if required is not None:
            parts.append(f"required {required}")
        message = "Insufficient collateral balance"
        if parts:
            message += ": " + ", ".join(parts)
        if detail:
            message += f" ({detail})"
        super().__init__(message, **kwargs)
        self.required = required
        self.balance = balance
        self.detail = detail


def extract_error(response: httpx.Response) -> tuple[str | None, str]:
    """Pull ``(code, message)`` out of an error response.

    Understands ``{"error": {"code", "message"}}`` and flat ``{"code", "message"}``
    bodies; otherwise falls back to a transport-level message.
    """
    code = None
    message = None
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            code = err.get("code")
            message = err.get("message")
        elif isinstance(err, str):
            message = err
        code = code or data.get("code")
        message = message or data.get("message")

    if not message:
        message = f"Request failed with status code {response.status_code}"
    return (str(code) if code is not None else None), str(message)


def is_credential_expired(code: str | None, message: str) -> bool:
    if code == CREDENTIAL_EXPIRED_CODE:
        return True
    return any(marker in message for marker in _CREDENTIAL_EXPIRED_MARKERS)


def is_insufficient_balance(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _INSUFFICIENT_BALANCE_MARKERS)


def error_from_response(response: httpx.Response, action: str) -> ApiError:
    """Wrap a non-2xx response in the matching ApiError subclass."""
    code, message = extract_error(response)
    kwargs = {"status_code": response.status_code, "code": code, "response": response}
    if is_credential_expired(code, message):
        return CredentialExpiredError(f"Failed to {action}: {message}", **kwargs)
    if is_insufficient_balance(message):
        return InsufficientBalanceError(detail=message, **kwargs)
    return ApiError(f"Failed to {action}: {message}", **kwargs)
