from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from ..config import THROTTLE_CODES, TOKEN_INVALID_CODE

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    AUTH_EXPIRED = "auth_expired"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK_FAILURE = "network_failure"
    UPSTREAM_ERROR = "upstream_error"
    UNKNOWN = "unknown"


MSG_AUTH_EXPIRED = "Access token expired or invalid. Please refresh your token."
MSG_RATE_LIMITED_HTTP = "Rate limit reached. Please wait a few minutes and try again."
MSG_RATE_LIMITED_EMBEDDED = "Rate limit reached. Please wait a moment and try again."
MSG_TIMEOUT = "Request timeout. Please check your internet connection and try again."
MSG_EMBEDDED_FALLBACK = "Facebook API error occurred"
MSG_READ_FALLBACK = "An error occurred while fetching data."
MSG_WRITE_FALLBACK = "An error occurred while updating data."
MSG_UNEXPECTED = "An unexpected error occurred."
MSG_EXHAUSTED = "Request failed after multiple attempts."


class NormalizedError(Exception):
    """The one error type callers of the Graph executor ever observe."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None,
        error_subcode: Optional[int] = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.error_subcode = error_subcode
        self.attempts = attempts

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"NormalizedError({self.kind.name}, {self.message!r})"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


# -------------------------
# Raw failure shapes
# -------------------------
@dataclass(frozen=True)
class HttpFailure:
    """Non-2xx response. ``payload`` is the decoded JSON body, if any."""
    status: int
    payload: Optional[Any] = None
    text: str = ""

    @property
    def error_object(self) -> Optional[Dict[str, Any]]:
        if isinstance(self.payload, dict) and "error" in self.payload:
            err = self.payload.get("error")
            return err if isinstance(err, dict) else {}
        return None


@dataclass(frozen=True)
class EmbeddedError:
    """Error object returned inside a 2xx body."""
    code: Optional[int]
    message: Optional[str]
    subcode: Optional[int] = None

    @staticmethod
    def from_payload(err: Any) -> "EmbeddedError":
        if not isinstance(err, dict):
            return EmbeddedError(code=None, message=str(err) if err else None)
        return EmbeddedError(
            code=_as_int(err.get("code")),
            message=err.get("message") or None,
            subcode=_as_int(err.get("error_subcode")),
        )


@dataclass(frozen=True)
class TransportTimeout:
    message: str = ""


@dataclass(frozen=True)
class TransportError:
    message: str = ""
    connection: bool = False


RawFailure = Union[HttpFailure, EmbeddedError, TransportTimeout, TransportError]


@dataclass(frozen=True)
class Success:
    payload: Any


@dataclass(frozen=True)
class Failure:
    raw: RawFailure


DecodeResult = Union[Success, Failure]


# -------------------------
# Classification
# -------------------------
@dataclass(frozen=True)
class Classification:
    kind: ErrorKind
    message: str
    retryable: bool = False
    status_code: Optional[int] = None
    error_code: Optional[int] = None
    error_subcode: Optional[int] = None

    def to_error(self, attempts: int = 0) -> NormalizedError:
        return NormalizedError(
            self.kind,
            self.message,
            status_code=self.status_code,
            error_code=self.error_code,
            error_subcode=self.error_subcode,
            attempts=attempts,
        )


def _as_int(v: Any) -> Optional[int]:
    if v is None or isinstance(v, bool):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def classify(raw: RawFailure, *, write: bool = False) -> Classification:
    """
    Map a raw failure to an ErrorKind and a user-facing message.

    Rules apply in priority order: HTTP 401, token-invalid code, HTTP 429,
    throttle codes, transport timeout, any other error object, anything else.
    Only the 429, timeout and uncategorized transport paths are retryable;
    throttle codes carried in an error body surface immediately.
    """
    status = raw.status if isinstance(raw, HttpFailure) else None
    embedded: Optional[EmbeddedError] = None
    if isinstance(raw, EmbeddedError):
        embedded = raw
    elif isinstance(raw, HttpFailure) and raw.error_object is not None:
        embedded = EmbeddedError.from_payload(raw.error_object)
    code = embedded.code if embedded else None
    subcode = embedded.subcode if embedded else None

    if status == 401:
        return Classification(ErrorKind.AUTH_EXPIRED, MSG_AUTH_EXPIRED, status_code=status, error_code=code)
    if code == TOKEN_INVALID_CODE:
        return Classification(ErrorKind.AUTH_EXPIRED, MSG_AUTH_EXPIRED, status_code=status,
                              error_code=code, error_subcode=subcode)
    if status == 429:
        return Classification(ErrorKind.RATE_LIMITED, MSG_RATE_LIMITED_HTTP, retryable=True,
                              status_code=status, error_code=code)
    if code in THROTTLE_CODES:
        return Classification(ErrorKind.RATE_LIMITED, MSG_RATE_LIMITED_EMBEDDED, status_code=status,
                              error_code=code, error_subcode=subcode)
    if isinstance(raw, TransportTimeout):
        return Classification(ErrorKind.TIMEOUT, MSG_TIMEOUT, retryable=True)
    if isinstance(raw, EmbeddedError):
        return Classification(ErrorKind.UPSTREAM_ERROR, raw.message or MSG_EMBEDDED_FALLBACK,
                              error_code=code, error_subcode=subcode)
    if embedded is not None:
        fallback = MSG_WRITE_FALLBACK if write else MSG_READ_FALLBACK
        return Classification(ErrorKind.UPSTREAM_ERROR, embedded.message or fallback,
                              status_code=status, error_code=code, error_subcode=subcode)

    if isinstance(raw, TransportError) and raw.connection:
        return Classification(ErrorKind.NETWORK_FAILURE, raw.message or MSG_UNEXPECTED, retryable=True)
    if isinstance(raw, HttpFailure):
        message = f"Request failed with status code {raw.status}"
        return Classification(ErrorKind.UNKNOWN, message, retryable=True, status_code=status)
    return Classification(ErrorKind.UNKNOWN, getattr(raw, "message", "") or MSG_UNEXPECTED, retryable=True)


# -------------------------
# Backoff
# -------------------------
@dataclass(frozen=True)
class BackoffPolicy:
    """
    Delay schedule between attempts of one request.

    HTTP 429 backs off exponentially (``rate_limit_base * 2**attempt``), timeouts
    and uncategorized transport failures back off linearly
    (``linear_step * (attempt + 1)``). ``attempt`` is zero-based.
    """
    rate_limit_base: float = 1.0
    linear_step: float = 1.0

    def delay_for(self, kind: ErrorKind, attempt: int) -> float:
        if kind is ErrorKind.RATE_LIMITED:
            return self.rate_limit_base * (2 ** attempt)
        return self.linear_step * (attempt + 1)
