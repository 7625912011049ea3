from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests
from prometheus_client import Counter, Histogram

from ..config import ACCESS_TOKEN_ENV, DEFAULT_MAX_ATTEMPTS, DEFAULT_TIMEOUT_SEC
from .error_handling import (
    MSG_EXHAUSTED,
    BackoffPolicy,
    DecodeResult,
    EmbeddedError,
    ErrorKind,
    Failure,
    HttpFailure,
    NormalizedError,
    Success,
    TransportError,
    TransportTimeout,
    classify,
)
from .pacer import RequestPacer

logger = logging.getLogger(__name__)

M_REQUESTS = Counter("adsdesk_meta_requests_total", "Graph API attempts", ["method", "outcome"])
M_RETRIES = Counter("adsdesk_meta_retries_total", "Graph API retries", ["kind"])
H_LATENCY = Histogram("adsdesk_meta_request_seconds", "Graph API attempt latency", ["method"])

REDACTED_PARAMS = ("access_token", "appsecret_proof")


def _meta_log(level: int, message: str, *args) -> None:
    logger.log(level, f"[META] {message}", *args)


class HttpMethod(Enum):
    GET = "GET"
    POST = "POST"

    @property
    def is_write(self) -> bool:
        return self is HttpMethod.POST


@dataclass(frozen=True)
class RequestSpec:
    url: str
    method: HttpMethod = HttpMethod.GET
    params: Dict[str, Any] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT_SEC
    max_attempts: int = DEFAULT_MAX_ATTEMPTS


# -------------------------
# Credentials
# -------------------------
class CredentialProvider:
    """Source of the access token. ``current`` is called once per attempt."""

    def current(self) -> str:
        raise NotImplementedError


class StaticCredentialProvider(CredentialProvider):
    def __init__(self, token: str) -> None:
        self._token = token

    def current(self) -> str:
        return self._token


class CallableCredentialProvider(CredentialProvider):
    def __init__(self, fn: Callable[[], str]) -> None:
        self._fn = fn

    def current(self) -> str:
        return self._fn()


class EnvCredentialProvider(CredentialProvider):
    """Reads the token from the environment on every call so rotation is picked up."""

    def __init__(self, var: str = ACCESS_TOKEN_ENV) -> None:
        self.var = var

    def current(self) -> str:
        token = (os.getenv(self.var) or "").strip()
        if not token:
            raise NormalizedError(
                ErrorKind.AUTH_EXPIRED,
                f"No access token configured. Set {self.var} and try again.",
            )
        return token


def _redact(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("***" if k in REDACTED_PARAMS else v) for k, v in params.items()}


def _has_error_member(payload: Dict[str, Any]) -> bool:
    # An empty error object or list still marks a failure; null/false/""/0 do not.
    err = payload.get("error")
    if isinstance(err, (dict, list)):
        return True
    return err not in (None, False, "", 0)


# -------------------------
# Executor
# -------------------------
class ResilientExecutor:
    """
    Runs one logical Graph API call with pacing, a per-attempt timeout,
    retry with backoff, and error normalization.

    The pacer is consulted once per ``execute`` call, not once per attempt;
    retries only wait for their backoff delay. Anything that goes wrong is
    raised as NormalizedError.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        pacer: Optional[RequestPacer] = None,
        *,
        session: Optional[requests.Session] = None,
        backoff: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.credentials = credentials
        self.pacer = pacer or RequestPacer()
        self.session = session or requests.Session()
        self.backoff = backoff or BackoffPolicy()
        self._sleep = sleep

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "ResilientExecutor":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------- public -------------
    def get(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs: Any) -> Any:
        return self.execute(RequestSpec(url, HttpMethod.GET, dict(params or {}), **kwargs))

    def post(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs: Any) -> Any:
        return self.execute(RequestSpec(url, HttpMethod.POST, dict(params or {}), **kwargs))

    def execute(self, spec: RequestSpec) -> Any:
        self.pacer.acquire()
        method = spec.method.value

        for attempt in range(spec.max_attempts):
            result = self._attempt(spec, attempt)
            if isinstance(result, Success):
                M_REQUESTS.labels(method, "success").inc()
                return result.payload

            verdict = classify(result.raw, write=spec.method.is_write)
            M_REQUESTS.labels(method, verdict.kind.value).inc()
            attempts_made = attempt + 1

            if verdict.retryable and attempts_made < spec.max_attempts:
                wait = self.backoff.delay_for(verdict.kind, attempt)
                M_RETRIES.labels(verdict.kind.value).inc()
                _meta_log(
                    logging.WARNING,
                    "%s %s failed (%s), retry %d/%d in %.1fs",
                    method, spec.url, verdict.kind.value, attempts_made, spec.max_attempts - 1, wait,
                )
                self._sleep(wait)
                continue

            _meta_log(logging.ERROR, "%s %s failed after %d attempt(s): [%s] %s",
                      method, spec.url, attempts_made, verdict.kind.value, verdict.message)
            raise verdict.to_error(attempts=attempts_made)

        raise NormalizedError(ErrorKind.UNKNOWN, MSG_EXHAUSTED, attempts=spec.max_attempts)

    # ------------- internals -------------
    def _token(self, attempt: int) -> str:
        try:
            return self.credentials.current()
        except NormalizedError:
            raise
        except Exception as e:
            _meta_log(logging.ERROR, "Access token lookup failed: %s", e)
            raise NormalizedError(
                ErrorKind.AUTH_EXPIRED,
                f"Could not obtain an access token: {e}",
                attempts=attempt + 1,
            ) from e

    def _attempt(self, spec: RequestSpec, attempt: int) -> DecodeResult:
        params = {"access_token": self._token(attempt), **spec.params}
        _meta_log(logging.DEBUG, "%s %s attempt %d params=%s",
                  spec.method.value, spec.url, attempt + 1, _redact(params))
        t0 = time.perf_counter()
        try:
            if spec.method is HttpMethod.POST:
                response = self.session.post(spec.url, params=params, timeout=spec.timeout)
            else:
                response = self.session.get(spec.url, params=params, timeout=spec.timeout)
        except requests.Timeout as e:
            return Failure(TransportTimeout(str(e)))
        except requests.ConnectionError as e:
            return Failure(TransportError(str(e), connection=True))
        except requests.RequestException as e:
            return Failure(TransportError(str(e)))
        finally:
            H_LATENCY.labels(spec.method.value).observe(time.perf_counter() - t0)
        return self._decode(response, spec)

    @staticmethod
    def _decode(response: requests.Response, spec: RequestSpec) -> DecodeResult:
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not 200 <= response.status_code < 300:
            return Failure(HttpFailure(response.status_code, payload, response.text or ""))

        if payload is None:
            if spec.method.is_write:
                return Success({"ok": True, "text": response.text})
            return Failure(EmbeddedError(code=None, message="Graph API returned a non-JSON response"))

        if isinstance(payload, dict) and _has_error_member(payload):
            return Failure(EmbeddedError.from_payload(payload["error"]))
        return Success(payload)
