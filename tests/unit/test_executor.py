"""Tests for the resilient executor: retry protocol, decoding and pacing."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeSession, build_executor, make_response

from adsdesk.infrastructure.error_handling import ErrorKind, NormalizedError
from adsdesk.infrastructure.executor import (
    CallableCredentialProvider,
    EnvCredentialProvider,
    HttpMethod,
    RequestSpec,
    ResilientExecutor,
    StaticCredentialProvider,
)
from adsdesk.infrastructure.pacer import RequestPacer

URL = "https://graph.facebook.com/v23.0/me/adaccounts"


class TestRetryProtocol:

    def test_always_429_makes_three_attempts_with_exponential_delays(self, clock):
        session = FakeSession(make_response(429, {"error": {"message": "Too many"}}))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
        assert exc_info.value.attempts == 3
        assert len(session.calls) == 3
        assert clock.sleeps == [1.0, 2.0]

    def test_401_fails_after_single_attempt(self, clock):
        session = FakeSession(make_response(401, {"error": {"code": 190, "message": "bad"}}))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.AUTH_EXPIRED
        assert len(session.calls) == 1
        assert clock.sleeps == []

    def test_timeout_twice_then_success(self, clock):
        body = {"data": [{"id": "act_1"}]}
        session = FakeSession(
            requests.ReadTimeout("read timed out"),
            requests.ConnectTimeout("connect timed out"),
            make_response(200, body),
        )
        ex = build_executor(session, clock)
        assert ex.get(URL) == body
        assert len(session.calls) == 3
        assert clock.sleeps == [1.0, 2.0]

    def test_timeout_exhausted(self, clock):
        session = FakeSession(requests.Timeout("timed out"))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert len(session.calls) == 3

    def test_connection_error_retried_then_surfaced(self, clock):
        session = FakeSession(requests.ConnectionError("Connection refused"))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.NETWORK_FAILURE
        assert "Connection refused" in exc_info.value.message
        assert clock.sleeps == [1.0, 2.0]

    def test_server_error_without_body_retried(self, clock):
        session = FakeSession(make_response(503, text="unavailable"), make_response(200, {"ok": True}))
        ex = build_executor(session, clock)
        assert ex.get(URL) == {"ok": True}
        assert clock.sleeps == [1.0]

    def test_embedded_token_error_on_200_is_auth_expired(self, clock):
        session = FakeSession(make_response(200, {"error": {"code": 190, "message": "Session expired"}}))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.AUTH_EXPIRED
        assert len(session.calls) == 1

    def test_embedded_throttle_fails_without_retry(self, clock):
        session = FakeSession(make_response(200, {"error": {"code": 17, "message": "User request limit reached"}}))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
        assert len(session.calls) == 1
        assert clock.sleeps == []

    def test_upstream_error_surfaces_verbatim(self, clock):
        session = FakeSession(make_response(400, {"error": {"code": 100, "message": "(#100) Invalid field"}}))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.post(URL, {"status": "PAUSED"})
        assert exc_info.value.kind is ErrorKind.UPSTREAM_ERROR
        assert exc_info.value.message == "(#100) Invalid field"
        assert len(session.calls) == 1

    def test_retry_budget_override(self, clock):
        session = FakeSession(make_response(429, {}))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError):
            ex.execute(RequestSpec(URL, max_attempts=5))
        assert len(session.calls) == 5
        assert clock.sleeps == [1.0, 2.0, 4.0, 8.0]

    def test_zero_attempts_is_unknown_exhaustion(self, clock):
        session = FakeSession(make_response(200, {}))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.execute(RequestSpec(URL, max_attempts=0))
        assert exc_info.value.kind is ErrorKind.UNKNOWN
        assert session.calls == []

    def test_no_raw_transport_exception_escapes(self, clock):
        session = FakeSession(requests.TooManyRedirects("loop"))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.UNKNOWN
        assert not isinstance(exc_info.value, requests.RequestException)


class TestDecoding:

    def test_success_payload_returned_unchanged(self, clock):
        body = {"data": [{"id": "1", "name": "A"}, {"id": "2", "name": "B"}], "paging": {"cursors": {}}}
        ex = build_executor(FakeSession(make_response(200, body)), clock)
        assert ex.get(URL) == body

    def test_null_error_member_is_success(self, clock):
        body = {"data": [1, 2], "error": None}
        ex = build_executor(FakeSession(make_response(200, body)), clock)
        assert ex.get(URL) == body

    @pytest.mark.parametrize("error_member", [{}, []])
    def test_empty_error_member_is_upstream_error(self, clock, error_member):
        session = FakeSession(make_response(200, {"error": error_member}))
        ex = build_executor(session, clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.UPSTREAM_ERROR
        assert exc_info.value.message == "Facebook API error occurred"
        assert len(session.calls) == 1

    @pytest.mark.parametrize("error_member", [False, "", 0])
    def test_falsy_error_member_is_success(self, clock, error_member):
        body = {"data": [], "error": error_member}
        ex = build_executor(FakeSession(make_response(200, body)), clock)
        assert ex.get(URL) == body

    def test_non_json_write_response(self, clock):
        ex = build_executor(FakeSession(make_response(200, text="true")), clock)
        assert ex.post(URL) is True

    def test_plain_text_write_response_wrapped(self, clock):
        ex = build_executor(FakeSession(make_response(200, text="done")), clock)
        assert ex.post(URL) == {"ok": True, "text": "done"}

    def test_plain_text_read_response_is_upstream_error(self, clock):
        ex = build_executor(FakeSession(make_response(200, text="<html></html>")), clock)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.UPSTREAM_ERROR


class TestDispatch:

    def test_write_sends_params_in_query_without_body(self, clock):
        session = FakeSession(make_response(200, {"success": True}))
        ex = build_executor(session, clock, token="T1")
        ex.post("https://graph.facebook.com/v23.0/123", {"status": "PAUSED"})
        call = session.calls[0]
        assert call["method"] == "POST"
        assert call["params"] == {"access_token": "T1", "status": "PAUSED"}
        assert "json" not in call and "data" not in call
        assert call["timeout"] == 30.0

    def test_credential_fetched_fresh_each_attempt(self, clock):
        tokens = iter(["old", "new", "newer"])
        session = FakeSession(make_response(429, {}), make_response(200, {"ok": 1}))
        ex = ResilientExecutor(
            CallableCredentialProvider(lambda: next(tokens)),
            RequestPacer(0.2, clock=clock, sleep=clock.sleep),
            session=session,
            sleep=clock.sleep,
        )
        ex.get(URL)
        assert [c["params"]["access_token"] for c in session.calls] == ["old", "new"]

    def test_explicit_access_token_param_wins(self, clock):
        session = FakeSession(make_response(200, {}))
        ex = build_executor(session, clock, token="provider")
        ex.get(URL, {"access_token": "page-token"})
        assert session.calls[0]["params"]["access_token"] == "page-token"

    def test_pacer_consulted_once_per_execute_not_per_attempt(self, clock):
        pacer = MagicMock(spec=RequestPacer)
        session = FakeSession(make_response(429, {}), make_response(429, {}), make_response(200, {}))
        ex = ResilientExecutor(StaticCredentialProvider("t"), pacer, session=session, sleep=clock.sleep)
        ex.get(URL)
        assert pacer.acquire.call_count == 1
        assert len(session.calls) == 3

    def test_back_to_back_executes_are_paced(self, clock):
        dispatches = []

        def record(method, url, **kwargs):
            dispatches.append(clock.now)
            return make_response(200, {})

        session = FakeSession(record)
        ex = build_executor(session, clock)
        for _ in range(4):
            ex.get(URL)
        gaps = [b - a for a, b in zip(dispatches, dispatches[1:])]
        assert len(gaps) == 3
        assert all(g >= 0.2 - 1e-9 for g in gaps)

    def test_env_credentials_missing_fails_before_dispatch(self, clock, monkeypatch):
        monkeypatch.delenv("FB_ACCESS_TOKEN", raising=False)
        session = FakeSession(make_response(200, {}))
        ex = ResilientExecutor(EnvCredentialProvider(), RequestPacer(0.2, clock=clock, sleep=clock.sleep),
                               session=session, sleep=clock.sleep)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.AUTH_EXPIRED
        assert session.calls == []

    def test_credential_callable_failure_is_normalized(self, clock):
        def broken():
            raise RuntimeError("vault unreachable")

        session = FakeSession(make_response(200, {}))
        ex = ResilientExecutor(CallableCredentialProvider(broken), RequestPacer(0.2, clock=clock, sleep=clock.sleep),
                               session=session, sleep=clock.sleep)
        with pytest.raises(NormalizedError) as exc_info:
            ex.get(URL)
        assert exc_info.value.kind is ErrorKind.AUTH_EXPIRED
        assert "vault unreachable" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert session.calls == []

    def test_env_credentials_rotation_is_honored(self, clock, monkeypatch):
        monkeypatch.setenv("FB_ACCESS_TOKEN", "first")
        provider = EnvCredentialProvider()
        assert provider.current() == "first"
        monkeypatch.setenv("FB_ACCESS_TOKEN", "second")
        assert provider.current() == "second"

    def test_access_token_not_logged(self, clock, caplog):
        session = FakeSession(make_response(200, {}))
        ex = build_executor(session, clock, token="SECRET-TOKEN")
        with caplog.at_level(logging.DEBUG, logger="adsdesk.infrastructure.executor"):
            ex.get(URL, {"fields": "id"})
        assert "SECRET-TOKEN" not in caplog.text
        assert "[META]" in caplog.text

    def test_context_manager_closes_session(self, clock):
        session = FakeSession(make_response(200, {}))
        with build_executor(session, clock) as ex:
            ex.get(URL)
        assert session.closed

    def test_request_spec_defaults(self):
        spec = RequestSpec(URL)
        assert spec.method is HttpMethod.GET
        assert spec.timeout == 30.0
        assert spec.max_attempts == 3
        assert spec.params == {}
