"""
Tests for fetch_resilience request pipeline.

Test coverage includes:
- Path coverage: Success paths, retry paths, failure paths
- Loop testing: Zero, one and max retries
- Decision coverage: skip_retry, idempotency, policy by endpoint class
- State transition testing: Stats and events across attempts
- Integration: Deduplication, token provider, pre-flight checks
"""

import asyncio
import logging

import pytest

from conftest import FakeProbe, FakeTransport, network_error, status, timeout_error
from fetch_resilience import (
    ERROR_CODES,
    EndpointClass,
    ErrorCategory,
    RequestDescriptor,
    RequestFailedError,
    RetryEvent,
    ServerCheckResult,
)


class TestRequestPipeline:
    """Tests for RequestPipeline class."""

    class TestSuccess:
        """Tests for successful requests."""

        @pytest.mark.asyncio
        async def test_returns_value_on_first_attempt(self, make_pipeline):
            """Should return the response data with zero retries."""
            transport = FakeTransport(status(200, {"topics": [1, 2]}))
            pipeline = make_pipeline(transport)

            result = await pipeline.get("/topics")

            assert result.ok
            assert result.value == {"topics": [1, 2]}
            assert result.attempts == 0
            assert result.status_code == 200
            assert result.unwrap() == {"topics": [1, 2]}
            assert transport.calls == 1

        @pytest.mark.asyncio
        async def test_passes_request_fields(self, make_pipeline):
            """Should hand method, params, body and timeout to the transport."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport)

            await pipeline.get("/topics", params={"page": 2})
            await pipeline.post("/topics", body={"name": "x"})

            get_request, post_request = transport.requests
            assert get_request.method == "GET"
            assert get_request.params == {"page": 2}
            assert get_request.timeout == 25.0
            assert post_request.method == "POST"
            assert post_request.json == {"name": "x"}
            assert post_request.timeout == 30.0

        @pytest.mark.asyncio
        async def test_timeout_override(self, make_pipeline):
            """Should use the descriptor timeout override."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport)

            await pipeline.send(RequestDescriptor("GET", "/x", timeout_seconds=3))

            assert transport.requests[0].timeout == 3

    class TestRetry:
        """Tests for retry behavior."""

        @pytest.mark.asyncio
        async def test_recovers_after_three_timeouts(self, make_pipeline, recorded_sleep):
            """Should succeed on the 4th attempt and record the retries."""
            transport = FakeTransport(
                timeout_error(), timeout_error(), timeout_error(), status(200, {"ok": True})
            )
            pipeline = make_pipeline(transport)

            result = await pipeline.get("/topics")

            assert result.ok
            assert result.attempts == 3
            assert transport.calls == 4

            stats = pipeline.get_retry_stats()
            assert stats["total_requests"] == 1
            assert stats["retried_requests"] == 1
            assert stats["successful_retries"] == 1
            assert stats["failed_retries"] == 0
            assert stats["total_retry_attempts"] == 3

            assert len(recorded_sleep.delays) == 3
            for attempt, delay in enumerate(recorded_sleep.delays):
                base = 2 ** attempt
                assert base <= delay <= base * 1.3

        @pytest.mark.asyncio
        async def test_gives_up_after_max_retries(self, make_pipeline):
            """Should return TIMEOUT after exhausting retries."""
            transport = FakeTransport(timeout_error())
            pipeline = make_pipeline(transport)

            result = await pipeline.get("/topics")

            assert not result.ok
            assert result.error.category == ErrorCategory.TIMEOUT
            assert result.error.code == ERROR_CODES.TIMEOUT
            assert result.attempts == 3
            assert transport.calls == 4
            assert pipeline.get_retry_stats()["failed_retries"] == 1

        @pytest.mark.asyncio
        async def test_hard_timeout_per_attempt(self, make_pipeline):
            """Should cut a hanging attempt at its timeout and retry it."""
            transport = FakeTransport("hang")
            pipeline = make_pipeline(transport)

            result = await pipeline.send(RequestDescriptor("GET", "/slow", timeout_seconds=0.01))

            assert result.error.category == ErrorCategory.TIMEOUT
            assert result.error.message == "timeout of 10ms exceeded"
            assert transport.calls == 4

        @pytest.mark.asyncio
        async def test_never_retries_authentication(self, make_pipeline, recorded_sleep):
            """Should surface 401 immediately."""
            transport = FakeTransport(status(401))
            pipeline = make_pipeline(transport)

            result = await pipeline.get("/me")

            assert result.error.category == ErrorCategory.AUTHENTICATION
            assert result.error.code == ERROR_CODES.UNAUTHORIZED
            assert transport.calls == 1
            assert recorded_sleep.delays == []
            assert pipeline.get_retry_stats()["retried_requests"] == 0

        @pytest.mark.asyncio
        async def test_never_retries_not_found(self, make_pipeline):
            """Should not retry a GET that got a 404."""
            transport = FakeTransport(status(404))
            pipeline = make_pipeline(transport)

            result = await pipeline.get("/missing")

            assert result.error.code == ERROR_CODES.NOT_FOUND
            assert transport.calls == 1

        @pytest.mark.asyncio
        async def test_retries_server_error_on_post(self, make_pipeline):
            """Should retry a POST that failed with 500."""
            transport = FakeTransport(status(500), status(201, {"id": 1}))
            pipeline = make_pipeline(transport)

            result = await pipeline.post("/topics", body={"name": "x"})

            assert result.ok
            assert result.value == {"id": 1}
            assert transport.calls == 2

        @pytest.mark.asyncio
        async def test_rate_limit_retried_for_fetch_only(self, make_pipeline):
            """Should retry 429 on GET but not on POST."""
            get_transport = FakeTransport(status(429), status(200))
            post_transport = FakeTransport(status(429))

            get_result = await make_pipeline(get_transport).get("/topics")
            post_result = await make_pipeline(post_transport).post("/topics")

            assert get_result.ok
            assert get_transport.calls == 2
            assert post_result.error.code == ERROR_CODES.TOO_MANY_REQUESTS
            assert post_transport.calls == 1

        @pytest.mark.asyncio
        async def test_retries_network_error_on_post(self, make_pipeline):
            """Should retry a network failure even for POST."""
            transport = FakeTransport(network_error(), status(200))
            pipeline = make_pipeline(transport)

            result = await pipeline.post("/topics")

            assert result.ok
            assert transport.calls == 2

        @pytest.mark.asyncio
        async def test_unknown_failure_retried_only_when_idempotent(self, make_pipeline):
            """Should resend an unrecognized failure only for idempotent requests."""
            get_transport = FakeTransport(RuntimeError("socket closed"), status(200))
            post_transport = FakeTransport(RuntimeError("socket closed"))

            get_result = await make_pipeline(get_transport).get("/topics")
            post_result = await make_pipeline(post_transport).post("/topics")

            assert get_result.ok
            assert get_transport.calls == 2
            assert post_result.error.category == ErrorCategory.UNKNOWN
            assert post_transport.calls == 1

        @pytest.mark.asyncio
        async def test_idempotent_hint_enables_resend(self, make_pipeline):
            """Should resend a POST marked idempotent after an unknown failure."""
            transport = FakeTransport(RuntimeError("socket closed"), status(200))
            pipeline = make_pipeline(transport)

            result = await pipeline.post("/topics/1/read", idempotent=True)

            assert result.ok
            assert transport.calls == 2

        @pytest.mark.asyncio
        async def test_skip_retry(self, make_pipeline):
            """Should return the first failure when skip_retry is set."""
            transport = FakeTransport(status(503))
            pipeline = make_pipeline(transport)

            result = await pipeline.get("/topics", skip_retry=True)

            assert result.error.code == ERROR_CODES.SERVICE_UNAVAILABLE
            assert result.error.retryable is True
            assert transport.calls == 1

        @pytest.mark.asyncio
        async def test_critical_retries_once(self, make_pipeline, recorded_sleep):
            """Should use the critical policy for tagged requests."""
            transport = FakeTransport(status(503))
            pipeline = make_pipeline(transport)

            result = await pipeline.delete("/account", endpoint_class=EndpointClass.CRITICAL)

            assert result.attempts == 1
            assert transport.calls == 2
            assert 1.0 <= recorded_sleep.delays[0] <= 1.3
            assert transport.requests[0].timeout == 20.0

    class TestErrors:
        """Tests for error normalization."""

        @pytest.mark.asyncio
        async def test_raw_exceptions_never_leak(self, make_pipeline):
            """Should wrap any transport exception into an AppError."""
            transport = FakeTransport(KeyError("boom"))
            pipeline = make_pipeline(transport)

            result = await pipeline.post("/topics")

            assert result.error is not None
            assert result.error.category == ErrorCategory.UNKNOWN
            with pytest.raises(RequestFailedError) as exc_info:
                result.unwrap()
            assert exc_info.value.error is result.error

        @pytest.mark.asyncio
        async def test_mixed_key_body_is_sent(self, make_pipeline):
            """Should send a body whose mapping mixes int and str keys."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport)

            result = await pipeline.send(RequestDescriptor("POST", "/x", body={"a": 1, 2: "b"}))

            assert result.ok
            assert transport.calls == 1

        @pytest.mark.asyncio
        async def test_server_message_reaches_caller(self, make_pipeline):
            """Should surface the server's message as user message."""
            transport = FakeTransport(status(422, {"message": "Title is required"}))
            pipeline = make_pipeline(transport)

            result = await pipeline.post("/topics", body={})

            assert result.error.category == ErrorCategory.VALIDATION
            assert result.error.user_message == "Title is required"
            assert result.status_code == 422

        @pytest.mark.asyncio
        async def test_logs_terminal_failure(self, make_pipeline, caplog):
            """Should log the terminal failure with code and url."""
            transport = FakeTransport(status(403))
            pipeline = make_pipeline(transport)

            with caplog.at_level(logging.ERROR):
                await pipeline.get("/admin")

            assert "FORBIDDEN" in caplog.text
            assert "GET /admin" in caplog.text

        @pytest.mark.asyncio
        async def test_logs_retry_decision(self, make_pipeline, caplog):
            """Should log each retry with code, attempt and duration."""
            transport = FakeTransport(status(503), status(200))
            pipeline = make_pipeline(transport)

            with caplog.at_level(logging.WARNING, logger="fetch_resilience.pipeline"):
                await pipeline.get("/topics")

            assert "SERVICE_UNAVAILABLE" in caplog.text
            assert "attempt 1/3" in caplog.text
            assert "duration=" in caplog.text

    class TestAuthorization:
        """Tests for token injection."""

        @pytest.mark.asyncio
        async def test_adds_bearer_token(self, make_pipeline):
            """Should attach the token from the provider."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport, token_provider=lambda: "abc123")

            await pipeline.get("/me")

            assert transport.requests[0].headers["Authorization"] == "Bearer abc123"

        @pytest.mark.asyncio
        async def test_keeps_explicit_header(self, make_pipeline):
            """Should not override an Authorization header already set."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport, token_provider=lambda: "abc123")

            await pipeline.get("/me", headers={"authorization": "Basic xyz"})

            headers = transport.requests[0].headers
            assert headers["authorization"] == "Basic xyz"
            assert "Authorization" not in headers

        @pytest.mark.asyncio
        async def test_no_token_no_header(self, make_pipeline):
            """Should send no Authorization header without a token."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport, token_provider=lambda: None)

            await pipeline.get("/public")

            assert "Authorization" not in transport.requests[0].headers

        @pytest.mark.asyncio
        async def test_token_reread_per_attempt(self, make_pipeline):
            """Should read the token again on every retry."""
            tokens = iter(["old", "new"])
            transport = FakeTransport(status(503), status(200))
            pipeline = make_pipeline(transport, token_provider=lambda: next(tokens))

            await pipeline.get("/me")

            assert [r.headers["Authorization"] for r in transport.requests] == [
                "Bearer old",
                "Bearer new",
            ]

    class TestDeduplication:
        """Tests for request deduplication through the pipeline."""

        @pytest.mark.asyncio
        async def test_merges_concurrent_identical_requests(self, make_pipeline):
            """Should dispatch once and hand every caller the same result."""
            transport = FakeTransport(status(200, {"n": 1}))
            transport.gate = asyncio.Event()
            pipeline = make_pipeline(transport)

            tasks = [asyncio.ensure_future(pipeline.get("/topics")) for _ in range(5)]
            while transport.calls < 1:
                await asyncio.sleep(0)
            assert pipeline.get_pending_request_count() == 1

            transport.gate.set()
            results = await asyncio.gather(*tasks)

            assert transport.calls == 1
            assert all(r is results[0] for r in results)
            assert pipeline.get_pending_request_count() == 0
            assert pipeline.get_retry_stats()["total_requests"] == 1

        @pytest.mark.asyncio
        async def test_merged_callers_share_failure(self, make_pipeline):
            """Should hand every caller the same AppError."""
            transport = FakeTransport(status(404))
            transport.gate = asyncio.Event()
            pipeline = make_pipeline(transport)

            tasks = [asyncio.ensure_future(pipeline.get("/missing")) for _ in range(3)]
            while transport.calls < 1:
                await asyncio.sleep(0)
            transport.gate.set()
            results = await asyncio.gather(*tasks)

            assert transport.calls == 1
            assert results[0].error is results[1].error is results[2].error

        @pytest.mark.asyncio
        async def test_different_requests_not_merged(self, make_pipeline):
            """Should not merge requests with different params."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport)

            await asyncio.gather(
                pipeline.get("/topics", params={"page": 1}),
                pipeline.get("/topics", params={"page": 2}),
            )

            assert transport.calls == 2

        @pytest.mark.asyncio
        async def test_skip_deduplication(self, make_pipeline):
            """Should dispatch each request when skip_deduplication is set."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport)

            await asyncio.gather(
                pipeline.get("/topics", skip_deduplication=True),
                pipeline.get("/topics", skip_deduplication=True),
            )

            assert transport.calls == 2
            assert pipeline.get_retry_stats()["total_requests"] == 2

        @pytest.mark.asyncio
        async def test_sequential_requests_not_merged(self, make_pipeline):
            """Should start fresh once the previous request settled."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport)

            await pipeline.get("/topics")
            await pipeline.get("/topics")

            assert transport.calls == 2

    class TestEvents:
        """Tests for event emission."""

        @pytest.mark.asyncio
        async def test_emits_attempt_events(self, make_pipeline):
            """Should emit start, fail, wait and success events in order."""
            transport = FakeTransport(status(502), status(200))
            pipeline = make_pipeline(transport)
            events = []
            pipeline.on(events.append)

            await pipeline.get("/topics")

            assert [e.type for e in events] == [
                "attempt:start",
                "attempt:fail",
                "retry:wait",
                "attempt:start",
                "attempt:success",
            ]
            assert events[1].data["will_retry"] is True
            assert events[1].data["error"].code == ERROR_CODES.BAD_GATEWAY
            assert events[3].attempt == 1

        @pytest.mark.asyncio
        async def test_listener_failure_does_not_break_request(self, make_pipeline, caplog):
            """Should log listener errors and carry on."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport)

            def broken(event: RetryEvent) -> None:
                raise RuntimeError("listener bug")

            pipeline.on(broken)
            with caplog.at_level(logging.WARNING, logger="fetch_resilience.pipeline"):
                result = await pipeline.get("/topics")

            assert result.ok
            assert "listener failed" in caplog.text

        @pytest.mark.asyncio
        async def test_off_removes_listener(self, make_pipeline):
            """Should stop notifying a removed listener."""
            pipeline = make_pipeline(FakeTransport())
            events = []
            pipeline.on(events.append)
            pipeline.off(events.append)

            await pipeline.get("/topics")

            assert events == []

    class TestPreflight:
        """Tests for connectivity checks around sending."""

        @pytest.mark.asyncio
        async def test_auth_request_checks_internet_and_proceeds(self, make_pipeline, caplog):
            """Should warn when offline but still attempt the login."""
            probe = FakeProbe(online=False)
            transport = FakeTransport(status(200, {"token": "t"}))
            pipeline = make_pipeline(transport, probe=probe)

            with caplog.at_level(logging.WARNING, logger="fetch_resilience.pipeline"):
                result = await pipeline.post("/auth/login", body={"email": "a@b.c"})

            assert result.ok
            assert probe.internet_checks == 1
            assert transport.calls == 1
            assert "no internet connection detected" in caplog.text

        @pytest.mark.asyncio
        async def test_fetch_request_skips_check(self, make_pipeline):
            """Should not probe for ordinary requests."""
            probe = FakeProbe(online=False)
            pipeline = make_pipeline(FakeTransport(), probe=probe)

            await pipeline.get("/topics")

            assert probe.internet_checks == 0

        @pytest.mark.asyncio
        async def test_explicit_preflight_flag(self, make_pipeline):
            """Should probe when the descriptor asks for it."""
            probe = FakeProbe(online=True)
            pipeline = make_pipeline(FakeTransport(), probe=probe)

            await pipeline.send(RequestDescriptor("GET", "/topics", preflight=True))

            assert probe.internet_checks == 1

        @pytest.mark.asyncio
        async def test_auth_check_can_be_disabled(self, make_pipeline):
            """Should skip the auth check when disabled."""
            probe = FakeProbe(online=False)
            pipeline = make_pipeline(FakeTransport(), probe=probe, preflight_auth_check=False)

            await pipeline.post("/auth/login")

            assert probe.internet_checks == 0

        @pytest.mark.asyncio
        async def test_send_with_network_check_fails_fast(self, make_pipeline):
            """Should return NO_INTERNET without dispatching."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport, probe=FakeProbe(online=False))

            result = await pipeline.send_with_network_check(RequestDescriptor("GET", "/topics"))

            assert result.error.category == ErrorCategory.NETWORK
            assert result.error.code == ERROR_CODES.NO_INTERNET
            assert result.error.retryable is True
            assert transport.calls == 0

        @pytest.mark.asyncio
        async def test_send_with_network_check_online(self, make_pipeline):
            """Should send normally when online."""
            transport = FakeTransport()
            pipeline = make_pipeline(transport, probe=FakeProbe(online=True))

            result = await pipeline.send_with_network_check(RequestDescriptor("GET", "/topics"))

            assert result.ok
            assert transport.calls == 1

        @pytest.mark.asyncio
        async def test_send_with_server_check_fails_fast(self, make_pipeline):
            """Should return SERVER_UNREACHABLE without dispatching."""
            transport = FakeTransport()
            probe = FakeProbe(server=ServerCheckResult(reachable=False, error="Connection refused"))
            pipeline = make_pipeline(transport, probe=probe)

            result = await pipeline.send_with_server_check(RequestDescriptor("GET", "/topics"))

            assert result.error.code == ERROR_CODES.SERVER_UNREACHABLE
            assert result.error.message == "Connection refused"
            assert transport.calls == 0

    class TestReset:
        """Tests for reset and accessors."""

        @pytest.mark.asyncio
        async def test_reset_clears_state(self, make_pipeline):
            """Should zero stats and drop listeners."""
            pipeline = make_pipeline(FakeTransport(status(500), status(200)))
            events = []
            pipeline.on(events.append)
            await pipeline.get("/topics")

            pipeline.reset()
            await pipeline.get("/other")

            assert pipeline.get_retry_stats()["total_requests"] == 1
            assert len(events) == 5  # only the first request

        @pytest.mark.asyncio
        async def test_reset_retry_stats(self, make_pipeline):
            """Should zero stats only."""
            pipeline = make_pipeline(FakeTransport())
            await pipeline.get("/topics")

            pipeline.reset_retry_stats()

            assert pipeline.get_retry_stats()["total_requests"] == 0
