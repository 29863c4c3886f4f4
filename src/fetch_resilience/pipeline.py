"""
Request pipeline: retry, deduplication and error normalization around a transport.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .backoff import calculate_backoff_delay
from .connectivity import ConnectivityProbe
from .dedup import RequestDeduplicator
from .errors import ERROR_CODES, classify, create_error, log_error
from .policies import RetryPolicyRegistry, is_idempotent_request
from .stats import RetryStats
from .transport import Transport, TransportError, TransportRequest, TransportResponse
from .types import (
    AppError,
    ErrorCategory,
    RequestDescriptor,
    RetryEvent,
    RetryEventListener,
    RetryPolicy,
    SendResult,
    TokenProvider,
)


logger = logging.getLogger("fetch_resilience.pipeline")

_SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key"}


def _mask_sensitive_header(value: str, visible_chars: int = 10) -> str:
    """Mask sensitive header value for safe logging, showing first N chars."""
    if not value:
        return "<empty>"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def mask_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of headers with credentials masked."""
    return {
        key: _mask_sensitive_header(value) if key.lower() in _SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    name = name.lower()
    return any(key.lower() == name for key in headers)


class RequestPipeline:
    """
    Resilient request pipeline.

    Provides:
    - Per-endpoint-class retry policies with exponential backoff and jitter
    - Per-attempt timeouts
    - Deduplication of concurrent identical requests
    - Normalized AppError outcomes, raw transport errors never leak
    - Retry statistics and event emission for observability

    Example:
        pipeline = RequestPipeline(HttpxTransport(base_url="https://api.example.com"))
        result = await pipeline.get("/topics")
        if result.ok:
            print(result.value)
        else:
            print(result.error.user_message)
    """

    def __init__(
        self,
        transport: Transport,
        *,
        registry: Optional[RetryPolicyRegistry] = None,
        token_provider: Optional[TokenProvider] = None,
        probe: Optional[ConnectivityProbe] = None,
        deduplicator: Optional[RequestDeduplicator] = None,
        stats: Optional[RetryStats] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        preflight_auth_check: bool = True,
        default_headers: Optional[Mapping[str, str]] = None,
    ):
        self._transport = transport
        self._registry = registry or RetryPolicyRegistry()
        self._token_provider = token_provider
        self._probe = probe
        self._deduplicator = deduplicator or RequestDeduplicator()
        self._stats = stats or RetryStats()
        self._sleep = sleep
        self._preflight_auth_check = preflight_auth_check
        self._default_headers = dict(default_headers or {})
        self._listeners: list[RetryEventListener] = []

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def registry(self) -> RetryPolicyRegistry:
        return self._registry

    @property
    def probe(self) -> Optional[ConnectivityProbe]:
        return self._probe

    @property
    def stats(self) -> RetryStats:
        return self._stats

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    # Events

    def on(self, listener: RetryEventListener) -> None:
        """Add an event listener."""
        self._listeners.append(listener)

    def off(self, listener: RetryEventListener) -> None:
        """Remove an event listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: RetryEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.warning(
                    f"RequestPipeline._emit: listener failed on {event.type}",
                    exc_info=True,
                )

    # Sending

    def resolve_timeout(self, descriptor: RequestDescriptor) -> float:
        """Per-attempt timeout in seconds."""
        return self._registry.timeout_for(descriptor)

    async def send(self, descriptor: RequestDescriptor) -> SendResult:
        """
        Send a request with retry and deduplication.

        Never raises for request failures: the outcome is a SendResult
        holding either the response data or exactly one AppError. Concurrent
        identical requests share one execution and receive the same
        SendResult object.

        Args:
            descriptor: The request to send

        Returns:
            SendResult with value or error
        """
        if descriptor.skip_deduplication:
            return await self._execute(descriptor)
        return await self._deduplicator.deduplicate(
            descriptor, lambda: self._execute(descriptor)
        )

    async def _execute(self, descriptor: RequestDescriptor) -> SendResult:
        policy = self._registry.policy_for(descriptor)
        timeout = self.resolve_timeout(descriptor)
        idempotent = is_idempotent_request(descriptor)

        self._stats.record_request()
        await self._preflight(descriptor)

        start_time = time.monotonic()
        attempt = 0

        while True:
            self._emit(RetryEvent(
                type="attempt:start",
                attempt=attempt,
                data={"method": descriptor.method, "url": descriptor.url},
            ))
            attempt_start = time.monotonic()

            try:
                response = await self._dispatch(descriptor, timeout)
            except Exception as raw:
                error = classify(raw, policy)
                will_retry = not descriptor.skip_retry and self._should_retry(
                    error, attempt, policy, idempotent
                )

                self._emit(RetryEvent(
                    type="attempt:fail",
                    attempt=attempt,
                    data={
                        "error": error,
                        "will_retry": will_retry,
                        "duration_seconds": time.monotonic() - attempt_start,
                    },
                ))

                if not will_retry:
                    duration = time.monotonic() - start_time
                    if attempt > 0:
                        self._stats.record_retry(success=False)
                    log_error(
                        error,
                        f"{descriptor.method} {descriptor.url} attempt={attempt} "
                        f"duration={duration:.3f}s",
                    )
                    return SendResult(
                        error=error,
                        attempts=attempt,
                        status_code=error.status_code,
                        duration_seconds=duration,
                    )

                delay_ms = calculate_backoff_delay(attempt, policy)
                logger.warning(
                    f"RequestPipeline._execute: retrying {descriptor.method} {descriptor.url} "
                    f"after {error.category.value} {error.code} (status={error.status_code}), "
                    f"attempt {attempt + 1}/{policy.max_retries}, "
                    f"duration={time.monotonic() - attempt_start:.3f}s, delay={delay_ms:.0f}ms"
                )
                self._emit(RetryEvent(
                    type="retry:wait",
                    attempt=attempt,
                    data={"delay_ms": delay_ms, "error": error},
                ))

                await self._sleep(delay_ms / 1000)
                attempt += 1
                self._stats.record_retry_attempt()
                continue

            duration = time.monotonic() - start_time
            self._emit(RetryEvent(
                type="attempt:success",
                attempt=attempt,
                data={
                    "status_code": response.status_code,
                    "duration_seconds": time.monotonic() - attempt_start,
                },
            ))
            if attempt > 0:
                self._stats.record_retry(success=True)
                logger.info(
                    f"RequestPipeline._execute: {descriptor.method} {descriptor.url} "
                    f"succeeded after {attempt} retries in {duration:.3f}s"
                )

            return SendResult(
                value=response.data,
                attempts=attempt,
                status_code=response.status_code,
                duration_seconds=duration,
            )

    def _should_retry(
        self,
        error: AppError,
        attempt: int,
        policy: RetryPolicy,
        idempotent: bool,
    ) -> bool:
        """Determine if we should retry after a failure."""
        if attempt >= policy.max_retries:
            return False
        if error.retryable:
            return True
        # Safe to resend when the server never answered
        return idempotent and error.status_code is None

    def _build_headers(self, descriptor: RequestDescriptor) -> Dict[str, str]:
        headers = dict(self._default_headers)
        if descriptor.headers:
            headers.update(descriptor.headers)

        if self._token_provider is not None and not _has_header(headers, "Authorization"):
            token = self._token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _dispatch(self, descriptor: RequestDescriptor, timeout: float) -> TransportResponse:
        """One attempt under a hard timeout. Raises on any failure."""
        request = TransportRequest(
            method=descriptor.method,
            url=descriptor.url,
            params=descriptor.params,
            headers=self._build_headers(descriptor),
            json=descriptor.body,
            timeout=timeout,
        )

        logger.debug(
            f"RequestPipeline._dispatch: {request.method} {request.url}, "
            f"timeout={timeout}s, headers={mask_headers(request.headers)}"
        )

        try:
            response = await asyncio.wait_for(self._transport.send(request), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransportError.timeout(timeout, request) from e

        if not response.ok:
            raise TransportError.from_response(response, request)
        return response

    async def _preflight(self, descriptor: RequestDescriptor) -> None:
        """Warn, but never block, when the device looks offline."""
        if self._probe is None:
            return
        wanted = descriptor.preflight or (
            self._preflight_auth_check and self._registry.is_auth_request(descriptor)
        )
        if not wanted:
            return

        if not await self._probe.check_internet():
            logger.warning(
                f"RequestPipeline._preflight: no internet connection detected before "
                f"{descriptor.method} {descriptor.url}, attempting anyway"
            )

    async def send_with_network_check(self, descriptor: RequestDescriptor) -> SendResult:
        """Fail fast with NO_INTERNET instead of dispatching while offline."""
        if self._probe is not None and not await self._probe.check_internet():
            error = create_error(
                ErrorCategory.NETWORK,
                ERROR_CODES.NO_INTERNET,
                "No internet connection",
                retryable=True,
            )
            log_error(error, f"{descriptor.method} {descriptor.url}")
            return SendResult(error=error)
        return await self.send(descriptor)

    async def send_with_server_check(self, descriptor: RequestDescriptor) -> SendResult:
        """Fail fast with SERVER_UNREACHABLE when the health check fails."""
        if self._probe is not None:
            server = await self._probe.check_server()
            if not server.reachable:
                error = create_error(
                    ErrorCategory.NETWORK,
                    ERROR_CODES.SERVER_UNREACHABLE,
                    server.error or "Cannot reach server",
                    retryable=True,
                )
                log_error(error, f"{descriptor.method} {descriptor.url}")
                return SendResult(error=error)
        return await self.send(descriptor)

    # Convenience methods

    async def get(self, url: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> SendResult:
        return await self.send(RequestDescriptor("GET", url, params=params, **kwargs))

    async def post(self, url: str, body: Any = None, **kwargs: Any) -> SendResult:
        return await self.send(RequestDescriptor("POST", url, body=body, **kwargs))

    async def put(self, url: str, body: Any = None, **kwargs: Any) -> SendResult:
        return await self.send(RequestDescriptor("PUT", url, body=body, **kwargs))

    async def patch(self, url: str, body: Any = None, **kwargs: Any) -> SendResult:
        return await self.send(RequestDescriptor("PATCH", url, body=body, **kwargs))

    async def delete(self, url: str, **kwargs: Any) -> SendResult:
        return await self.send(RequestDescriptor("DELETE", url, **kwargs))

    # Accessors

    def get_retry_stats(self) -> Dict[str, Any]:
        return self._stats.get_stats()

    def reset_retry_stats(self) -> None:
        self._stats.reset()

    def get_pending_request_count(self) -> int:
        return self._deduplicator.get_pending_count()

    def clear_deduplication_cache(self) -> None:
        self._deduplicator.clear()

    def reset(self) -> None:
        """Reset stats, pending entries and listeners."""
        self._stats.reset()
        self._deduplicator.clear()
        self._listeners.clear()

    async def aclose(self) -> None:
        """Close the transport and probe when they support it."""
        close = getattr(self._transport, "aclose", None)
        if close is not None:
            await close()
        if self._probe is not None:
            await self._probe.aclose()
