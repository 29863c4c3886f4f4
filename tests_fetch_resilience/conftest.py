"""
Shared fixtures for fetch_resilience integration tests.
"""
import asyncio
from typing import Any, List, Optional

import pytest

from fetch_resilience import (
    RequestPipeline,
    RetryPolicyRegistry,
    TransportError,
    TransportRequest,
    TransportResponse,
)


class FakeTransport:
    """
    Scripted in-memory transport.

    Each send() consumes the next outcome: a TransportResponse is returned,
    an exception is raised, the string "hang" blocks until cancelled. The
    last outcome repeats once the script is exhausted.
    """

    def __init__(self, *outcomes: Any):
        self.outcomes = list(outcomes) or [TransportResponse(200, {"ok": True})]
        self.requests: List[TransportRequest] = []
        self.gate: Optional[asyncio.Event] = None

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def send(self, request: TransportRequest) -> TransportResponse:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()

        index = min(len(self.requests) - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[index]
        if outcome == "hang":
            await asyncio.Event().wait()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordedSleep:
    """Sleep replacement that records delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class FakeProbe:
    """ConnectivityProbe stand-in with fixed answers."""

    def __init__(self, online: bool = True, server=None):
        self.online = online
        self.server = server
        self.internet_checks = 0
        self.server_checks = 0

    async def check_internet(self) -> bool:
        self.internet_checks += 1
        return self.online

    async def check_server(self):
        self.server_checks += 1
        return self.server

    async def aclose(self) -> None:
        pass


def network_error(code: str = "ENOTFOUND") -> TransportError:
    return TransportError("Network Error", code=code)


def timeout_error() -> TransportError:
    return TransportError("timeout of 25000ms exceeded", code="ECONNABORTED")


def status(code: int, data: Any = None) -> TransportResponse:
    return TransportResponse(status_code=code, data=data)


@pytest.fixture
def recorded_sleep() -> RecordedSleep:
    """Sleep that records requested delays."""
    return RecordedSleep()


@pytest.fixture
def make_pipeline(recorded_sleep):
    """Build a pipeline around a FakeTransport with recorded sleeps."""

    def _make(transport: FakeTransport, **kwargs: Any) -> RequestPipeline:
        kwargs.setdefault("registry", RetryPolicyRegistry())
        kwargs.setdefault("sleep", recorded_sleep)
        return RequestPipeline(transport, **kwargs)

    return _make
