"""
Transport boundary for fetch_resilience.

The pipeline never talks to an HTTP library directly. It consumes any object
satisfying the Transport protocol; HttpxTransport adapts httpx.AsyncClient.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx


logger = logging.getLogger("fetch_resilience.transport")


# Transport error codes (shared vocabulary with retry policies)
CONNECTION_ABORTED = "ECONNABORTED"
TIMED_OUT = "ETIMEDOUT"
DNS_NOT_FOUND = "ENOTFOUND"
NETWORK_UNREACHABLE = "ENETUNREACH"
CONNECTION_REFUSED = "ECONNREFUSED"
CONNECTION_RESET = "ECONNRESET"
DNS_TRY_AGAIN = "EAI_AGAIN"
BAD_RESPONSE = "ERR_BAD_RESPONSE"
BAD_REQUEST = "ERR_BAD_REQUEST"

NETWORK_ERROR_MESSAGE = "Network Error"


@dataclass
class TransportRequest:
    """A single dispatch handed to the transport."""

    method: str
    url: str
    params: Optional[Mapping[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    json: Any = None
    timeout: Optional[float] = None


@dataclass
class TransportResponse:
    """Status code and decoded body returned by the transport."""

    status_code: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """2xx and 3xx count as success."""
        return 200 <= self.status_code < 400


class TransportError(Exception):
    """
    Raised when a dispatch failed.

    ``code`` carries a stable transport code (ECONNABORTED, ENOTFOUND, ...).
    ``response`` is set when the server answered with a failing status.
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        response: Optional[TransportResponse] = None,
        request: Optional[TransportRequest] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.response = response
        self.request = request

    @classmethod
    def from_response(
        cls,
        response: TransportResponse,
        request: Optional[TransportRequest] = None,
    ) -> "TransportError":
        """Build the error for a failing HTTP status."""
        code = BAD_RESPONSE if response.status_code >= 500 else BAD_REQUEST
        return cls(
            f"Request failed with status code {response.status_code}",
            code=code,
            response=response,
            request=request,
        )

    @classmethod
    def timeout(
        cls,
        timeout_seconds: float,
        request: Optional[TransportRequest] = None,
    ) -> "TransportError":
        """Build the error for an attempt that exceeded its deadline."""
        return cls(
            f"timeout of {int(timeout_seconds * 1000)}ms exceeded",
            code=CONNECTION_ABORTED,
            request=request,
        )

    def __repr__(self) -> str:
        status = self.response.status_code if self.response else None
        return f"TransportError(message={self.message!r}, code={self.code!r}, status={status!r})"


class Transport(Protocol):
    """Capability interface for anything that can dispatch an HTTP request."""

    async def send(self, request: TransportRequest) -> TransportResponse:
        """
        Dispatch the request.

        Must return a TransportResponse for every status the server answered
        with, and raise (preferably TransportError) when no response arrived.
        """
        ...


def _decode_body(response: httpx.Response) -> Any:
    """Decode JSON bodies, fall back to text."""
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text


def error_code_for(error: httpx.TransportError) -> str:
    """Map an httpx exception to a transport error code."""
    if isinstance(error, httpx.TimeoutException):
        return CONNECTION_ABORTED

    message = str(error).lower()
    if isinstance(error, httpx.ConnectError):
        if "name or service not known" in message or "nodename nor servname" in message:
            return DNS_NOT_FOUND
        if "temporary failure in name resolution" in message:
            return DNS_TRY_AGAIN
        if "network is unreachable" in message:
            return NETWORK_UNREACHABLE
        return CONNECTION_REFUSED

    return CONNECTION_RESET


class HttpxTransport:
    """
    Transport backed by httpx.AsyncClient.

    Example:
        client = httpx.AsyncClient(base_url="https://api.example.com")
        transport = HttpxTransport(client)
        pipeline = RequestPipeline(transport)
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        base_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=base_url or "",
                headers=headers or {"Content-Type": "application/json"},
            )
        self._closed = False

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def send(self, request: TransportRequest) -> TransportResponse:
        """Dispatch through httpx, translating its exceptions to TransportError."""
        if self._closed:
            raise RuntimeError("Transport has been closed")

        logger.debug(
            f"HttpxTransport.send: method={request.method}, url={request.url}, "
            f"timeout={request.timeout}"
        )

        try:
            response = await self._client.request(
                method=request.method,
                url=request.url,
                params=dict(request.params) if request.params else None,
                headers=request.headers,
                json=request.json,
                timeout=request.timeout if request.timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.TimeoutException as e:
            raise TransportError.timeout(request.timeout or 0, request) from e
        except httpx.TransportError as e:
            raise TransportError(
                NETWORK_ERROR_MESSAGE,
                code=error_code_for(e),
                request=request,
            ) from e

        return TransportResponse(
            status_code=response.status_code,
            data=_decode_body(response),
            headers=dict(response.headers),
        )

    async def aclose(self) -> None:
        """Close the underlying client."""
        if not self._closed:
            await self._client.aclose()
            self._closed = True
