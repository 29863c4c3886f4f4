"""
Factory functions wiring a pipeline from settings
"""
import logging
from typing import Optional

import httpx

from .config import Settings, get_settings
from .connectivity import ConnectivityProbe
from .policies import RetryPolicyRegistry
from .pipeline import RequestPipeline
from .transport import HttpxTransport, Transport
from .types import TokenProvider


logger = logging.getLogger("fetch_resilience.factory")


def create_probe(
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ConnectivityProbe:
    """
    Create a ConnectivityProbe from settings.

    Args:
        settings: Settings, defaults to get_settings()
        client: Optional httpx client shared with other components

    Returns:
        ConnectivityProbe
    """
    settings = settings or get_settings()
    return ConnectivityProbe(
        client=client,
        backend_url=settings.BACKEND_URL,
        health_path=settings.HEALTH_PATH,
        internet_endpoints=settings.INTERNET_CHECK_URLS,
        internet_timeout_seconds=settings.INTERNET_CHECK_TIMEOUT_SECONDS,
        server_timeout_seconds=settings.SERVER_CHECK_TIMEOUT_SECONDS,
        ping_timeout_seconds=settings.PING_TIMEOUT_SECONDS,
    )


def create_pipeline(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[Transport] = None,
    token_provider: Optional[TokenProvider] = None,
    registry: Optional[RetryPolicyRegistry] = None,
    probe: Optional[ConnectivityProbe] = None,
) -> RequestPipeline:
    """
    Create a RequestPipeline from settings.

    Example:
        pipeline = create_pipeline(token_provider=lambda: session.token)
        result = await pipeline.get("/topics")

    Args:
        settings: Settings, defaults to get_settings()
        transport: Transport, defaults to HttpxTransport on BACKEND_URL
        token_provider: Returns the current bearer token or None
        registry: Retry policy registry, defaults to one using AUTH_URL_PATTERN
        probe: Connectivity probe, defaults to create_probe(settings)

    Returns:
        RequestPipeline
    """
    settings = settings or get_settings()

    if transport is None:
        if not settings.BACKEND_URL:
            logger.warning(
                "create_pipeline: FETCH_RESILIENCE_BACKEND_URL is not set, "
                "requests must use absolute URLs"
            )
        transport = HttpxTransport(base_url=settings.BACKEND_URL, headers=settings.DEFAULT_HEADERS)

    return RequestPipeline(
        transport,
        registry=registry or RetryPolicyRegistry(auth_pattern=settings.AUTH_URL_PATTERN),
        token_provider=token_provider,
        probe=probe or create_probe(settings),
        preflight_auth_check=settings.PREFLIGHT_AUTH_CHECK,
    )
