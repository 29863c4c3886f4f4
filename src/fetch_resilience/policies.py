"""
Retry policies and timeouts per endpoint class
"""
import re
from typing import Dict, Mapping, Optional, Pattern, Union

from .types import (
    EndpointClass,
    IDEMPOTENT_METHODS,
    MUTATION_METHODS,
    RequestDescriptor,
    RetryPolicy,
)


_ALL_ERROR_CODES = frozenset({"ECONNABORTED", "ETIMEDOUT", "ENOTFOUND", "ENETUNREACH", "EAI_AGAIN"})
_FETCH_ERROR_CODES = frozenset({"ECONNABORTED", "ETIMEDOUT", "ENOTFOUND", "ENETUNREACH"})


# Preset retry policies
RETRY_POLICIES: Dict[EndpointClass, RetryPolicy] = {
    EndpointClass.AUTH: RetryPolicy(
        max_retries=3,
        initial_delay_ms=2000,
        max_delay_ms=10000,
        backoff_multiplier=2,
        retryable_statuses=frozenset({408, 500, 502, 503, 504}),
        retryable_error_codes=_ALL_ERROR_CODES,
    ),
    EndpointClass.FETCH: RetryPolicy(
        max_retries=3,
        initial_delay_ms=1000,
        max_delay_ms=10000,
        backoff_multiplier=2,
        retryable_statuses=frozenset({408, 429, 500, 502, 503, 504}),
        retryable_error_codes=_FETCH_ERROR_CODES,
    ),
    # 429 excluded so a throttled write is not replayed
    EndpointClass.MUTATION: RetryPolicy(
        max_retries=3,
        initial_delay_ms=2000,
        max_delay_ms=10000,
        backoff_multiplier=2,
        retryable_statuses=frozenset({408, 500, 502, 503, 504}),
        retryable_error_codes=_FETCH_ERROR_CODES,
    ),
    EndpointClass.CRITICAL: RetryPolicy(
        max_retries=1,
        initial_delay_ms=1000,
        max_delay_ms=3000,
        backoff_multiplier=1.5,
        retryable_statuses=frozenset({408, 503, 504}),
        retryable_error_codes=frozenset({"ECONNABORTED", "ETIMEDOUT"}),
    ),
}

# Per-attempt timeouts (seconds)
DEFAULT_TIMEOUTS_SECONDS: Dict[EndpointClass, float] = {
    EndpointClass.AUTH: 30.0,
    EndpointClass.FETCH: 25.0,
    EndpointClass.MUTATION: 30.0,
    EndpointClass.CRITICAL: 20.0,
}

DEFAULT_AUTH_PATTERN = "/auth/"


def is_idempotent_request(descriptor: RequestDescriptor) -> bool:
    """
    Check if a request is safe to resend.

    An explicit ``idempotent`` hint on the descriptor wins over the method.
    """
    if descriptor.idempotent is not None:
        return descriptor.idempotent
    return descriptor.method in IDEMPOTENT_METHODS


class RetryPolicyRegistry:
    """
    Maps a request to its endpoint class, retry policy and timeout.

    Matching order: explicit endpoint_class tag, then the auth URL pattern,
    then the HTTP method (mutations vs. everything else).

    Example:
        registry = RetryPolicyRegistry()
        policy = registry.policy_for(RequestDescriptor("POST", "/topics"))
        assert policy.max_retries == 3
    """

    def __init__(
        self,
        policies: Optional[Mapping[EndpointClass, RetryPolicy]] = None,
        timeouts: Optional[Mapping[EndpointClass, float]] = None,
        auth_pattern: Union[str, Pattern[str]] = DEFAULT_AUTH_PATTERN,
    ):
        self._policies = dict(RETRY_POLICIES)
        if policies:
            self._policies.update(policies)

        self._timeouts = dict(DEFAULT_TIMEOUTS_SECONDS)
        if timeouts:
            self._timeouts.update(timeouts)

        if isinstance(auth_pattern, str):
            auth_pattern = re.compile(re.escape(auth_pattern))
        self._auth_pattern = auth_pattern

    def endpoint_class_for(self, descriptor: RequestDescriptor) -> EndpointClass:
        """Resolve the endpoint class of a request."""
        if descriptor.endpoint_class is not None:
            return descriptor.endpoint_class
        if self._auth_pattern.search(descriptor.url):
            return EndpointClass.AUTH
        if descriptor.method in MUTATION_METHODS:
            return EndpointClass.MUTATION
        return EndpointClass.FETCH

    def policy_for(self, descriptor: RequestDescriptor) -> RetryPolicy:
        """Get the retry policy for a request."""
        return self._policies[self.endpoint_class_for(descriptor)]

    def timeout_for(self, descriptor: RequestDescriptor) -> float:
        """Per-request override wins, else the endpoint class default (seconds)."""
        if descriptor.timeout_seconds is not None:
            return descriptor.timeout_seconds
        return self._timeouts[self.endpoint_class_for(descriptor)]

    def is_auth_request(self, descriptor: RequestDescriptor) -> bool:
        return self.endpoint_class_for(descriptor) == EndpointClass.AUTH

    @property
    def policies(self) -> Dict[EndpointClass, RetryPolicy]:
        return dict(self._policies)

    @property
    def timeouts(self) -> Dict[EndpointClass, float]:
        return dict(self._timeouts)
