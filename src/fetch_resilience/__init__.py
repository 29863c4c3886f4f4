"""
Resilient API request layer: retry with backoff, request deduplication,
connectivity diagnostics and a normalized error taxonomy.
"""
from .types import (
    ErrorCategory,
    EndpointClass,
    QualityTier,
    RetryPolicy,
    RequestDescriptor,
    AppError,
    RequestFailedError,
    SendResult,
    ServerCheckResult,
    ConnectivitySnapshot,
    ConnectionQualityResult,
    RetryEvent,
    RetryEventListener,
    TokenProvider,
    IDEMPOTENT_METHODS,
    MUTATION_METHODS,
)
from .backoff import (
    JITTER_FACTOR,
    base_delay,
    calculate_backoff_delay,
)
from .transport import (
    Transport,
    TransportRequest,
    TransportResponse,
    TransportError,
    HttpxTransport,
)
from .errors import (
    ERROR_CODES,
    USER_MESSAGES,
    classify,
    categorize_error,
    get_error_code,
    is_retryable_error,
    get_user_message,
    get_technical_message,
    create_error,
    log_error,
    handle_error,
    get_error_summary,
    get_troubleshooting_steps,
    get_detailed_error_info,
)
from .policies import (
    RETRY_POLICIES,
    DEFAULT_TIMEOUTS_SECONDS,
    RetryPolicyRegistry,
    is_idempotent_request,
)
from .dedup import (
    PendingRequestEntry,
    RequestDeduplicator,
    generate_key,
)
from .stats import (
    RetryStats,
    RetryStatsCounters,
)
from .connectivity import (
    ConnectivityProbe,
    latency_tier,
)
from .pipeline import (
    RequestPipeline,
    mask_headers,
)
from .config import (
    Settings,
    get_settings,
)
from .factory import (
    create_pipeline,
    create_probe,
)


__all__ = [
    # Types
    "ErrorCategory",
    "EndpointClass",
    "QualityTier",
    "RetryPolicy",
    "RequestDescriptor",
    "AppError",
    "RequestFailedError",
    "SendResult",
    "ServerCheckResult",
    "ConnectivitySnapshot",
    "ConnectionQualityResult",
    "RetryEvent",
    "RetryEventListener",
    "TokenProvider",
    "IDEMPOTENT_METHODS",
    "MUTATION_METHODS",
    # Backoff
    "JITTER_FACTOR",
    "base_delay",
    "calculate_backoff_delay",
    # Transport
    "Transport",
    "TransportRequest",
    "TransportResponse",
    "TransportError",
    "HttpxTransport",
    # Errors
    "ERROR_CODES",
    "USER_MESSAGES",
    "classify",
    "categorize_error",
    "get_error_code",
    "is_retryable_error",
    "get_user_message",
    "get_technical_message",
    "create_error",
    "log_error",
    "handle_error",
    "get_error_summary",
    "get_troubleshooting_steps",
    "get_detailed_error_info",
    # Policies
    "RETRY_POLICIES",
    "DEFAULT_TIMEOUTS_SECONDS",
    "RetryPolicyRegistry",
    "is_idempotent_request",
    # Dedup
    "PendingRequestEntry",
    "RequestDeduplicator",
    "generate_key",
    # Stats
    "RetryStats",
    "RetryStatsCounters",
    # Connectivity
    "ConnectivityProbe",
    "latency_tier",
    # Pipeline
    "RequestPipeline",
    "mask_headers",
    # Config
    "Settings",
    "get_settings",
    # Factory
    "create_pipeline",
    "create_probe",
]


__version__ = "1.0.0"
