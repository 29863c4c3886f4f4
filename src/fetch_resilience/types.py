"""
Type definitions for fetch_resilience
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Literal, Mapping, Optional, TypeVar


T = TypeVar("T")


class ErrorCategory(str, Enum):
    """Normalized error categories"""
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    SERVER = "SERVER"
    CLIENT = "CLIENT"
    AUTHENTICATION = "AUTHENTICATION"
    VALIDATION = "VALIDATION"
    UNKNOWN = "UNKNOWN"


class EndpointClass(str, Enum):
    """Endpoint classes used to pick retry policy and timeout"""
    AUTH = "auth"
    FETCH = "fetch"
    MUTATION = "mutation"
    CRITICAL = "critical"


class QualityTier(str, Enum):
    """Connection quality tiers"""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    OFFLINE = "offline"


def _now_iso() -> str:
    return datetime.now().isoformat()


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy for one endpoint class"""

    max_retries: int = 3
    """Maximum number of retries after the first attempt. Default: 3"""

    initial_delay_ms: float = 1000
    """Delay before the first retry (milliseconds). Default: 1000"""

    max_delay_ms: float = 10000
    """Upper bound for any single delay (milliseconds). Default: 10000"""

    backoff_multiplier: float = 2.0
    """Exponential growth factor between retries. Default: 2"""

    retryable_statuses: frozenset = field(
        default_factory=lambda: frozenset({408, 429, 500, 502, 503, 504})
    )
    """HTTP status codes that should trigger retry"""

    retryable_error_codes: frozenset = field(
        default_factory=lambda: frozenset(
            {"ECONNABORTED", "ETIMEDOUT", "ENOTFOUND", "ENETUNREACH", "EAI_AGAIN"}
        )
    )
    """Transport error codes that should trigger retry"""

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay_ms < 0:
            raise ValueError(f"initial_delay_ms must be >= 0, got {self.initial_delay_ms}")
        if self.initial_delay_ms > self.max_delay_ms:
            raise ValueError(
                f"initial_delay_ms ({self.initial_delay_ms}) must not exceed "
                f"max_delay_ms ({self.max_delay_ms})"
            )
        if self.backoff_multiplier <= 1:
            raise ValueError(
                f"backoff_multiplier must be > 1, got {self.backoff_multiplier}"
            )
        object.__setattr__(self, "backoff_multiplier", float(self.backoff_multiplier))
        # Accept any iterable for the sets, store them frozen
        object.__setattr__(self, "retryable_statuses", frozenset(self.retryable_statuses))
        object.__setattr__(self, "retryable_error_codes", frozenset(self.retryable_error_codes))


@dataclass(frozen=True)
class RequestDescriptor:
    """Immutable description of one logical request"""

    method: str = "GET"
    url: str = "/"
    params: Optional[Mapping[str, Any]] = None
    body: Any = None
    headers: Optional[Mapping[str, str]] = None

    timeout_seconds: Optional[float] = None
    """Per-request timeout override (seconds)"""

    idempotent: Optional[bool] = None
    """Idempotency hint. None derives it from the method"""

    skip_retry: bool = False
    skip_deduplication: bool = False

    endpoint_class: Optional[EndpointClass] = None
    """Explicit endpoint class tag, bypasses URL/method matching"""

    preflight: bool = False
    """Run an internet check before the first attempt"""

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())


@dataclass(frozen=True)
class AppError:
    """Normalized, taxonomy-tagged error surfaced to callers"""

    category: ErrorCategory
    code: str
    message: str
    user_message: str
    status_code: Optional[int] = None
    retryable: bool = False
    timestamp: str = field(default_factory=_now_iso)
    technical_message: Optional[str] = None
    details: Optional[Mapping[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
            "technical_message": self.technical_message,
            "details": dict(self.details) if self.details else None,
        }


class RequestFailedError(Exception):
    """Raised by SendResult.unwrap() when the request failed."""

    def __init__(self, error: AppError):
        super().__init__(f"{error.category.value} {error.code}: {error.message}")
        self.error = error


@dataclass
class SendResult(Generic[T]):
    """Outcome of RequestPipeline.send(): a value or an AppError"""

    value: Optional[T] = None
    """Response data on success"""

    error: Optional[AppError] = None
    """Classified error on failure"""

    attempts: int = 0
    """Number of retries performed (0 if the first attempt settled it)"""

    status_code: Optional[int] = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise RequestFailedError."""
        if self.error is not None:
            raise RequestFailedError(self.error)
        return self.value


@dataclass
class ServerCheckResult:
    """Result of a backend reachability check"""

    reachable: bool
    latency_ms: Optional[float] = None
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class ConnectivitySnapshot:
    """Connectivity diagnostics, built fresh on every probe call"""

    has_internet: bool = False
    server_reachable: bool = False
    latency_ms: Optional[float] = None
    quality_tier: QualityTier = QualityTier.OFFLINE
    recommendations: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "has_internet": self.has_internet,
            "server_reachable": self.server_reachable,
            "latency_ms": self.latency_ms,
            "quality_tier": self.quality_tier.value,
            "recommendations": list(self.recommendations),
            "timestamp": self.timestamp,
        }


@dataclass
class ConnectionQualityResult:
    """Result of repeated server pings"""

    average_latency_ms: float
    min_latency_ms: float
    max_latency_ms: float
    success_rate: float
    quality: QualityTier


# Event types
EventType = Literal[
    "attempt:start",
    "attempt:success",
    "attempt:fail",
    "retry:wait",
]


@dataclass
class RetryEvent:
    """Event emitted by the request pipeline"""

    type: EventType
    """Event type"""

    attempt: int
    """Current attempt number (0 = first attempt)"""

    data: Dict[str, Any] = field(default_factory=dict)
    """Event-specific data"""


# Event listener type
RetryEventListener = Callable[[RetryEvent], None]

# Credential boundary: returns the current bearer token or None
TokenProvider = Callable[[], Optional[str]]


# Idempotent HTTP methods that are safe to retry
IDEMPOTENT_METHODS = ["GET", "HEAD", "OPTIONS", "PUT", "DELETE"]

# Methods routed to the mutation policy
MUTATION_METHODS = ["POST", "PUT", "PATCH", "DELETE"]
