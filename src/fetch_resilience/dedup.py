"""
Request deduplication.

When identical requests are made concurrently, only one actually executes.
The others wait on it and receive the very same outcome.
"""
import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar, Union

from .types import RequestDescriptor


logger = logging.getLogger("fetch_resilience.dedup")

T = TypeVar("T")


@dataclass
class PendingRequestEntry:
    """An in-flight request shared by its waiters"""

    task: "asyncio.Future[Any]"
    waiters: int = 1
    started_at: float = 0.0


def _canonical(value: Any) -> Any:
    # Keys become strings, as json would send them, so mixed key types sort
    if isinstance(value, Mapping):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def generate_key(
    method: str,
    url: str,
    params: Optional[Mapping[str, Any]] = None,
    body: Any = None,
) -> str:
    """SHA-256 over the canonical JSON of method, url, params and body."""
    canonical = json.dumps(
        {
            "method": method.upper(),
            "url": url,
            "params": _canonical(params),
            "body": _canonical(body),
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


class RequestDeduplicator:
    """
    Coalesces concurrent identical requests.

    The shared call runs as its own task. A caller that gets cancelled stops
    waiting but never cancels the shared call for the others. The entry is
    removed as soon as the call settles, success or failure, so the next
    identical request starts fresh.

    Example:
        dedup = RequestDeduplicator()
        key = dedup.generate_key("GET", "/topics")
        results = await asyncio.gather(*[
            dedup.deduplicate(key, lambda: fetch_topics()) for _ in range(10)
        ])
        # fetch_topics ran once, all ten results are the same object
    """

    def __init__(self) -> None:
        self._pending: Dict[str, PendingRequestEntry] = {}

    @staticmethod
    def generate_key(
        method: str,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> str:
        return generate_key(method, url, params, body)

    @staticmethod
    def key_for(descriptor: RequestDescriptor) -> str:
        return generate_key(descriptor.method, descriptor.url, descriptor.params, descriptor.body)

    async def deduplicate(
        self,
        request: Union[RequestDescriptor, str],
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run fn once per key among concurrent callers.

        Args:
            request: Request descriptor, or a key from generate_key()
            fn: Zero-argument coroutine function producing the outcome

        Returns:
            The outcome of the shared call (same object for every caller)
        """
        key = request if isinstance(request, str) else self.key_for(request)
        entry = self._pending.get(key)
        if entry is not None:
            entry.waiters += 1
            logger.debug(
                f"RequestDeduplicator.deduplicate: joining in-flight request "
                f"key={key[:12]}, waiters={entry.waiters}"
            )
        else:
            task = asyncio.ensure_future(fn())
            entry = PendingRequestEntry(task=task, waiters=1, started_at=time.time())
            self._pending[key] = entry
            # Registered before any waiter resumes, so the entry is gone by then
            task.add_done_callback(lambda _t, k=key, e=entry: self._remove(k, e))
            logger.debug(f"RequestDeduplicator.deduplicate: leading request key={key[:12]}")

        return await asyncio.shield(entry.task)

    def _remove(self, key: str, entry: PendingRequestEntry) -> None:
        # clear() may already have replaced the entry
        if self._pending.get(key) is entry:
            del self._pending[key]
            logger.debug(
                f"RequestDeduplicator._remove: settled key={key[:12]}, "
                f"waiters={entry.waiters}, "
                f"duration={time.time() - entry.started_at:.3f}s"
            )

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def get_pending_count(self) -> int:
        return len(self._pending)

    def clear(self) -> None:
        """
        Forget all in-flight entries.

        Running calls are not cancelled, their current waiters still get the
        outcome. New callers start a fresh call.
        """
        self._pending.clear()
