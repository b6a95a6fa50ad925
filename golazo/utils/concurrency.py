import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable

from golazo.utils.errors import UpstreamTimeout

log = logging.getLogger("golazo.concurrency")

# Shared pool for bounding upstream calls; a timed-out call keeps its worker until it returns
_pool_lock = threading.Lock()
_UPSTREAM_POOL = ThreadPoolExecutor(max_workers=8, thread_name_prefix="golazo-upstream")


def configure_upstream_pool(max_workers: int) -> int:
    """Replace the shared pool with one of ``max_workers`` threads.

    Calls already running on the old pool finish there.
    """
    global _UPSTREAM_POOL
    workers = max(1, int(max_workers))
    with _pool_lock:
        old, _UPSTREAM_POOL = _UPSTREAM_POOL, ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="golazo-upstream")
    old.shutdown(wait=False)
    log.debug("[UPSTREAM] Pool sized to %d workers", workers)
    return workers


def call_with_timeout(fn: Callable[..., Any], timeout: float, *args, **kwargs) -> Any:
    """Run ``fn`` with a wall-clock bound.

    Raises ``UpstreamTimeout`` if the call does not finish within ``timeout``
    seconds; exceptions raised by ``fn`` propagate unchanged.
    """
    if timeout is None or timeout <= 0:
        return fn(*args, **kwargs)

    with _pool_lock:
        future = _UPSTREAM_POOL.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        name = getattr(fn, "__name__", repr(fn))
        log.warning("[UPSTREAM] %s timed out after %.1fs", name, timeout)
        raise UpstreamTimeout(name, f"timed out after {timeout:.1f}s")
