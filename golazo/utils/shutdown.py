import atexit
import logging
import signal
import threading
from typing import Callable, List, Optional, Tuple

log = logging.getLogger("golazo.shutdown")


class ShutdownManager:
    """Stops the monitor once, whichever of SIGINT, SIGTERM or interpreter exit comes first.

    Cleanup steps run in registration order; a failing step is logged and the
    remaining steps still run. ``wait()`` blocks the main thread until cleanup
    has finished.
    """

    def __init__(self):
        self.reason: Optional[str] = None
        self._steps: List[Tuple[str, Callable[[], None]]] = []
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._installed = False

    def register_shutdown_handler(self, handler: Callable[[], None], name: Optional[str] = None):
        self._steps.append((name or getattr(handler, "__qualname__", repr(handler)), handler))

    def request_shutdown(self, reason: str = "requested"):
        with self._lock:
            if self.reason is not None:
                return
            self.reason = reason

        log.info("[SHUTDOWN] Stopping (%s), %d cleanup step(s)", reason, len(self._steps))
        for name, step in self._steps:
            try:
                step()
            except Exception as e:
                log.warning("[SHUTDOWN] %s failed: %s", name, e)
        self._done.set()
        log.info("[SHUTDOWN] Done")

    def is_shutdown_requested(self) -> bool:
        return self.reason is not None

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def register_signal_handlers(self):
        """Install SIGINT/SIGTERM handlers and an atexit hook; must run on the main thread."""
        if self._installed:
            return

        def on_signal(signum, frame):
            self.request_shutdown(signal.Signals(signum).name)

        signal.signal(signal.SIGINT, on_signal)
        signal.signal(signal.SIGTERM, on_signal)
        atexit.register(self.request_shutdown, "interpreter exit")
        self._installed = True
