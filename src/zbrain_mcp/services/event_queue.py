"""Debounced queue for document change events.

Editors save a note several times in quick succession. Events are kept in a
pending map keyed by path (the latest event per path wins) and handed to the
callback as one batch once no new event arrived for the quiescence window.
Deliveries run one at a time under a worker lock, which callers can share
with any other code that edits the vault.
"""
import logging
import threading
from typing import Callable, ContextManager, Dict, List, Optional

from zbrain_mcp.models.schema import ChangeEvent

logger = logging.getLogger(__name__)

BatchCallback = Callable[[List[ChangeEvent]], object]


class DebouncedEventQueue:
    """Collapse bursts of change events into batches."""

    def __init__(
        self,
        callback: BatchCallback,
        delay: float = 3.0,
        worker_lock: Optional[ContextManager] = None,
    ):
        self._callback = callback
        self._delay = delay
        self._worker_lock = worker_lock or threading.RLock()
        self._pending: Dict[str, ChangeEvent] = {}
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._stopped = False

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def push(self, event: ChangeEvent) -> None:
        """Queue an event and restart the quiescence timer."""
        with self._lock:
            if self._stopped:
                return
            # Re-inserting moves the path to the end of the batch
            self._pending.pop(event.path, None)
            self._pending[event.path] = event

            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._on_timer)
            self._timer.daemon = True
            self._timer.start()

    __call__ = push

    def flush(self) -> List[ChangeEvent]:
        """Cancel the timer and deliver pending events now.

        Returns:
            The delivered batch (empty if nothing was pending).
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            batch = list(self._pending.values())
            self._pending.clear()

        if batch:
            self._deliver(batch)
        return batch

    def stop(self) -> None:
        """Cancel the timer and drop pending events."""
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            dropped = len(self._pending)
            self._pending.clear()
        if dropped:
            logger.info(f"Event queue stopped, {dropped} pending events dropped")

    def _on_timer(self) -> None:
        """Called by timer. Drains the queue."""
        self.flush()

    def _deliver(self, batch: List[ChangeEvent]) -> None:
        with self._worker_lock:
            logger.debug(f"Delivering {len(batch)} change events")
            try:
                self._callback(batch)
            except Exception as e:
                # Runs on the timer thread; nothing above it would see the error
                logger.error(f"Change event handler failed: {e}", exc_info=True)
