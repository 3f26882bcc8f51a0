"""
Response-window timers.

When a paid order reaches a restaurant, the restaurant has a fixed window to
accept or reject it. ``ResponseWindowScheduler`` keeps at most one in-process
timer per order id; scheduling again for the same order replaces the old
timer. Timers do not survive a restart: the ``expire_response_windows`` task
sweeps persisted deadlines to cover that.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict

from django.db import close_old_connections, connection

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class TimerHandle:
    order_id: int
    timer: threading.Timer

    @property
    def active(self) -> bool:
        return self.timer.is_alive() and not self.timer.finished.is_set()


class ResponseWindowScheduler:

    def __init__(self):
        self._timers: Dict[int, TimerHandle] = {}
        self._lock = threading.Lock()

    def schedule(self, order_id: int, delay: float, callback: Callable[[int], None]) -> TimerHandle:
        """Run ``callback(order_id)`` after ``delay`` seconds, replacing any pending timer."""
        timer = threading.Timer(delay, self._fire, args=(order_id, callback))
        timer.daemon = True
        handle = TimerHandle(order_id=order_id, timer=timer)

        with self._lock:
            previous = self._timers.pop(order_id, None)
            if previous is not None:
                previous.timer.cancel()
                logger.info(f"Replaced response timer for order #{order_id}")
            self._timers[order_id] = handle
            timer.start()

        logger.info(f"Response window started for order #{order_id} ({delay}s)")
        return handle

    def cancel(self, handle: TimerHandle) -> bool:
        """Cancel ``handle`` if it is still the live timer for its order."""
        with self._lock:
            live = self._timers.get(handle.order_id) is handle
            if live:
                del self._timers[handle.order_id]
        handle.timer.cancel()
        return live

    def cancel_order(self, order_id: int) -> bool:
        with self._lock:
            handle = self._timers.pop(order_id, None)
        if handle is None:
            return False
        handle.timer.cancel()
        logger.info(f"Response timer cancelled for order #{order_id}")
        return True

    def is_scheduled(self, order_id: int) -> bool:
        with self._lock:
            handle = self._timers.get(order_id)
        return handle is not None and handle.active

    def _fire(self, order_id, callback):
        with self._lock:
            handle = self._timers.get(order_id)
            if handle is not None and handle.timer is threading.current_thread():
                del self._timers[order_id]

        close_old_connections()
        try:
            callback(order_id)
        except Exception:
            logger.exception(f"Response window callback failed for order #{order_id}")
        finally:
            connection.close()


_scheduler = None


def get_scheduler() -> ResponseWindowScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = ResponseWindowScheduler()
    return _scheduler
