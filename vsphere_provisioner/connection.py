"""
Shared connection lease.

One vCenter session is shared by every component. Background work takes
a hold on the lease; close() disconnects immediately when no holds are
outstanding and otherwise hands off to a reaper thread that waits for
them to drain (bounded by a hard ceiling).
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Optional

from vsphere_provisioner.endpoint.base import InventoryEndpoint
from vsphere_provisioner.errors import RemoteEndpointError

logger = logging.getLogger(__name__)


class ConnectionLease:
    """Reference-counted guard around an endpoint session"""

    def __init__(self, endpoint: InventoryEndpoint, poll_seconds: float = 5.0,
                 timeout_seconds: float = 1200.0, clock: Callable[[], float] = time.monotonic):
        self.endpoint = endpoint
        self.poll_seconds = poll_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._cond = threading.Condition()
        self._holds = 0
        self._closing = False
        self._closed = False
        self._reaper: Optional[threading.Thread] = None

    @property
    def hold_count(self) -> int:
        with self._cond:
            return self._holds

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def hold(self):
        with self._cond:
            if self._closing or self._closed:
                raise RemoteEndpointError("Connection to vCenter has been closed")
            self._holds += 1

    def release(self):
        with self._cond:
            if self._holds > 0:
                self._holds -= 1
            self._cond.notify_all()

    @contextmanager
    def held(self):
        self.hold()
        try:
            yield self.endpoint
        finally:
            self.release()

    def close(self):
        """Disconnect now, or once every hold has been released."""
        with self._cond:
            if self._closing or self._closed:
                return
            self._closing = True
            pending = self._holds

        if pending == 0:
            self._clean_up()
            return

        logger.info(f"Deferring vCenter disconnect: {pending} operation(s) in flight")
        self._reaper = threading.Thread(target=self._reap, name="vsphere-lease-reaper", daemon=True)
        self._reaper.start()

    def join(self, timeout: Optional[float] = None):
        """Wait for a deferred close to finish."""
        if self._reaper is not None:
            self._reaper.join(timeout)

    def _reap(self):
        deadline = self._clock() + self.timeout_seconds
        with self._cond:
            while self._holds > 0:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    logger.warning(f"Closing vCenter session with {self._holds} hold(s) still outstanding")
                    break
                self._cond.wait(min(self.poll_seconds, remaining))
        self._clean_up()

    def _clean_up(self):
        try:
            self.endpoint.disconnect()
            logger.info("vCenter session closed")
        except Exception as e:
            logger.warning(f"Error closing vCenter session: {e}")
        finally:
            with self._cond:
                self._closed = True
