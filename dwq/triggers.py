"""
Discovery triggers: the stimuli that make a worker look for work.

- ChildWatch: fires on every change to the registry's child set. Built from
  one-shot watches that it re-arms on every firing, so callers see a
  persistent subscription.
- PeriodicScan: safety net against missed or coalesced notifications. The
  first run is delayed by a random fraction of the period so a fleet started
  together does not hit the coordination service in lockstep.

(The other two triggers, the startup scan and the completion-chained scan,
live in DistributedWorkQueue and ClaimScanner.)
"""

from __future__ import annotations

import logging
import random
import threading
from typing import Callable, List, Optional

from dwq.coordination.protocol import CoordinationClient, EventType, WatchedEvent

logger = logging.getLogger(__name__)


class ChildWatch:
    """
    Self re-arming child watch on one node.

    Usage:
        watch = ChildWatch(client, "/queue", on_children=scanner.scan)
        children = watch.start()     # reads and arms
        ...
        watch.cancel()
    """

    def __init__(
        self,
        client: CoordinationClient,
        path: str,
        on_children: Callable[[List[str]], None],
    ) -> None:
        self._client = client
        self._path = path
        self._on_children = on_children
        self._cancelled = False

    @property
    def path(self) -> str:
        return self._path

    def start(self) -> List[str]:
        """Arm the watch and return the children seen while arming."""
        return self.read()

    def read(self) -> List[str]:
        """Re-read children, re-arming the watch in the same call."""
        return self._client.get_children(self._path, watch=self)

    def cancel(self) -> None:
        """Ignore all later firings (the armed watch itself expires on its own)."""
        self._cancelled = True

    def __call__(self, event: WatchedEvent) -> None:
        if self._cancelled:
            return
        if event.type is EventType.CHILDREN_CHANGED:
            if event.path != self._path:
                logger.info("Unexpected path for children-changed event %s", event.path)
                return
            try:
                children = self.read()
            except Exception:
                logger.error("Failed to look for work in %s", self._path, exc_info=True)
                return
            self._on_children(children)
        else:
            logger.info(
                "Got unexpected coordination event %s for %s",
                event.type.value,
                self._path,
            )


class PeriodicScan:
    """
    Run ``action`` every ``period`` seconds on a daemon thread.

    The first run happens after a random delay in [0, period). Exceptions
    from ``action`` are logged and the schedule continues.
    """

    def __init__(
        self,
        action: Callable[[], None],
        period: float = 60.0,
        *,
        initial_delay: Optional[float] = None,
        name: str = "dwq-periodic-scan",
        rng: Optional[random.Random] = None,
    ) -> None:
        if period <= 0:
            raise ValueError("period must be > 0")
        self._action = action
        self._period = period
        self._initial_delay = initial_delay
        self._name = name
        self._rng = rng or random.Random()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def period(self) -> float:
        return self._period

    def start(self) -> None:
        if self._thread is not None:
            return
        delay = self._initial_delay
        if delay is None:
            delay = self._rng.random() * self._period
        self._thread = threading.Thread(
            target=self._loop, args=(delay,), name=self._name, daemon=True
        )
        self._thread.start()
        logger.debug("%s scheduled: first run in %.1fs, then every %.1fs", self._name, delay, self._period)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self, delay: float) -> None:
        if self._stop.wait(delay):
            return
        while True:
            try:
                self._action()
            except Exception:
                logger.error("Failed to look for work (%s)", self._name, exc_info=True)
            if self._stop.wait(self._period):
                return
