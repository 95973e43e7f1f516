"""Change poller - pulls the store's change log into a CacheSynchronizer."""

import logging
import threading
from typing import Optional

from opsboard.core.config import settings
from opsboard.core.errors import TransportError

logger = logging.getLogger(__name__)


class ChangePoller:
    def __init__(self, store, synchronizer, since: int = 0, interval: Optional[float] = None, limit: Optional[int] = None):
        self.store = store
        self.synchronizer = synchronizer
        self.cursor = since
        self.interval = interval if interval is not None else settings.POLL_INTERVAL
        self.limit = limit
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> int:
        """Fetch and apply new events. Returns how many were applied."""
        page = self.store.list_changes(since=self.cursor, limit=self.limit)

        if page.reset:
            # on a raté des événements : tout est potentiellement faux
            logger.warning("change cursor %s is out of range (latest %s)", self.cursor, page.latest)
            self.synchronizer.invalidate_all()

        applied = 0
        for change in page.events:
            if change.seq <= self.cursor and not page.reset:
                continue
            self.synchronizer.on_change_event(change)
            applied += 1

        if page.events:
            self.cursor = page.events[-1].seq
        elif page.reset:
            self.cursor = page.latest
        return applied

    def run_forever(self) -> None:
        logger.info("polling changes every %ss from #%s", self.interval, self.cursor)
        while not self._stop.is_set():
            try:
                self.poll_once()
            except TransportError as e:
                logger.warning("change poll failed: %s", e.message)
            self._stop.wait(self.interval)

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="opsboard-change-poller", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
            self._thread = None
