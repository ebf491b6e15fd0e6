"""
Lock keep-alive.

While a strategy works on a rule, its lock record must keep a fresh ping
time or another worker will consider it abandoned once the lock expiry
passes. LockKeepAlive runs one background thread that owns the set of
held sync IDs and pings all of them on every message and every interval.

Only the keep-alive thread touches the ID set. Other threads talk to it
through a queue: enqueue() and dequeue() send add/remove messages and
stop() sends a stop message and waits for the thread to exit.
"""

import queue
import threading
from typing import Callable

from aclapi.log import get_logger

DEFAULT_KEEPALIVE_INTERVAL = 20.0

_ADD = "add"
_REMOVE = "remove"
_STOP = "stop"

logger = get_logger(__name__)


class LockKeepAlive:
    """
    Background pinger for held sync locks.

    Usage:
        keepalive = LockKeepAlive(sync_store.ping_syncs)
        keepalive.run()
        keepalive.enqueue(info.sync_id)
        ...
        keepalive.dequeue(info.sync_id)
        keepalive.stop()
    """

    def __init__(
        self,
        ping: Callable[[list[str]], None],
        interval: float = DEFAULT_KEEPALIVE_INTERVAL,
    ) -> None:
        """
        Initialize the keep-alive.

        Args:
            ping: Refreshes the ping time of the given sync IDs
            interval: Seconds between pings when no message arrives
        """
        self._ping = ping
        self.interval = interval
        self._queue: queue.Queue[tuple[str, str]] = queue.Queue()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        """Start the keep-alive thread with an empty ID set. No-op if running."""
        if self.running:
            return
        self._queue = queue.Queue()
        self._thread = threading.Thread(
            target=self._loop,
            args=(self._queue,),
            name="aclapi-lock-keepalive",
            daemon=True,
        )
        self._thread.start()

    def enqueue(self, sync_id: str) -> None:
        """Start pinging a sync ID."""
        self._queue.put((_ADD, sync_id))

    def dequeue(self, sync_id: str) -> None:
        """Stop pinging a sync ID."""
        self._queue.put((_REMOVE, sync_id))

    def stop(self) -> None:
        """Stop the thread and wait for it to exit."""
        thread = self._thread
        if thread is None:
            return
        self._queue.put((_STOP, ""))
        thread.join()
        self._thread = None

    def _loop(self, messages: "queue.Queue[tuple[str, str]]") -> None:
        sync_ids: set[str] = set()
        while True:
            try:
                op, sync_id = messages.get(timeout=self.interval)
            except queue.Empty:
                pass
            else:
                if op == _STOP:
                    return
                if op == _ADD:
                    sync_ids.add(sync_id)
                else:
                    sync_ids.discard(sync_id)
            if not sync_ids:
                continue
            try:
                self._ping(sorted(sync_ids))
            except Exception:
                logger.exception(
                    "unable to update sync lock",
                    source="lock-keepalive",
                    sync_ids=len(sync_ids),
                )
