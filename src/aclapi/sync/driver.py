"""
Periodic sync driver.

Runs a full pass over every active rule, then waits for the interval or
a shutdown request. A shutdown requested while a pass is running takes
effect once that pass completes; no new pass starts after it.
"""

import threading

from aclapi.errors import ShutdownTimeoutError
from aclapi.log import get_logger
from aclapi.sync.coordinator import SyncCoordinator
from aclapi.sync.service import SyncService

logger = get_logger(__name__)


class PeriodicDriver:
    """
    Background loop around SyncCoordinator.

    Usage:
        driver = PeriodicDriver(coordinator, sync_service, interval=60)
        thread = driver.start()
        ...
        driver.shutdown_periodic_sync(timeout=120)
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        service: SyncService,
        interval: float = 60.0,
        disabled: bool = False,
    ) -> None:
        """
        Initialize the driver.

        Args:
            coordinator: Runs the passes
            service: Source of the active rules
            interval: Seconds to wait between passes
            disabled: Return from the loop immediately
        """
        self.coordinator = coordinator
        self.service = service
        self.interval = interval
        self.disabled = disabled
        self._stop = threading.Event()
        self._stopped = threading.Event()

    def start(self) -> threading.Thread:
        """Run the loop in a daemon thread and return the thread."""
        thread = threading.Thread(
            target=self.run_periodic_sync,
            name="aclapi-periodic-sync",
            daemon=True,
        )
        thread.start()
        return thread

    def run_periodic_sync(self) -> None:
        """Run passes until shutdown is requested. Blocks the caller."""
        logger.info("Starting sync loop")
        self._stopped.clear()
        try:
            if self.disabled:
                logger.info("sync disabled, sync loop not running")
                return
            while True:
                try:
                    rules = self.service.find_active()
                    result = self.coordinator.sync_rules(rules, force=False)
                    logger.debug(
                        "sync pass finished",
                        rules=result.rules_considered,
                        failed=result.failed,
                        duration_ms=round(result.duration_ms, 2),
                    )
                except Exception:
                    logger.exception("error trying to run sync engines")
                if self._stop.wait(self.interval):
                    logger.info("Sync loop stopped")
                    return
        finally:
            self._stopped.set()

    def shutdown_periodic_sync(self, timeout: float) -> None:
        """
        Ask the loop to stop and wait for it to acknowledge.

        Args:
            timeout: Seconds to wait for the running pass to complete

        Raises:
            ShutdownTimeoutError: If the loop did not stop in time
        """
        self._stop.set()
        if not self._stopped.wait(timeout):
            raise ShutdownTimeoutError(timeout_seconds=timeout)
