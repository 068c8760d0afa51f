"""Background update check whose result can be superseded."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from .update import Updater

logger = logging.getLogger(__name__)

DEV_VERSION = "dev"


@dataclass(frozen=True)
class UpdateStatus:
    available: bool = False
    latest: str = ""
    check_failed: bool = False


@dataclass(frozen=True)
class UpdateStatusSnapshot:
    generation: int
    status: UpdateStatus


def check_update_status(updater: Updater) -> UpdateStatus:
    """
    Run one update check and fold the outcome into an UpdateStatus.

    Development builds never check.
    """
    if updater.current_version == DEV_VERSION:
        return UpdateStatus()
    tag, available = updater.check()
    return UpdateStatus(available=available, latest=tag)


class UpdateStatusCoordinator:
    """
    Runs update checks in the background and keeps the latest result.

    Every ``start`` or ``cancel`` bumps a generation counter. A check only
    publishes if the generation it was started under is still current, so
    a slow check that finishes after auto-update was switched off (or a
    newer check was started) is dropped.
    """

    def __init__(self, max_workers: int = 1):
        self._lock = threading.Lock()
        self._generation = 0
        self._status = UpdateStatus()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="update-check")

    def start(self, check: Callable[[], UpdateStatus]) -> int:
        """
        Begin a new check, superseding any check still in flight.

        Returns:
            The generation the check runs under
        """
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._status = UpdateStatus()
        self._executor.submit(self._run, generation, check)
        logger.debug(f"Started update check generation {generation}")
        return generation

    def _run(self, generation: int, check: Callable[[], UpdateStatus]) -> None:
        try:
            status = check()
        except Exception as e:
            logger.warning(f"Update check failed: {e}")
            status = UpdateStatus(check_failed=True)
        self.publish(generation, status)

    def cancel(self) -> int:
        """Invalidate in-flight checks and clear the status."""
        with self._lock:
            self._generation += 1
            self._status = UpdateStatus()
            return self._generation

    def publish(self, generation: int, status: UpdateStatus) -> bool:
        """
        Store ``status`` if ``generation`` is still current.

        Returns:
            True if the status was stored, False if it was stale
        """
        with self._lock:
            if generation != self._generation:
                logger.debug(f"Discarding stale update status from generation {generation}")
                return False
            self._status = status
            return True

    def status(self) -> UpdateStatus:
        with self._lock:
            return self._status

    def snapshot(self) -> UpdateStatusSnapshot:
        with self._lock:
            return UpdateStatusSnapshot(self._generation, self._status)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def start_update_check(coordinator: UpdateStatusCoordinator, updater: Updater) -> int:
    return coordinator.start(lambda: check_update_status(updater))
