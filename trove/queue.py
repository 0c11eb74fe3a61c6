"""
trove/queue.py — In-process processing queue.

ProcessingQueue(handler, workers)
  .start()            spawn daemon worker threads
  .submit(asset_id)   returns immediately
  .join(timeout)      block until nothing is queued or running
  .stop(wait)         stop workers; queued ids stay 'pending' in the DB

Per asset id:
  - queued   + submit → coalesced (one run)
  - running  + submit → exactly one rerun after the current run
  - never two runs of the same id at once
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ProcessingQueue:
    def __init__(self, handler: Callable[[str], Any], workers: int = 2) -> None:
        self.handler = handler
        self.workers = max(1, workers)
        self._cond = threading.Condition()
        self._pending: deque[str] = deque()
        self._queued: set[str] = set()
        self._running: set[str] = set()
        self._rerun: set[str] = set()
        self._threads: list[threading.Thread] = []
        self._stopping = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._cond:
            if self._threads:
                return
            self._stopping = False
            for i in range(self.workers):
                t = threading.Thread(
                    target=self._worker, name=f"trove-process-{i}", daemon=True,
                )
                self._threads.append(t)
                t.start()
        logger.info("Processing queue started with %d workers", self.workers)

    def stop(self, wait: bool = True, timeout: float | None = None) -> None:
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
            threads, self._threads = self._threads, []
            left = len(self._pending)
        if wait:
            for t in threads:
                t.join(timeout)
        if left:
            logger.warning("Processing queue stopped with %d assets still pending", left)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, asset_id: str) -> None:
        with self._cond:
            if asset_id in self._queued:
                logger.debug("Asset %s already queued", asset_id)
                return
            if asset_id in self._running:
                self._rerun.add(asset_id)
                logger.debug("Asset %s running, rerun scheduled", asset_id)
                return
            self._pending.append(asset_id)
            self._queued.add(asset_id)
            self._cond.notify_all()

    def join(self, timeout: float | None = None) -> bool:
        """True once the queue is idle; False if `timeout` expired first."""
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._pending and not self._running, timeout,
            )

    @property
    def depth(self) -> int:
        with self._cond:
            return len(self._pending) + len(self._running)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _worker(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._stopping or bool(self._pending))
                if self._stopping:
                    return
                asset_id = self._pending.popleft()
                self._queued.discard(asset_id)
                self._running.add(asset_id)

            try:
                self.handler(asset_id)
            except Exception:
                logger.exception("Processing handler crashed for asset %s", asset_id)
            finally:
                with self._cond:
                    self._running.discard(asset_id)
                    if asset_id in self._rerun:
                        self._rerun.discard(asset_id)
                        self._pending.append(asset_id)
                        self._queued.add(asset_id)
                    self._cond.notify_all()
