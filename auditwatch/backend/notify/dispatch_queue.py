"""
notify/dispatch_queue.py

DispatchQueue — bounded hand-off of delivery jobs to a worker thread so a
slow notification channel cannot stall the thread that logged the event.

When the queue is full the *oldest* job is discarded (ring-buffer semantics,
counted in METRICS.jobs_dropped) rather than blocking the producer.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable

from ..metrics import METRICS

logger = logging.getLogger(__name__)

Job = Callable[[], object]

_STOP = object()


class DispatchQueue:
    def __init__(self, maxsize: int = 500, name: str = "dispatch-worker") -> None:
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._name = name
        self._thread: threading.Thread | None = None
        self._put_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.info("DispatchQueue started (maxsize=%d)", self._queue.maxsize)

    def stop(self, timeout: float = 5.0) -> None:
        """Drain queued jobs, then stop the worker. Never blocks longer than `timeout` to enqueue."""
        if self._thread is None:
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Dispatch queue still full at shutdown — dropping oldest job to stop the worker")
            self.submit(_STOP)
        self._thread.join(timeout)
        self._thread = None
        logger.info("DispatchQueue stopped")

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def submit(self, job: Job) -> bool:
        """Enqueue without blocking. Returns False only if the job could not be queued."""
        with self._put_lock:
            if self._queue.full():
                try:
                    self._queue.get_nowait()
                    self._queue.task_done()
                    METRICS.jobs_dropped.inc()
                    logger.warning(
                        "Dispatch queue full (%d/%d) — oldest job dropped",
                        self._queue.qsize(), self._queue.maxsize,
                    )
                except queue.Empty:
                    pass  # worker drained it in between
            try:
                self._queue.put_nowait(job)
                return True
            except queue.Full:
                METRICS.jobs_dropped.inc()
                logger.error("Dispatch queue still full — job dropped")
                return False

    def join(self) -> None:
        """Block until every queued job has run."""
        self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                job()
            except Exception as exc:
                logger.exception("Delivery job raised: %s", exc)
            finally:
                self._queue.task_done()
