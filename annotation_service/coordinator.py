"""
Pipeline coordinator: bounded concurrent execution of annotation pipelines.

Each of ``pool_size`` worker threads owns one pipeline instance (a "slot") and
runs one document at a time through all stages. Submissions beyond
``pool_size + queue_capacity`` admitted documents block, which is the
backpressure the queue adapter relies on (its broker prefetch uses the same
number).

A document that runs longer than ``timeout`` seconds is abandoned: its future
fails with ``ProcessingTimeout``, the slot is reclaimed by starting a
replacement worker with a fresh pipeline, and the abandoned worker exits as
soon as its current stage returns. Stages cannot be interrupted mid-call.

Usage:
    coordinator = PipelineCoordinator(pipeline_factory(), pool_size=4)
    with coordinator:
        future = coordinator.submit(document)
        result = future.result()
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, List, Optional

from annotation_service.config.coordinator import CoordinatorConfig
from annotation_service.errors import DocumentFailed, ProcessingTimeout
from annotation_service.models.document import Document, DocumentStatus
from annotation_service.models.result import AnnotationResult

logger = logging.getLogger(__name__)

_STOP = object()


class _Job:
    """One admitted document and its completion state."""

    __slots__ = ("document", "future", "worker", "timer", "running", "settled")

    def __init__(self, document: Document):
        self.document = document
        self.future: Future = Future()
        self.worker: Optional["_SlotWorker"] = None
        self.timer: Optional[threading.Timer] = None
        self.running = False
        self.settled = False


class _SlotWorker(threading.Thread):
    """Worker thread bound to one slot and one pipeline instance."""

    def __init__(self, coordinator: "PipelineCoordinator", slot: int, pipeline: Any, generation: int):
        super().__init__(name=f"annotation-slot-{slot}.{generation}", daemon=True)
        self.coordinator = coordinator
        self.slot = slot
        self.pipeline = pipeline
        self.retired = False

    def run(self) -> None:
        self.coordinator._work(self)


class PipelineCoordinator:
    """
    Fixed-size pool of pipeline slots with an internal bounded queue.

    Args:
        pipeline_factory: Zero-argument callable returning an object with
            ``run(document) -> AnnotationResult``; called once per slot and
            again for every replacement after a timeout
        pool_size: Number of slots (default from settings)
        queue_capacity: Admitted documents waiting for a slot (default from settings)
        timeout: Seconds per document once started (default from settings)
    """

    def __init__(
        self,
        pipeline_factory: Callable[[], Any],
        pool_size: Optional[int] = None,
        queue_capacity: Optional[int] = None,
        timeout: Optional[float] = None,
        config: Optional[CoordinatorConfig] = None,
    ):
        if config is None:
            from annotation_service.config import settings
            config = settings.coordinator
        self.pipeline_factory = pipeline_factory
        self.pool_size = pool_size if pool_size is not None else config.pool_size
        self.queue_capacity = (
            queue_capacity if queue_capacity is not None else config.queue_capacity
        )
        self.timeout = timeout if timeout is not None else config.timeout
        if self.pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        if self.queue_capacity < 0:
            raise ValueError("queue_capacity must be non-negative")

        self._admission = threading.BoundedSemaphore(self.pool_size + self.queue_capacity)
        self._jobs: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._workers: List[_SlotWorker] = []
        self._respawning = 0
        self._generation = 0
        self._started = False
        self._stopping = False

        self._active = 0
        self._peak_active = 0
        self._completed = 0
        self._timed_out = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "PipelineCoordinator":
        """Build one pipeline per slot and start the workers."""
        if self._started:
            return self
        logger.info(
            "Starting coordinator: %d slot(s), queue capacity %d, timeout %.1fs",
            self.pool_size, self.queue_capacity, self.timeout,
        )
        for slot in range(self.pool_size):
            self._spawn_worker(slot)
        self._started = True
        return self

    def stop(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """
        Stop accepting documents and shut the workers down.

        Args:
            wait: Block until the workers exit (queued documents are finished
                first unless *cancel_pending*)
            cancel_pending: Cancel documents that have not started yet
        """
        if not self._started or self._stopping:
            return
        self._stopping = True

        if cancel_pending:
            self._cancel_queued()

        # Every worker that takes the sentinel puts it back before exiting
        self._jobs.put(_STOP)
        if wait:
            with self._changed:
                while self._workers or self._respawning:
                    self._changed.wait()
            self._cancel_queued()
        logger.info(
            "Coordinator stopped: %d completed, %d timed out, peak %d active",
            self._completed, self._timed_out, self._peak_active,
        )

    def __enter__(self) -> "PipelineCoordinator":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop(wait=True)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        document: Document,
        block: bool = True,
        timeout: Optional[float] = None,
    ) -> Future:
        """
        Admit a document for processing.

        Blocks while ``pool_size + queue_capacity`` documents are admitted.

        Returns:
            Future resolving to an ``AnnotationResult`` or failing with
            ``DocumentFailed`` / ``ProcessingTimeout``.

        Raises:
            RuntimeError: Coordinator not started or stopping.
            queue.Full: No admission within *timeout* (or at once if not *block*).
        """
        if not self._started or self._stopping:
            raise RuntimeError("Coordinator is not running")
        if not self._admission.acquire(blocking=block, timeout=timeout if block else None):
            raise queue.Full(f"Coordinator saturated, document {document.id} not admitted")

        job = _Job(document)
        self._jobs.put(job)
        return job.future

    def run(self, document: Document) -> AnnotationResult:
        """Submit a document and wait for its result (raises its failure)."""
        return self.submit(document).result()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def active_runs(self) -> int:
        """Pipeline runs currently holding a slot."""
        with self._lock:
            return self._active

    @property
    def peak_active_runs(self) -> int:
        with self._lock:
            return self._peak_active

    @property
    def pending(self) -> int:
        """Admitted documents not started yet (approximate)."""
        return self._jobs.qsize()

    @property
    def running(self) -> bool:
        return self._started and not self._stopping

    def stats(self) -> dict:
        with self._lock:
            return {
                "active": self._active,
                "peak_active": self._peak_active,
                "completed": self._completed,
                "timed_out": self._timed_out,
                "pending": self._jobs.qsize(),
                "workers": len(self._workers),
            }

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _spawn_worker(self, slot: int) -> None:
        pipeline = self.pipeline_factory()
        with self._changed:
            self._generation += 1
            worker = _SlotWorker(self, slot, pipeline, self._generation)
            self._workers.append(worker)
            self._changed.notify_all()
        worker.start()
        logger.debug("Started %s", worker.name)

    def _cancel_queued(self) -> int:
        """Cancel every admitted document that has not started. Returns how many."""
        cancelled = 0
        while True:
            try:
                job = self._jobs.get_nowait()
            except queue.Empty:
                break
            if job is _STOP:
                continue
            if job.future.cancel():
                with self._lock:
                    job.settled = True
                self._admission.release()
                cancelled += 1
        if cancelled:
            logger.info("Cancelled %d pending document(s)", cancelled)
        return cancelled

    def _work(self, worker: _SlotWorker) -> None:
        while True:
            job = self._jobs.get()
            if job is _STOP:
                self._jobs.put(_STOP)
                break
            if not job.future.set_running_or_notify_cancel():
                # Cancelled by the caller before it started
                with self._lock:
                    job.settled = True
                self._admission.release()
                continue
            self._run_job(worker, job)
            if worker.retired:
                logger.warning("%s abandoned after timeout, exiting", worker.name)
                break

        self._retire(worker)

    def _retire(self, worker: _SlotWorker) -> None:
        """Drop a worker; when the last one leaves a stopping pool, cancel what is left."""
        with self._changed:
            if worker in self._workers:
                self._workers.remove(worker)
            orphaned = self._stopping and not self._workers and not self._respawning
            self._changed.notify_all()
        if orphaned:
            self._cancel_queued()

    def _run_job(self, worker: _SlotWorker, job: _Job) -> None:
        document = job.document
        with self._lock:
            job.worker = worker
            job.running = True
            self._active += 1
            self._peak_active = max(self._peak_active, self._active)

        job.timer = threading.Timer(self.timeout, self._expire, args=(job,))
        job.timer.daemon = True
        job.timer.start()

        result = None
        failure: Optional[BaseException] = None
        try:
            result = worker.pipeline.run(document)
        except DocumentFailed as exc:
            failure = exc
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected pipeline error on document %s", document.id)
            document.status = DocumentStatus.FAILED
            message = f"{type(exc).__name__}: {exc}"
            document.add_error("pipeline", message)
            failure = DocumentFailed(
                message, transient=False, result=document.to_result(error=message),
            )
        finally:
            job.timer.cancel()

        with self._lock:
            settled = self._settle(job)
            if settled:
                self._completed += 1
        if not settled:
            logger.info(
                "Discarding late result of abandoned document %s", document.id,
            )
            return

        self._admission.release()
        if failure is not None:
            job.future.set_exception(failure)
        else:
            job.future.set_result(result)

    def _expire(self, job: _Job) -> None:
        with self._changed:
            if not self._settle(job):
                return
            job.worker.retired = True
            self._timed_out += 1
            if job.worker in self._workers:
                self._workers.remove(job.worker)
            self._respawning += 1
            slot = job.worker.slot

        logger.warning(
            "Document %s exceeded %.1fs, reclaiming slot %d", job.document.id, self.timeout, slot,
        )
        self._admission.release()
        job.future.set_exception(ProcessingTimeout(job.document.id, self.timeout))

        # Replaced even while stopping: queued documents still need a worker
        try:
            self._spawn_worker(slot)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Could not rebuild pipeline for slot %d, pool shrinks", slot)
        finally:
            with self._changed:
                self._respawning -= 1
                orphaned = self._stopping and not self._workers
                self._changed.notify_all()
            if orphaned:
                self._cancel_queued()

    def _settle(self, job: _Job) -> bool:
        """Mark a job settled exactly once. Caller holds ``self._lock``."""
        if job.settled:
            return False
        job.settled = True
        if job.running:
            job.running = False
            self._active -= 1
        return True
