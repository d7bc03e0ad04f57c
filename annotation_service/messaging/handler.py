"""
Message handler: turns broker deliveries into coordinator submissions and
coordinator outcomes into broker dispositions.

    receive(message)  decode -> submit to coordinator -> PendingDocument
    complete(pending) publish result then ack, or retry, or dead-letter

``receive`` and ``complete`` are called from the consumer thread only; the
handler itself never touches the network except through the ``publish``
callable and the message's own ack/reject methods.

Outcome table:
    ok / partial result              publish, then ack
    transient failure or timeout     requeue while attempt <= max_retries
    retries exhausted                [publish failed result], dead-letter
    deterministic failure            [publish failed result], dead-letter
    undecodable payload              dead-letter, nothing published
    publish raised                   requeue (never acked)
"""

import logging
from concurrent.futures import CancelledError, Future
from typing import Any, Callable, Dict, List, Optional

from annotation_service.errors import DecodeError, DocumentFailed, ProcessingTimeout
from annotation_service.messaging.codec import decode_message
from annotation_service.messaging.delivery import Delivery, Disposition
from annotation_service.messaging.redelivery import RedeliveryTracker
from annotation_service.models.document import Document
from annotation_service.models.result import AnnotationResult, ResultStatus
from annotation_service.utils.dead_letter_queue import DeadLetterQueue

logger = logging.getLogger(__name__)


class PendingDocument:
    """A submitted document whose delivery is still open."""

    __slots__ = ("delivery", "document", "future", "attempt", "payload")

    def __init__(self, delivery: Delivery, document: Document, future: Future, attempt: int, payload: Any):
        self.delivery = delivery
        self.document = document
        self.future = future
        self.attempt = attempt
        self.payload = payload

    @property
    def document_id(self) -> str:
        return self.document.id


def failed_result(document: Document, error: str) -> AnnotationResult:
    """Bare ``failed`` result for a document whose partial state is not usable."""
    return AnnotationResult(
        id=document.id,
        status=ResultStatus.FAILED,
        error=error,
        task_id=document.task_id,
        chunk_index=document.chunk_index,
        total_chunks=document.total_chunks,
    )


class MessageHandler:
    """
    Broker-agnostic delivery handling.

    Args:
        coordinator: Object with ``submit(document) -> Future``
        publish: Callable publishing one AnnotationResult; must raise on failure
        dead_letters: Ledger receiving every dead-lettered message
        max_retries: Requeues allowed for transient failures (default from settings)
        publish_failures: Publish a ``failed`` result before dead-lettering
        source: Queue name recorded in the ledger
        max_text_length: Inbound text limit (default from settings)
    """

    def __init__(
        self,
        coordinator: Any,
        publish: Callable[[AnnotationResult], None],
        dead_letters: Optional[DeadLetterQueue] = None,
        max_retries: Optional[int] = None,
        publish_failures: Optional[bool] = None,
        source: str = "",
        max_text_length: Optional[int] = None,
        tracker: Optional[RedeliveryTracker] = None,
    ):
        from annotation_service.config import settings

        self.coordinator = coordinator
        self.publish = publish
        self.dead_letters = dead_letters if dead_letters is not None else DeadLetterQueue()
        self.max_retries = (
            max_retries if max_retries is not None else settings.coordinator.max_retries
        )
        self.publish_failures = (
            publish_failures if publish_failures is not None else settings.broker.publish_failures
        )
        self.source = source
        self.max_text_length = (
            max_text_length if max_text_length is not None else settings.pipeline.max_text_length
        )
        self.tracker = tracker if tracker is not None else RedeliveryTracker()
        self._pending: Dict[int, PendingDocument] = {}
        self.counts: Dict[str, int] = {d.value: 0 for d in Disposition}

    @property
    def pending(self) -> List[PendingDocument]:
        return list(self._pending.values())

    # ------------------------------------------------------------------
    # Receipt
    # ------------------------------------------------------------------

    def receive(self, message: Any) -> Optional[PendingDocument]:
        """
        Decode a delivery and submit it to the coordinator.

        Blocks while the coordinator is saturated. Returns None when the
        delivery was settled immediately (undecodable payload, coordinator
        shutting down).
        """
        delivery = Delivery(message)
        payload = delivery.body

        with delivery:
            try:
                inbound = decode_message(payload, max_text_length=self.max_text_length)
            except DecodeError as exc:
                delivery.document_id = exc.document_id
                logger.warning("Undecodable message %s: %s", exc.document_id or delivery.delivery_tag, exc)
                self._dead_letter(delivery, "decode_error", str(exc), 1, payload)
                return None

            document = inbound.to_document()
            delivery.document_id = document.id
            attempt = self.tracker.record(document.id, delivery.headers, delivery.redelivered)
            logger.info(
                "Received document %s (attempt %d, %d chars)", document.id, attempt, len(document.text),
            )

            try:
                future = self.coordinator.submit(document)
            except RuntimeError as exc:
                logger.warning("Coordinator refused %s: %s", document.id, exc)
                self._settle(delivery, Disposition.REQUEUED)
                return None

        pending = PendingDocument(delivery, document, future, attempt, payload)
        self._pending[id(pending)] = pending
        return pending

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete(self, pending: PendingDocument) -> Optional[Disposition]:
        """Settle the delivery of a finished document. Returns the disposition."""
        self._pending.pop(id(pending), None)
        delivery = pending.delivery
        if delivery.settled:
            logger.debug("Skipping %r, settled earlier", delivery)
            return delivery.disposition

        with delivery:
            try:
                result = pending.future.result(timeout=0)
            except (DocumentFailed, ProcessingTimeout) as exc:
                self._handle_failure(pending, exc)
            except CancelledError:
                logger.info("Document %s cancelled, requeuing", pending.document_id)
                self._settle(delivery, Disposition.REQUEUED)
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception("Unexpected failure for document %s", pending.document_id)
                self._handle_failure(
                    pending, DocumentFailed(f"{type(exc).__name__}: {exc}", transient=True),
                )
            else:
                if self._try_publish(pending, result):
                    self._settle(delivery, Disposition.ACKED)
                    self.tracker.forget(pending.document_id)
                    logger.info(
                        "Published %s result for %s (%d sentences)",
                        result.status.value, result.id, len(result),
                    )
        return delivery.disposition

    def release_pending(self) -> int:
        """Requeue every outstanding delivery (shutdown). Returns how many."""
        released = 0
        for pending in list(self._pending.values()):
            if not pending.delivery.settled:
                try:
                    self._settle(pending.delivery, Disposition.REQUEUED)
                    released += 1
                except Exception:  # pylint: disable=broad-except
                    logger.exception("Could not requeue %s", pending.document_id)
        self._pending.clear()
        if released:
            logger.info("Requeued %d outstanding deliveries", released)
        return released

    def abandon_pending(self) -> int:
        """Forget open deliveries whose channel is gone; the broker redelivers them."""
        count = 0
        for pending in list(self._pending.values()):
            if not pending.delivery.settled:
                pending.delivery.abandon()
                self.counts[Disposition.ABANDONED.value] += 1
                count += 1
        self._pending.clear()
        if count:
            logger.warning("Abandoned %d deliveries after connection loss", count)
        return count

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _handle_failure(self, pending: PendingDocument, exc: Exception) -> None:
        delivery = pending.delivery
        transient = getattr(exc, 'transient', False)

        if transient and pending.attempt <= self.max_retries:
            logger.warning(
                "Transient failure on %s (attempt %d of %d), requeuing: %s",
                pending.document_id, pending.attempt, self.max_retries + 1, exc,
            )
            self._settle(delivery, Disposition.REQUEUED)
            return

        reason = "retries_exhausted" if transient else "pipeline_failure"
        if self.publish_failures:
            result = getattr(exc, 'result', None)
            if result is None:
                result = failed_result(pending.document, str(exc))
            if not self._try_publish(pending, result):
                return

        self._dead_letter(delivery, reason, str(exc), pending.attempt, pending.payload)

    def _try_publish(self, pending: PendingDocument, result: AnnotationResult) -> bool:
        try:
            self.publish(result)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Publishing result for %s failed, requeuing: %s", pending.document_id, exc)
            self._settle(pending.delivery, Disposition.REQUEUED)
            return False
        return True

    def _dead_letter(
        self,
        delivery: Delivery,
        reason: str,
        error: str,
        attempt: int,
        payload: Any,
    ) -> None:
        logger.warning("Dead-lettering %s (%s): %s", delivery.document_id or delivery.delivery_tag, reason, error)
        # Settle first: a ledger failure must not turn a terminal reject into a requeue
        self._settle(delivery, Disposition.DEAD_LETTERED)
        if delivery.document_id:
            self.tracker.forget(delivery.document_id)
        try:
            self.dead_letters.add(
                delivery.document_id,
                reason=reason,
                error=error,
                attempt_count=attempt,
                source=self.source,
                payload=payload,
            )
        except Exception:  # pylint: disable=broad-except
            logger.exception(
                "Could not record %s in the dead-letter ledger %s",
                delivery.document_id or delivery.delivery_tag, self.dead_letters.log_path,
            )

    def _settle(self, delivery: Delivery, disposition: Disposition) -> None:
        if disposition == Disposition.ACKED:
            delivery.ack()
        elif disposition == Disposition.REQUEUED:
            delivery.retry()
        elif disposition == Disposition.DEAD_LETTERED:
            delivery.dead_letter()
        self.counts[disposition.value] += 1
