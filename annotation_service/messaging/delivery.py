"""
Acknowledgment scope for one broker delivery.

A ``Delivery`` wraps a received message and guarantees it is settled exactly
once: acknowledged, requeued for retry, or rejected without requeue so the
broker routes it to the dead-letter exchange. Used as a context manager, an
exception that escapes the block while the delivery is still open requeues it.

Usage:
    with Delivery(message) as delivery:
        publish(result)
        delivery.ack()
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class Disposition(str, Enum):
    """How a delivery was settled."""
    ACKED = "acked"
    REQUEUED = "requeued"
    DEAD_LETTERED = "dead_lettered"
    # Channel went away; the broker redelivers on its own
    ABANDONED = "abandoned"


class DeliveryAlreadySettled(RuntimeError):
    """A second disposition was attempted on a settled delivery."""


class Delivery:
    """
    Settle-once wrapper around a kombu ``Message`` (or anything with
    ``ack()``, ``requeue()`` and ``reject(requeue=...)``).
    """

    def __init__(self, message: Any, document_id: Optional[str] = None):
        self.message = message
        self.document_id = document_id
        self.disposition: Optional[Disposition] = None

    def __repr__(self) -> str:
        state = self.disposition.value if self.disposition else "open"
        return f"<Delivery {self.document_id or self.delivery_tag} {state}>"

    @property
    def settled(self) -> bool:
        return self.disposition is not None

    @property
    def delivery_tag(self) -> Any:
        return getattr(self.message, 'delivery_tag', None)

    @property
    def headers(self) -> Dict[str, Any]:
        return getattr(self.message, 'headers', None) or {}

    @property
    def redelivered(self) -> bool:
        info = getattr(self.message, 'delivery_info', None) or {}
        return bool(info.get('redelivered', False))

    @property
    def body(self) -> Any:
        return getattr(self.message, 'body', None)

    # ------------------------------------------------------------------
    # Dispositions
    # ------------------------------------------------------------------

    def ack(self) -> None:
        """Acknowledge: the broker forgets the message."""
        self._settle(Disposition.ACKED)
        self.message.ack()

    def retry(self) -> None:
        """Reject with requeue: the broker redelivers the message."""
        self._settle(Disposition.REQUEUED)
        self.message.requeue()

    def dead_letter(self) -> None:
        """Reject without requeue: routed to the dead-letter exchange if configured."""
        self._settle(Disposition.DEAD_LETTERED)
        self.message.reject(requeue=False)

    def abandon(self) -> None:
        """Mark settled without talking to the broker (channel already closed)."""
        if not self.settled:
            self.disposition = Disposition.ABANDONED

    def _settle(self, disposition: Disposition) -> None:
        if self.disposition is not None:
            raise DeliveryAlreadySettled(
                f"{self!r} cannot be {disposition.value}, already {self.disposition.value}"
            )
        # Marked before the broker call: a failed ack is never retried on this channel
        self.disposition = disposition

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "Delivery":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None and not self.settled:
            logger.warning(
                "Requeuing %s after %s: %s", self.document_id or self.delivery_tag,
                exc_type.__name__, exc,
            )
            try:
                self.retry()
            except Exception:  # pylint: disable=broad-except
                logger.exception("Requeue failed for %s", self.document_id or self.delivery_tag)
