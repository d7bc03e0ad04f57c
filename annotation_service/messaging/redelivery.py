"""
Attempt counting for redelivered documents.

RabbitMQ quorum queues report previous deliveries in the ``x-delivery-count``
header. Classic queues only flag ``redelivered``, so a bounded in-process
tracker keyed by document id fills the gap. The attempt number used for retry
decisions is the larger of the two.
"""

import threading
from collections import OrderedDict
from typing import Any, Mapping, Optional

DELIVERY_COUNT_HEADER = "x-delivery-count"


def header_attempt(headers: Optional[Mapping[str, Any]], redelivered: bool = False) -> int:
    """Attempt number implied by broker metadata alone (1 for a first delivery)."""
    count = None
    if headers:
        try:
            count = int(headers.get(DELIVERY_COUNT_HEADER))
        except (TypeError, ValueError):
            count = None
    if count is not None and count >= 0:
        return count + 1
    return 2 if redelivered else 1


class RedeliveryTracker:
    """
    Least-recently-used map of document id to receipt count.

    Args:
        max_entries: Oldest ids are evicted beyond this size
    """

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._counts: "OrderedDict[str, int]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._counts

    def record(
        self,
        document_id: str,
        headers: Optional[Mapping[str, Any]] = None,
        redelivered: bool = False,
    ) -> int:
        """Register one receipt of *document_id* and return its attempt number."""
        with self._lock:
            local = self._counts.pop(document_id, 0) + 1
            attempt = max(local, header_attempt(headers, redelivered))
            self._counts[document_id] = attempt
            while len(self._counts) > self.max_entries:
                self._counts.popitem(last=False)
        return attempt

    def attempts(self, document_id: str) -> int:
        with self._lock:
            return self._counts.get(document_id, 0)

    def forget(self, document_id: str) -> None:
        """Drop a document once it is finally acked or dead-lettered."""
        with self._lock:
            self._counts.pop(document_id, None)
