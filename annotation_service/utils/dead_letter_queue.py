"""Dead-letter ledger for messages the service gave up on.

Every message rejected without requeue (decode errors, deterministic pipeline
failures, exhausted retries) is recorded here in addition to being routed by
the broker to its dead-letter exchange. The ledger is a JSON file (default
``logs/dead_letters.json``) that operators can inspect or replay from.

Usage:
    from annotation_service.utils.dead_letter_queue import DeadLetterQueue

    dlq = DeadLetterQueue()
    dlq.add("d2", reason="decode_error", error="text: Field required", payload=body)

    failures = dlq.load()
    print(f"{len(failures)} dead-lettered messages")

    # After replaying some of them successfully
    dlq.remove(["d2"])
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

# Raw payloads are truncated in the ledger; the broker's DLX keeps the full body
MAX_PAYLOAD_CHARS = 2000


class DeadLetterQueue:
    """
    Persistent JSON-backed record of dead-lettered messages.

    Writes use a read-modify-write cycle guarded by a lock, so one instance
    may be shared by the threads of a single process.

    Args:
        log_path: Path to the ledger JSON file. Created on first write.

    Record schema:
        {
            "id": "d2",
            "timestamp": "2026-10-19T12:34:56.789012",
            "reason": "decode_error",
            "error": "text: Field required",
            "attempt_count": 1,
            "source": "annotation.tasks",
            "payload": "{\"id\": \"d2\"}"
        }
    """

    def __init__(self, log_path: Union[str, Path, None] = None):
        if log_path is None:
            from annotation_service.config import settings
            log_path = settings.paths.dead_letter_log
        self.log_path = Path(log_path)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def add(
        self,
        message_id: Optional[str],
        reason: str,
        error: str = "",
        attempt_count: int = 1,
        source: str = "",
        payload: Any = None,
    ) -> Dict[str, Any]:
        """
        Append one record to the ledger.

        Args:
            message_id: Document id, or None when it could not be decoded
            reason: Short failure class (``"decode_error"``, ``"retries_exhausted"``, ...)
            error: Error message
            attempt_count: Deliveries made before giving up
            source: Queue the message was consumed from
            payload: Raw message body (bytes, str or dict), truncated

        Returns:
            The written record.
        """
        record = {
            "id": message_id,
            "timestamp": datetime.now().isoformat(),
            "reason": reason,
            "error": error,
            "attempt_count": attempt_count,
            "source": source,
            "payload": self._payload_text(payload),
        }
        with self._lock:
            existing = self.load()
            existing.append(record)
            self._save(existing)
        logger.info(
            "DeadLetterQueue: recorded %s (%s) in %s", message_id, reason, self.log_path,
        )
        return record

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def load(self) -> List[Dict[str, Any]]:
        """
        Load all records.

        Returns:
            List of record dicts. Empty list if the file does not exist or is corrupt.
        """
        if not self.log_path.exists():
            return []
        try:
            with open(self.log_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning("Could not read DLQ %s, treating as empty", self.log_path)
            return []
        return data if isinstance(data, list) else []

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def remove(self, message_ids: Iterable[str]) -> int:
        """
        Remove records for messages that were replayed successfully.

        Returns:
            Number of records removed.
        """
        ids = set(message_ids)
        with self._lock:
            records = self.load()
            remaining = [r for r in records if r.get("id") not in ids]
            self._save(remaining)
        removed = len(records) - len(remaining)
        logger.info(
            "DeadLetterQueue: removed %d record(s), %d remaining", removed, len(remaining),
        )
        return removed

    def clear(self) -> None:
        """Delete all records."""
        with self._lock:
            self._save([])
        logger.info("DeadLetterQueue: cleared %s", self.log_path)

    def __len__(self) -> int:
        return len(self.load())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _save(self, records: List[Dict[str, Any]]) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2, ensure_ascii=False)

    @staticmethod
    def _payload_text(payload: Any) -> Optional[str]:
        """Normalise a message body to a bounded string."""
        if payload is None:
            return None
        if isinstance(payload, bytes):
            text = payload.decode("utf-8", errors="replace")
        elif isinstance(payload, str):
            text = payload
        else:
            try:
                text = json.dumps(payload, ensure_ascii=False)
            except (TypeError, ValueError):
                text = repr(payload)
        return text[:MAX_PAYLOAD_CHARS]
