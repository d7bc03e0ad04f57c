"""
Task producer: split source text into sentence chunks and publish them as
annotation requests.

Every chunk of one source shares a ``task_id``; message ids are
``<task_id>-<chunk_index>``. The aggregator regroups the results by task id.

Usage:
    python -m annotation_service produce data/books/ --sentences-per-task 50
"""

import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from annotation_service.messaging.codec import encode_request
from annotation_service.pipeline.backends.base import AnnotatorBackend

logger = logging.getLogger(__name__)


def iter_sources(path: Union[str, Path]) -> Iterator[Tuple[Path, str]]:
    """
    Yield ``(path, text)`` for a ``.txt`` file or every ``.txt`` below a directory.

    Raises:
        FileNotFoundError: If *path* does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Source not found: {path}")
    files = sorted(path.rglob("*.txt")) if path.is_dir() else [path]
    for file_path in files:
        yield file_path, file_path.read_text(encoding="utf-8")


def chunk_text(text: str, backend: AnnotatorBackend, sentences_per_task: int) -> List[str]:
    """
    Group consecutive sentences into chunks of at most *sentences_per_task*.

    Each chunk is the source slice from its first sentence start to its last
    sentence end, stripped. Blank text gives a single empty chunk.
    """
    if sentences_per_task < 1:
        raise ValueError("sentences_per_task must be at least 1")
    spans = backend.split_sentences(text) if text.strip() else []
    if not spans:
        return [""]
    chunks = []
    for i in range(0, len(spans), sentences_per_task):
        group = spans[i:i + sentences_per_task]
        chunks.append(text[group[0][0]:group[-1][1]].strip())
    return chunks


def build_tasks(
    text: str,
    task_id: str,
    backend: AnnotatorBackend,
    sentences_per_task: int,
) -> List[Dict[str, Any]]:
    """Inbound messages for one source text."""
    chunks = chunk_text(text, backend, sentences_per_task)
    return [
        encode_request(
            f"{task_id}-{index}",
            chunk,
            task_id=task_id,
            chunk_index=index,
            total_chunks=len(chunks),
        )
        for index, chunk in enumerate(chunks)
    ]


def new_task_id(path: Path) -> str:
    return f"{path.stem}-{uuid.uuid4().hex[:8]}"


class TaskProducer:
    """
    Publishes annotation requests for text files.

    Args:
        producer: kombu Producer
        topology: ``Topology`` giving the exchange and input routing key
        backend: Loaded backend used for sentence splitting
        sentences_per_task: Sentences per message (default from settings)
    """

    def __init__(
        self,
        producer: Any,
        topology: Any,
        backend: AnnotatorBackend,
        sentences_per_task: Optional[int] = None,
    ):
        if sentences_per_task is None:
            from annotation_service.config import settings
            sentences_per_task = settings.producer.sentences_per_task
        self.producer = producer
        self.topology = topology
        self.backend = backend
        self.sentences_per_task = sentences_per_task

    def publish_text(self, text: str, task_id: str) -> int:
        """Publish every chunk of *text*. Returns the number of messages."""
        tasks = build_tasks(text, task_id, self.backend, self.sentences_per_task)
        for task in tasks:
            self.producer.publish(
                task,
                exchange=self.topology.exchange,
                routing_key=self.topology.config.input_routing_key,
                serializer='json',
                delivery_mode=2,
                retry=True,
                declare=[self.topology.input_queue],
            )
        logger.info("Published task %s: %d chunk(s)", task_id, len(tasks))
        return len(tasks)

    def publish_path(self, path: Union[str, Path]) -> Dict[str, int]:
        """Publish every source under *path*. Returns ``{task_id: chunk_count}``."""
        published = {}
        for file_path, text in iter_sources(path):
            task_id = new_task_id(file_path)
            published[task_id] = self.publish_text(text, task_id)
        logger.info("Published %d task(s) from %s", len(published), path)
        return published
