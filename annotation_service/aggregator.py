"""
Result aggregator: regroup published chunk results into one report per task.

Results carrying ``task_id`` / ``chunk_index`` / ``total_chunks`` are grouped
by task; once every chunk arrived a ``TaskReport`` is built, logged, written
to ``aggregator.report_dir/<task_id>.json`` and the task is closed.
Results without chunk metadata are single-chunk tasks keyed by their id.

Results are published before the worker acks, so the same chunk can arrive
twice. Duplicates of an open task's chunk are ignored, and so is any chunk
of a task closed recently (a bounded memory of ``completed_memory`` ids).
Tasks still incomplete after ``task_ttl`` seconds (a chunk was dead-lettered
without a failed result) are evicted and logged.

Outbound results carry token texts but not the raw chunk text, so redacted
text and sentence texts are rebuilt from token spans (gaps become spaces).
"""

import heapq
import json
import logging
import time
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from kombu.mixins import ConsumerMixin
from pydantic import BaseModel, Field, ValidationError

from annotation_service.analysis import TextStatistics, analyze
from annotation_service.messaging.broker import Topology
from annotation_service.models.result import AnnotationResult, ResultStatus
from annotation_service.sentiment import SentimentAnalyzer

logger = logging.getLogger(__name__)


class SentimentReport(BaseModel):
    positive_sentences: int = 0
    negative_sentences: int = 0


class TaskReport(BaseModel):
    """Final statistics for one task."""

    task_id: str
    total_chunks: int
    total_words: int
    top_words: List[Tuple[str, int]]
    redacted_text: str
    sorted_sentences: List[str]
    sentiment: SentimentReport = Field(default_factory=SentimentReport)
    failed_chunks: List[int] = Field(default_factory=list)
    partial_chunks: List[int] = Field(default_factory=list)
    processing_time: float
    completed_at: str = Field(default_factory=lambda: datetime.now().isoformat())


class _TaskState:
    __slots__ = ("total", "chunks", "statuses", "started")

    def __init__(self, total: int):
        self.total = total
        self.chunks: Dict[int, TextStatistics] = {}
        self.statuses: Dict[int, ResultStatus] = {}
        self.started = time.monotonic()


class ResultAggregator:
    """
    Args:
        top_n: Most frequent words kept in a report (default from settings)
        report_dir: Where reports are written (default from settings)
        write_reports: Write each report as JSON under *report_dir*
        task_ttl: Seconds before an incomplete task is evicted (default from settings)
        completed_memory: Closed task ids remembered (default from settings)
        sentiment: Sentence classifier (default: lexicon from settings)
    """

    def __init__(
        self,
        top_n: Optional[int] = None,
        report_dir: Union[str, Path, None] = None,
        write_reports: bool = True,
        task_ttl: Optional[float] = None,
        completed_memory: Optional[int] = None,
        sentiment: Optional[SentimentAnalyzer] = None,
    ):
        from annotation_service.config import settings

        config = settings.aggregator
        self.top_n = top_n if top_n is not None else config.top_n
        self.report_dir = Path(report_dir or config.report_dir)
        self.write_reports = write_reports
        self.task_ttl = task_ttl if task_ttl is not None else config.task_ttl
        self.completed_memory = (
            completed_memory if completed_memory is not None else config.completed_memory
        )
        self.sentiment = sentiment if sentiment is not None else SentimentAnalyzer()
        self._tasks: Dict[str, _TaskState] = {}
        self._closed: "OrderedDict[str, None]" = OrderedDict()

    @property
    def open_tasks(self) -> List[str]:
        return list(self._tasks)

    def is_closed(self, task_id: str) -> bool:
        return task_id in self._closed

    def add(self, result: AnnotationResult) -> Optional[TaskReport]:
        """Record one chunk result. Returns the report when the task completes."""
        self.expire_stale()

        task_id = result.task_id or result.id
        total = result.total_chunks or 1
        index = result.chunk_index or 0

        if not 0 <= index < total:
            logger.warning("Task %s: chunk index %d outside 0..%d ignored", task_id, index, total - 1)
            return None
        if task_id in self._closed:
            logger.debug("Chunk %d of closed task %s ignored", index, task_id)
            return None

        state = self._tasks.get(task_id)
        if state is None:
            state = self._tasks[task_id] = _TaskState(total)
        elif state.total != total:
            logger.warning(
                "Task %s: chunk %d claims %d chunks, task has %d; ignored",
                task_id, index, total, state.total,
            )
            return None
        if index in state.chunks:
            logger.debug("Duplicate chunk %d of task %s ignored", index, task_id)
            return None

        state.chunks[index] = analyze(result, sentiment=self.sentiment)
        state.statuses[index] = result.status
        logger.info("Task %s: chunk %d received (%d/%d)", task_id, index, len(state.chunks), state.total)

        if len(state.chunks) < state.total:
            return None

        self._close(task_id)
        report = self.build_report(task_id, state)
        logger.info(
            "Task %s complete: %d words, top %s", task_id, report.total_words,
            ", ".join(f"{w}={c}" for w, c in report.top_words),
        )
        if self.write_reports:
            self.write_report(report)
        return report

    def expire_stale(self, now: Optional[float] = None) -> List[str]:
        """Evict tasks incomplete for longer than ``task_ttl``. Returns their ids."""
        now = time.monotonic() if now is None else now
        expired = [
            task_id for task_id, state in self._tasks.items()
            if now - state.started > self.task_ttl
        ]
        for task_id in expired:
            state = self._tasks[task_id]
            missing = sorted(set(range(state.total)) - set(state.chunks))
            logger.warning(
                "Task %s evicted after %.0fs with %d/%d chunks, missing %s",
                task_id, now - state.started, len(state.chunks), state.total, missing,
            )
            self._close(task_id)
        return expired

    def _close(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)
        self._closed[task_id] = None
        self._closed.move_to_end(task_id)
        while len(self._closed) > self.completed_memory:
            self._closed.popitem(last=False)

    def build_report(self, task_id: str, state: _TaskState) -> TaskReport:
        ordered = [state.chunks[i] for i in sorted(state.chunks)]

        frequencies: Dict[str, int] = {}
        for stats in ordered:
            for word, count in stats.word_frequencies.items():
                frequencies[word] = frequencies.get(word, 0) + count
        top_words = sorted(frequencies.items(), key=lambda item: (-item[1], item[0]))[:self.top_n]

        return TaskReport(
            task_id=task_id,
            total_chunks=state.total,
            total_words=sum(stats.word_count for stats in ordered),
            top_words=top_words,
            redacted_text=" ".join(stats.redacted_text.strip() for stats in ordered).strip(),
            sorted_sentences=list(heapq.merge(*(s.sorted_sentences for s in ordered), key=len)),
            sentiment=SentimentReport(
                positive_sentences=sum(stats.positive_sentences for stats in ordered),
                negative_sentences=sum(stats.negative_sentences for stats in ordered),
            ),
            failed_chunks=sorted(i for i, s in state.statuses.items() if s == ResultStatus.FAILED),
            partial_chunks=sorted(i for i, s in state.statuses.items() if s == ResultStatus.PARTIAL),
            processing_time=round(time.monotonic() - state.started, 3),
        )

    def write_report(self, report: TaskReport) -> Path:
        self.report_dir.mkdir(parents=True, exist_ok=True)
        path = self.report_dir / f"{report.task_id}.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(report.model_dump(), f, indent=2, ensure_ascii=False)
        logger.info("Report written to %s", path)
        return path


class AggregatorWorker(ConsumerMixin):
    """Consumes the output queue and feeds a ``ResultAggregator``."""

    def __init__(self, connection: Any, aggregator: ResultAggregator, topology: Optional[Topology] = None):
        self.connection = connection
        self.aggregator = aggregator
        self.topology = topology or Topology()

    def get_consumers(self, Consumer, channel) -> List[Any]:
        return [
            Consumer(
                queues=[self.topology.output_queue],
                on_message=self.on_message,
                accept=['json'],
                prefetch_count=10,
            )
        ]

    def on_iteration(self) -> None:
        self.aggregator.expire_stale()

    def on_message(self, message) -> None:
        try:
            data = json.loads(message.body)
            result = AnnotationResult.from_message(data)
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            logger.warning("Discarding malformed result: %s", exc)
            message.reject(requeue=False)
            return
        self.aggregator.add(result)
        message.ack()
