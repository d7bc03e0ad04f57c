"""
Lightweight fixtures for unit tests - NO model downloads, NO broker.
All fixtures use a deterministic fake annotator backend and mock messages.
"""

import json
import re
import threading
import time
from concurrent.futures import Future
from typing import Callable, List, Optional, Sequence, Tuple
from unittest.mock import MagicMock

import pytest

from annotation_service.errors import AnnotatorUnavailable
from annotation_service.pipeline import AnnotationPipeline, PipelineConfig
from annotation_service.pipeline.backends.base import AnnotatorBackend
from annotation_service.pipeline.stages import STAGE_ORDER


# =============================================================================
# Fake annotator backend
# =============================================================================

class FakeBackend(AnnotatorBackend):
    """
    Rule-based backend:
    - sentences end at . ! or ?
    - tokens are word runs or single punctuation characters
    - capitalized words are NNP, punctuation is ".", anything else NN
    - Alice/Bob are PERSON, Paris is GPE, everything else "O"
    - the first token is the root, every other token depends on it

    Any token equal to ``bad_word`` makes tagging of its sentence raise.
    """

    name = "fake"
    capabilities = frozenset(STAGE_ORDER)

    ENTITIES = {"Alice": "PERSON", "Bob": "PERSON", "Paris": "GPE"}

    def __init__(
        self,
        bad_word: str = "BAD",
        unavailable: bool = False,
        transient: bool = True,
        delay: float = 0.0,
    ):
        self.bad_word = bad_word
        self.unavailable = unavailable
        self.transient = transient
        self.delay = delay
        self.tag_calls = 0

    def split_sentences(self, text: str) -> List[Tuple[int, int]]:
        return [m.span() for m in re.finditer(r"[^.!?]+[.!?]*", text) if m.group().strip()]

    def tokenize(self, text: str, start: int, end: int) -> List[Tuple[int, int]]:
        return [
            (start + m.start(), start + m.end())
            for m in re.finditer(r"\w+|[^\w\s]", text[start:end])
        ]

    def tag(self, words: Sequence[str], spaces: Optional[Sequence[bool]] = None) -> List[str]:
        self.tag_calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.unavailable:
            raise AnnotatorUnavailable("fake model not loaded", transient=self.transient)
        if self.bad_word in words:
            raise ValueError(f"cannot tag {self.bad_word!r}")
        return [
            "." if not w[0].isalnum() else "NNP" if w[0].isupper() else "NN"
            for w in words
        ]

    def recognize(self, words: Sequence[str], spaces: Optional[Sequence[bool]] = None) -> List[str]:
        return [self.ENTITIES.get(w, "O") for w in words]

    def parse(self, words: Sequence[str], spaces: Optional[Sequence[bool]] = None) -> List[Tuple[int, str]]:
        return [(-1, "ROOT")] + [(0, "dep")] * (len(words) - 1)


class RecordingPipeline:
    """
    Pipeline stand-in that sleeps and records how many runs overlap.

    Shared ``state`` dict: ``active``, ``peak``, ``runs``.
    """

    def __init__(self, state: dict, lock: threading.Lock, delay: float = 0.05, inner=None):
        self.state = state
        self.lock = lock
        self.delay = delay
        self.inner = inner

    def run(self, document):
        with self.lock:
            self.state["active"] += 1
            self.state["peak"] = max(self.state["peak"], self.state["active"])
            self.state["runs"] += 1
        try:
            delay = self.delay(document) if callable(self.delay) else self.delay
            time.sleep(delay)
            return self.inner.run(document)
        finally:
            with self.lock:
                self.state["active"] -= 1


# =============================================================================
# Backend / pipeline fixtures
# =============================================================================

@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def backend_cls():
    """The FakeBackend class, for tests that need custom instances."""
    return FakeBackend


@pytest.fixture
def make_pipeline() -> Callable[..., AnnotationPipeline]:
    """Factory: ``make_pipeline(backend=None, annotators=None)``."""
    def _make(backend=None, annotators=None):
        config = PipelineConfig(annotators=annotators) if annotators else PipelineConfig()
        return AnnotationPipeline(backend or FakeBackend(), config)
    return _make


@pytest.fixture
def recording_factory(make_pipeline):
    """
    Factory of pipeline factories sharing one overlap counter.

    Returns ``(factory, state)``; pass ``delay`` as seconds or a callable
    taking the document.
    """
    def _make(delay=0.05):
        state = {"active": 0, "peak": 0, "runs": 0, "built": 0}
        lock = threading.Lock()

        def factory():
            with lock:
                state["built"] += 1
            return RecordingPipeline(state, lock, delay=delay, inner=make_pipeline())
        return factory, state
    return _make


# =============================================================================
# Messaging fixtures
# =============================================================================

@pytest.fixture
def make_message() -> Callable[..., MagicMock]:
    """
    Factory for mock kombu messages.

    ``make_message(payload, headers=None, redelivered=False)``; dict payloads
    are JSON encoded to bytes like kombu's raw body.
    """
    counter = {"tag": 0}

    def _make(payload, headers=None, redelivered=False) -> MagicMock:
        counter["tag"] += 1
        message = MagicMock()
        if isinstance(payload, dict):
            payload = json.dumps(payload).encode("utf-8")
        elif isinstance(payload, str):
            payload = payload.encode("utf-8")
        message.body = payload
        message.headers = headers or {}
        message.delivery_info = {"redelivered": redelivered}
        message.delivery_tag = counter["tag"]
        return message
    return _make


class StubCoordinator:
    """
    ``submit`` returns an already resolved future.

    ``outcome(document)`` returns a result or an exception instance.
    """

    def __init__(self, outcome):
        self.outcome = outcome
        self.submitted = []
        self.refuse = False

    def submit(self, document) -> Future:
        if self.refuse:
            raise RuntimeError("Coordinator is not running")
        self.submitted.append(document)
        future: Future = Future()
        value = self.outcome(document)
        if isinstance(value, BaseException):
            future.set_exception(value)
        else:
            future.set_result(value)
        return future


@pytest.fixture
def stub_coordinator_cls():
    return StubCoordinator


@pytest.fixture
def published() -> list:
    """List collecting results passed to a handler's publish callable."""
    return []
