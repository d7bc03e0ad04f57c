"""Mutex wrapper for sharing one non-reentrant backend across pipeline slots."""

import threading
from typing import List, Optional, Sequence, Tuple

from .base import AnnotatorBackend, Span


class LockedBackend(AnnotatorBackend):
    """
    Serializes every call into the wrapped backend.

    Pipelines built over the same shared backend must share the same lock,
    so pass one ``threading.Lock`` to every wrapper (``share()`` does this).
    """

    name = "locked"

    def __init__(self, backend: AnnotatorBackend, lock: Optional[threading.Lock] = None):
        self.backend = backend
        self.lock = lock or threading.Lock()
        self.capabilities = backend.capabilities

    def share(self) -> "LockedBackend":
        """Another wrapper over the same backend and lock."""
        return LockedBackend(self.backend, self.lock)

    def load(self) -> "LockedBackend":
        with self.lock:
            self.backend.load()
        return self

    def split_sentences(self, text: str) -> List[Span]:
        with self.lock:
            return self.backend.split_sentences(text)

    def tokenize(self, text: str, start: int, end: int) -> List[Span]:
        with self.lock:
            return self.backend.tokenize(text, start, end)

    def tag(self, words: Sequence[str], spaces: Optional[Sequence[bool]] = None) -> List[str]:
        with self.lock:
            return self.backend.tag(words, spaces)

    def recognize(self, words: Sequence[str], spaces: Optional[Sequence[bool]] = None) -> List[str]:
        with self.lock:
            return self.backend.recognize(words, spaces)

    def parse(
        self,
        words: Sequence[str],
        spaces: Optional[Sequence[bool]] = None,
    ) -> List[Tuple[int, str]]:
        with self.lock:
            return self.backend.parse(words, spaces)

    def close(self) -> None:
        # The wrapped backend is shared; its owner closes it.
        pass
