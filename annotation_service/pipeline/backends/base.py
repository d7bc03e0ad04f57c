"""
Annotator backend capability contract.

The pipeline never talks to a linguistic library directly: every stage calls
one method of an ``AnnotatorBackend``. Offsets are absolute character offsets
into the document text; per-token methods receive the words of one sentence
plus, optionally, whether each word is followed by whitespace.

Backends raise ``AnnotatorUnavailable`` when the underlying model cannot serve
the request; any other exception is treated as a failure of the sentence being
processed.
"""

from abc import ABC, abstractmethod
from typing import FrozenSet, List, Optional, Sequence, Tuple

Span = Tuple[int, int]


class AnnotatorBackend(ABC):
    """Capabilities required by the annotation stages."""

    name = "base"

    #: Stage names this backend can serve, checked when a pipeline is built
    capabilities: FrozenSet[str] = frozenset()

    def load(self) -> "AnnotatorBackend":
        """Load model state eagerly. Default: nothing to load."""
        return self

    @abstractmethod
    def split_sentences(self, text: str) -> List[Span]:
        """Return sentence spans over *text*, in order."""

    @abstractmethod
    def tokenize(self, text: str, start: int, end: int) -> List[Span]:
        """Return token spans inside ``text[start:end]``, in order."""

    def tag(self, words: Sequence[str], spaces: Optional[Sequence[bool]] = None) -> List[str]:
        """Return one part-of-speech tag per word."""
        raise NotImplementedError(f"{self.name} backend does not tag")

    def recognize(self, words: Sequence[str], spaces: Optional[Sequence[bool]] = None) -> List[str]:
        """Return one entity label per word, ``"O"`` outside entities."""
        raise NotImplementedError(f"{self.name} backend does not recognize entities")

    def parse(
        self,
        words: Sequence[str],
        spaces: Optional[Sequence[bool]] = None,
    ) -> List[Tuple[int, str]]:
        """Return ``(head_index, relation)`` per word, head -1 for the root."""
        raise NotImplementedError(f"{self.name} backend does not parse")

    def close(self) -> None:
        """Release model state. Default: nothing to release."""
