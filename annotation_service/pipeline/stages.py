"""
Annotation stages.

Stages run in a fixed order and each one fills only the fields it owns:

    ssplit   -> Document.sentences (spans)
    tokenize -> Sentence.tokens
    pos      -> Token.pos
    ner      -> Token.ner
    parse    -> Sentence.dependencies

A failure while processing one sentence marks that sentence as failed and the
stage moves on; later stages skip failed sentences. ``AnnotatorUnavailable``
is never caught here: it aborts the whole document in the pipeline.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Tuple, Type

from annotation_service.errors import (
    AnnotatorUnavailable,
    DocumentValidationError,
    StageFailure,
)
from annotation_service.models.document import Dependency, Document, Sentence

from .backends.base import AnnotatorBackend

logger = logging.getLogger(__name__)


class Stage(ABC):
    """One transformation step applied to a whole document."""

    name: str = ""
    requires: Tuple[str, ...] = ()

    def __init__(self, backend: AnnotatorBackend):
        self.backend = backend

    @abstractmethod
    def process(self, document: Document) -> None:
        """Apply the stage to *document* in place."""


class SentenceStage(Stage):
    """Stage applied sentence by sentence; a failure is scoped to its sentence."""

    def process(self, document: Document) -> None:
        """Apply the stage to every sentence that has not failed yet."""
        for index, sentence in document.iter_sentences():
            try:
                self.process_sentence(document, index, sentence)
            except AnnotatorUnavailable:
                raise
            except (StageFailure, DocumentValidationError) as exc:
                self._fail(document, index, str(exc))
            except Exception as exc:  # pylint: disable=broad-except
                # Backend errors on odd input are scoped to the sentence
                self._fail(document, index, f"{type(exc).__name__}: {exc}")

    @abstractmethod
    def process_sentence(self, document: Document, index: int, sentence: Sentence) -> None:
        """Annotate one sentence in place."""

    def _fail(self, document: Document, index: int, message: str) -> None:
        logger.warning(
            "Stage '%s' failed on sentence %d of document %s: %s",
            self.name, index, document.id, message,
        )
        document.mark_sentence_failed(index, self.name, message)

    @staticmethod
    def _spaces(sentence: Sentence) -> List[bool]:
        """Whether each token is followed by whitespace before the next token."""
        tokens = sentence.tokens
        return [
            i + 1 < len(tokens) and tokens[i + 1].start > token.end
            for i, token in enumerate(tokens)
        ]

    def _check_length(self, labels: List, sentence: Sentence) -> None:
        if len(labels) != len(sentence.tokens):
            raise StageFailure(
                self.name,
                f"backend returned {len(labels)} labels for {len(sentence.tokens)} tokens",
            )


class SentenceSegmentation(Stage):
    """Split the raw text into sentence spans (trimmed of surrounding whitespace)."""

    name = "ssplit"

    def process(self, document: Document) -> None:
        text = document.text
        if not text.strip():
            return

        try:
            spans = self.backend.split_sentences(text)
        except AnnotatorUnavailable:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise StageFailure(self.name, f"{type(exc).__name__}: {exc}") from exc

        for start, end in spans:
            while start < end and text[start].isspace():
                start += 1
            while end > start and text[end - 1].isspace():
                end -= 1
            if start >= end:
                continue
            try:
                document.add_sentence(start, end)
            except DocumentValidationError as exc:
                logger.warning("Dropped sentence span of document %s: %s", document.id, exc)
                document.add_error(self.name, str(exc))

        if not document.sentences:
            raise StageFailure(self.name, "no valid sentence found in non-empty text")


class Tokenization(SentenceStage):
    """Fill each sentence with token spans."""

    name = "tokenize"
    requires = ("ssplit",)

    def process_sentence(self, document: Document, index: int, sentence: Sentence) -> None:
        spans = self.backend.tokenize(document.text, sentence.start, sentence.end)
        if not spans:
            raise StageFailure(self.name, "no tokens produced")
        for start, end in spans:
            document.add_token(index, start, end)


class PartOfSpeechTagging(SentenceStage):
    """Assign one part-of-speech tag per token."""

    name = "pos"
    requires = ("tokenize",)

    def process_sentence(self, document: Document, index: int, sentence: Sentence) -> None:
        tags = self.backend.tag(sentence.words, self._spaces(sentence))
        self._check_length(tags, sentence)
        for token_index, tag in enumerate(tags):
            document.set_tag(index, token_index, tag)


class NamedEntityRecognition(SentenceStage):
    """Assign one entity label per token (``"O"`` outside entities)."""

    name = "ner"
    requires = ("tokenize",)

    def process_sentence(self, document: Document, index: int, sentence: Sentence) -> None:
        labels = self.backend.recognize(sentence.words, self._spaces(sentence))
        self._check_length(labels, sentence)
        for token_index, label in enumerate(labels):
            document.set_entity(index, token_index, label)


class DependencyParsing(SentenceStage):
    """Attach a dependency parse to each sentence."""

    name = "parse"
    requires = ("tokenize",)

    def process_sentence(self, document: Document, index: int, sentence: Sentence) -> None:
        arcs = self.backend.parse(sentence.words, self._spaces(sentence))
        self._check_length(arcs, sentence)
        document.set_dependencies(
            index,
            [
                Dependency(head=head, dependent=dependent, relation=relation)
                for dependent, (head, relation) in enumerate(arcs)
            ],
        )


STAGES: Dict[str, Type[Stage]] = {
    stage.name: stage
    for stage in (
        SentenceSegmentation,
        Tokenization,
        PartOfSpeechTagging,
        NamedEntityRecognition,
        DependencyParsing,
    )
}

STAGE_ORDER: Tuple[str, ...] = tuple(STAGES)
