"""
Pydantic models for the in-memory document shared across pipeline stages.

A ``Document`` is created by the queue adapter when a message is decoded and
is then mutated in place by each stage through the controlled mutators below.
Every mutator validates its arguments first and raises
``DocumentValidationError`` without touching state when they are invalid, so
a rejected call never leaves the document half-updated.

Invariants:
    - sentence spans are non-empty, inside the text, ordered and non-overlapping
    - token spans are non-empty, strictly increasing, non-overlapping and
      contained in the owning sentence span
    - ``token.text == document.text[token.start:token.end]``
"""

from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from annotation_service.errors import DocumentValidationError


class DocumentStatus(str, Enum):
    """Processing status of a document."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class StageError(BaseModel):
    """Error recorded by a stage, scoped to a sentence or to the whole document."""
    model_config = ConfigDict(frozen=True)

    stage: str
    message: str
    sentence_index: Optional[int] = None


class Dependency(BaseModel):
    """Dependency arc between two tokens of one sentence (head -1 marks the root)."""
    model_config = ConfigDict(frozen=True)

    head: int
    dependent: int
    relation: str


class Token(BaseModel):
    """Single token; ``pos`` and ``ner`` stay None until their stage runs."""
    model_config = ConfigDict(validate_assignment=True)

    text: str
    start: int
    end: int
    pos: Optional[str] = None
    ner: Optional[str] = None


class Sentence(BaseModel):
    """Sentence span with its tokens, optional parse and sentence-scoped errors."""
    model_config = ConfigDict(validate_assignment=True)

    start: int
    end: int
    tokens: List[Token] = Field(default_factory=list)
    dependencies: Optional[List[Dependency]] = None
    errors: List[StageError] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        """True once any stage marked this sentence as partially failed."""
        return bool(self.errors)

    @property
    def words(self) -> List[str]:
        return [token.text for token in self.tokens]

    def __len__(self) -> int:
        return len(self.tokens)


class Document(BaseModel):
    """
    Document and its accumulating annotations.

    Example:
        >>> doc = Document(id="d1", text="Alice met Bob.")
        >>> sentence = doc.add_sentence(0, 14)
        >>> doc.add_token(0, 0, 5).text
        'Alice'
        >>> doc.set_tag(0, 0, "NNP")
    """
    model_config = ConfigDict(validate_assignment=True)

    id: str
    text: str
    sentences: List[Sentence] = Field(default_factory=list)
    status: DocumentStatus = DocumentStatus.PENDING
    errors: List[StageError] = Field(default_factory=list)
    task_id: Optional[str] = None
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None

    def __len__(self) -> int:
        return len(self.sentences)

    def iter_sentences(self, include_failed: bool = False) -> Iterator[tuple]:
        """Yield ``(index, sentence)`` pairs, skipping failed sentences by default."""
        for index, sentence in enumerate(self.sentences):
            if include_failed or not sentence.failed:
                yield index, sentence

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def add_sentence(self, start: int, end: int) -> Sentence:
        """
        Append a sentence span.

        Raises:
            DocumentValidationError: Span empty, outside the text, or starting
                before the previous sentence ends.
        """
        self._check_span(start, end, 0, len(self.text), "sentence")
        if self.sentences and start < self.sentences[-1].end:
            raise DocumentValidationError(
                f"Sentence span [{start}, {end}) overlaps or precedes previous "
                f"sentence ending at {self.sentences[-1].end}"
            )
        sentence = Sentence(start=start, end=end)
        self.sentences.append(sentence)
        return sentence

    def add_token(self, sentence_index: int, start: int, end: int) -> Token:
        """
        Append a token to a sentence.

        Raises:
            DocumentValidationError: Unknown sentence, span outside the
                sentence, or not strictly after the previous token.
        """
        sentence = self._sentence(sentence_index)
        self._check_span(start, end, sentence.start, sentence.end, "token")
        if sentence.tokens and start < sentence.tokens[-1].end:
            raise DocumentValidationError(
                f"Token span [{start}, {end}) is not after previous token "
                f"ending at {sentence.tokens[-1].end}"
            )
        token = Token(text=self.text[start:end], start=start, end=end)
        sentence.tokens.append(token)
        return token

    def set_tag(self, sentence_index: int, token_index: int, tag: str) -> None:
        """Set the part-of-speech tag of one token."""
        token = self._token(sentence_index, token_index)
        token.pos = self._check_label(tag, "part-of-speech tag")

    def set_entity(self, sentence_index: int, token_index: int, label: str) -> None:
        """Set the named-entity label of one token (``"O"`` for none)."""
        token = self._token(sentence_index, token_index)
        token.ner = self._check_label(label, "named-entity label")

    def set_dependencies(
        self,
        sentence_index: int,
        dependencies: Sequence[Dependency],
    ) -> None:
        """
        Attach a dependency parse to a sentence.

        Each token must appear exactly once as a dependent; heads must be a
        token index of the same sentence or -1 for the root.
        """
        sentence = self._sentence(sentence_index)
        size = len(sentence.tokens)
        seen = set()
        for dep in dependencies:
            if not 0 <= dep.dependent < size:
                raise DocumentValidationError(
                    f"Dependent {dep.dependent} outside sentence of {size} tokens"
                )
            if not -1 <= dep.head < size:
                raise DocumentValidationError(
                    f"Head {dep.head} outside sentence of {size} tokens"
                )
            if dep.dependent in seen:
                raise DocumentValidationError(
                    f"Token {dep.dependent} has more than one head"
                )
            self._check_label(dep.relation, "dependency relation")
            seen.add(dep.dependent)
        if len(seen) != size:
            raise DocumentValidationError(
                f"Parse covers {len(seen)} of {size} tokens"
            )
        sentence.dependencies = list(dependencies)

    def mark_sentence_failed(self, sentence_index: int, stage: str, message: str) -> StageError:
        """Record a stage error on one sentence; later stages skip it."""
        sentence = self._sentence(sentence_index)
        error = StageError(stage=stage, message=message, sentence_index=sentence_index)
        sentence.errors.append(error)
        return error

    def add_error(self, stage: str, message: str) -> StageError:
        """Record a document-level stage error that is not tied to a sentence."""
        error = StageError(stage=stage, message=message)
        self.errors.append(error)
        return error

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def all_errors(self) -> List[StageError]:
        """Document-level errors followed by sentence errors in sentence order."""
        errors = list(self.errors)
        for sentence in self.sentences:
            errors.extend(sentence.errors)
        return errors

    def to_result(
        self,
        error: Optional[str] = None,
        stage_timings: Optional[Dict[str, float]] = None,
    ):
        """Freeze the current annotations into an ``AnnotationResult``."""
        from annotation_service.models.result import AnnotationResult
        return AnnotationResult.from_document(self, error=error, stage_timings=stage_timings)

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _sentence(self, sentence_index: int) -> Sentence:
        if not 0 <= sentence_index < len(self.sentences):
            raise DocumentValidationError(
                f"Sentence index {sentence_index} out of range "
                f"(document has {len(self.sentences)} sentences)"
            )
        return self.sentences[sentence_index]

    def _token(self, sentence_index: int, token_index: int) -> Token:
        sentence = self._sentence(sentence_index)
        if not 0 <= token_index < len(sentence.tokens):
            raise DocumentValidationError(
                f"Token index {token_index} out of range "
                f"(sentence {sentence_index} has {len(sentence.tokens)} tokens)"
            )
        return sentence.tokens[token_index]

    @staticmethod
    def _check_span(start: int, end: int, lower: int, upper: int, kind: str) -> None:
        if not isinstance(start, int) or not isinstance(end, int):
            raise DocumentValidationError(f"{kind.capitalize()} span bounds must be integers")
        if start >= end:
            raise DocumentValidationError(f"Empty or inverted {kind} span [{start}, {end})")
        if start < lower or end > upper:
            raise DocumentValidationError(
                f"{kind.capitalize()} span [{start}, {end}) outside [{lower}, {upper})"
            )

    @staticmethod
    def _check_label(label: str, kind: str) -> str:
        if not isinstance(label, str) or not label.strip():
            raise DocumentValidationError(f"Empty {kind}")
        return label
