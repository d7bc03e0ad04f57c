"""
Immutable annotation result and its outbound wire format.

Wire format (one JSON object per document):

    {
        "id": "d1",
        "sentences": [
            {
                "tokens": [
                    {"text": "Alice", "span": [0, 5], "pos": "NNP", "ner": "PERSON"}
                ],
                "span": [0, 14]
            }
        ],
        "status": "ok",
        "error": null,
        "errors": []
    }

``dependencies`` is added to a sentence only when the parse stage ran, and
``task_id`` / ``chunk_index`` / ``total_chunks`` only when the inbound message
carried them.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from annotation_service.models.document import (
    Dependency,
    Document,
    DocumentStatus,
    StageError,
)


class ResultStatus(str, Enum):
    """Outcome reported to downstream consumers."""
    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


class TokenResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    span: Tuple[int, int]
    pos: Optional[str] = None
    ner: Optional[str] = None


class SentenceResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    span: Tuple[int, int]
    tokens: Tuple[TokenResult, ...] = ()
    dependencies: Optional[Tuple[Dependency, ...]] = None

    @property
    def text_spans(self) -> Tuple[Tuple[int, int], ...]:
        return tuple(token.span for token in self.tokens)


class AnnotationResult(BaseModel):
    """
    Final structured output for one document.

    Produced once per Document, frozen on creation, handed to the queue
    adapter for encoding and released once published.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    status: ResultStatus
    sentences: Tuple[SentenceResult, ...] = ()
    error: Optional[str] = None
    errors: Tuple[StageError, ...] = ()
    task_id: Optional[str] = None
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None
    stage_timings: Dict[str, float] = Field(default_factory=dict, exclude=True)

    def __len__(self) -> int:
        return len(self.sentences)

    @property
    def tokens(self) -> Tuple[TokenResult, ...]:
        return tuple(token for sentence in self.sentences for token in sentence.tokens)

    @classmethod
    def from_document(
        cls,
        document: Document,
        error: Optional[str] = None,
        stage_timings: Optional[Dict[str, float]] = None,
    ) -> "AnnotationResult":
        """
        Snapshot a document.

        Status is ``failed`` for a failed document, ``partial`` when any stage
        error was recorded, ``ok`` otherwise.
        """
        errors = tuple(document.all_errors)
        if document.status == DocumentStatus.FAILED:
            status = ResultStatus.FAILED
        elif errors:
            status = ResultStatus.PARTIAL
            if error is None:
                error = f"{len(errors)} stage error(s); first: {errors[0].stage}: {errors[0].message}"
        else:
            status = ResultStatus.OK

        sentences = tuple(
            SentenceResult(
                span=(sentence.start, sentence.end),
                tokens=tuple(
                    TokenResult(
                        text=token.text,
                        span=(token.start, token.end),
                        pos=token.pos,
                        ner=token.ner,
                    )
                    for token in sentence.tokens
                ),
                dependencies=(
                    tuple(sentence.dependencies)
                    if sentence.dependencies is not None else None
                ),
            )
            for sentence in document.sentences
        )

        return cls(
            id=document.id,
            status=status,
            sentences=sentences,
            error=error,
            errors=errors,
            task_id=document.task_id,
            chunk_index=document.chunk_index,
            total_chunks=document.total_chunks,
            stage_timings=dict(stage_timings or {}),
        )

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    def to_message(self) -> Dict[str, Any]:
        """Build the outbound message dict."""
        sentences = []
        for sentence in self.sentences:
            entry: Dict[str, Any] = {
                'tokens': [
                    {
                        'text': token.text,
                        'span': list(token.span),
                        'pos': token.pos,
                        'ner': token.ner,
                    }
                    for token in sentence.tokens
                ],
                'span': list(sentence.span),
            }
            if sentence.dependencies is not None:
                entry['dependencies'] = [
                    {'head': d.head, 'dependent': d.dependent, 'relation': d.relation}
                    for d in sentence.dependencies
                ]
            sentences.append(entry)

        data: Dict[str, Any] = {
            'id': self.id,
            'sentences': sentences,
            'status': self.status.value,
            'error': self.error,
            'errors': [err.model_dump() for err in self.errors],
        }
        if self.task_id is not None:
            data['task_id'] = self.task_id
            data['chunk_index'] = self.chunk_index
            data['total_chunks'] = self.total_chunks
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_message(), ensure_ascii=False)

    @classmethod
    def from_message(cls, data: Dict[str, Any]) -> "AnnotationResult":
        """Rebuild a result from an outbound message dict (used by the aggregator)."""
        sentences = tuple(
            SentenceResult(
                span=tuple(s['span']),
                tokens=tuple(
                    TokenResult(
                        text=t['text'],
                        span=tuple(t['span']),
                        pos=t.get('pos'),
                        ner=t.get('ner'),
                    )
                    for t in s.get('tokens', [])
                ),
                dependencies=(
                    tuple(Dependency(**d) for d in s['dependencies'])
                    if s.get('dependencies') is not None else None
                ),
            )
            for s in data.get('sentences', [])
        )
        return cls(
            id=data['id'],
            status=ResultStatus(data['status']),
            sentences=sentences,
            error=data.get('error'),
            errors=tuple(StageError(**e) for e in data.get('errors', [])),
            task_id=data.get('task_id'),
            chunk_index=data.get('chunk_index'),
            total_chunks=data.get('total_chunks'),
        )
