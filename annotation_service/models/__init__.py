"""
Pydantic data models for the annotation service.

- document: Document, Sentence, Token, Dependency, StageError (mutable, validated)
- result: AnnotationResult and its frozen parts (immutable, wire format)
"""
from .document import (
    Dependency,
    Document,
    DocumentStatus,
    Sentence,
    StageError,
    Token,
)
from .result import (
    AnnotationResult,
    ResultStatus,
    SentenceResult,
    TokenResult,
)

__all__ = [
    'Dependency',
    'Document',
    'DocumentStatus',
    'Sentence',
    'StageError',
    'Token',
    'AnnotationResult',
    'ResultStatus',
    'SentenceResult',
    'TokenResult',
]
