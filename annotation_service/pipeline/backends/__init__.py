"""Annotator backends: the capability contract and its implementations."""

from .base import AnnotatorBackend, Span
from .locked import LockedBackend
from .spacy_backend import SpacyBackend

__all__ = [
    'AnnotatorBackend',
    'Span',
    'LockedBackend',
    'SpacyBackend',
]
