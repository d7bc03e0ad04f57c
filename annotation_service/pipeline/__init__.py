"""Annotation pipeline

Pipeline Flow:
    1. ssplit   -> SentenceSegmentation -> Document.sentences
    2. tokenize -> Tokenization -> Sentence.tokens
    3. pos      -> PartOfSpeechTagging -> Token.pos
    4. ner      -> NamedEntityRecognition -> Token.ner
    5. parse    -> DependencyParsing -> Sentence.dependencies (optional)

Quick Start:
    >>> from annotation_service.pipeline import AnnotationPipeline, SpacyBackend
    >>> from annotation_service.models import Document
    >>> pipeline = AnnotationPipeline(SpacyBackend("en_core_web_sm").load())
    >>> result = pipeline.run(Document(id="d1", text="Alice met Bob."))
"""

from .backends import AnnotatorBackend, LockedBackend, SpacyBackend
from .pipeline import AnnotationPipeline, PipelineConfig, build_pipeline
from .stages import (
    STAGE_ORDER,
    STAGES,
    DependencyParsing,
    NamedEntityRecognition,
    PartOfSpeechTagging,
    SentenceSegmentation,
    SentenceStage,
    Stage,
    Tokenization,
)

__all__ = [
    # Backends
    'AnnotatorBackend',
    'LockedBackend',
    'SpacyBackend',
    # Pipeline
    'AnnotationPipeline',
    'PipelineConfig',
    'build_pipeline',
    # Stages
    'STAGE_ORDER',
    'STAGES',
    'Stage',
    'SentenceStage',
    'SentenceSegmentation',
    'Tokenization',
    'PartOfSpeechTagging',
    'NamedEntityRecognition',
    'DependencyParsing',
]
