"""Process-wide annotator backend and per-slot pipeline construction.

Model state is expensive to load, so it is loaded once at startup, before the
queue adapter starts consuming, and never mutated afterwards. Two sharing
modes are supported, selected by ``pipeline.share_backend``:

- duplicated (default): every coordinator slot loads its own backend, no
  locking, memory cost multiplied by the pool size;
- shared: one backend for the whole process, wrapped in ``LockedBackend`` so
  only one slot at a time runs model code.

Usage:
    from annotation_service.utils.worker_pool import (
        init_annotator_backend, pipeline_factory,
    )

    init_annotator_backend()                   # once, at startup
    coordinator = PipelineCoordinator(pipeline_factory())

Memory impact (en_core_web_sm): ~50 MB per loaded backend.
"""

import logging
from typing import Callable, Optional

from annotation_service.config import PipelineSettings, settings
from annotation_service.pipeline.backends import AnnotatorBackend, LockedBackend, SpacyBackend
from annotation_service.pipeline.pipeline import AnnotationPipeline, build_pipeline

logger = logging.getLogger(__name__)

# Set by init_annotator_backend(); read-only afterwards
_shared_backend: Optional[LockedBackend] = None


def create_backend(pipeline_settings: Optional[PipelineSettings] = None) -> AnnotatorBackend:
    """Construct and load a new spaCy backend from settings."""
    pipeline_settings = pipeline_settings or settings.pipeline
    backend = SpacyBackend(
        model_name=pipeline_settings.spacy_model,
        pos_attribute=pipeline_settings.pos_attribute,
        max_length=pipeline_settings.max_text_length,
    )
    return backend.load()


def init_annotator_backend(
    backend: Optional[AnnotatorBackend] = None,
    pipeline_settings: Optional[PipelineSettings] = None,
) -> LockedBackend:
    """
    Load the process-wide shared backend once.

    Args:
        backend: Pre-built backend to share (default: ``create_backend()``)
        pipeline_settings: Settings used when building the default backend

    Returns:
        The shared, lock-protected backend.
    """
    global _shared_backend

    if _shared_backend is not None:
        return _shared_backend

    logger.info("Initializing shared annotator backend (loaded once per process)")
    loaded = backend.load() if backend is not None else create_backend(pipeline_settings)
    _shared_backend = LockedBackend(loaded)
    logger.info("Shared annotator backend '%s' ready", loaded.name)
    return _shared_backend


def get_annotator_backend() -> LockedBackend:
    """Return the process-wide shared backend.

    Raises:
        RuntimeError: If called before ``init_annotator_backend()``.
    """
    if _shared_backend is None:
        raise RuntimeError(
            "Annotator backend is not initialized. "
            "Call init_annotator_backend() at startup before consuming."
        )
    return _shared_backend


def reset_annotator_backend() -> None:
    """Drop the shared backend (tests and orderly shutdown)."""
    global _shared_backend
    if _shared_backend is not None:
        _shared_backend.backend.close()
    _shared_backend = None


def pipeline_factory(
    pipeline_settings: Optional[PipelineSettings] = None,
    backend_factory: Optional[Callable[[], AnnotatorBackend]] = None,
) -> Callable[[], AnnotationPipeline]:
    """
    Return a zero-argument callable building one pipeline per coordinator slot.

    In shared mode every pipeline wraps the process-wide backend (which must
    already be initialized); otherwise each call builds a fresh backend.
    """
    pipeline_settings = pipeline_settings or settings.pipeline
    backend_factory = backend_factory or (lambda: create_backend(pipeline_settings))

    if pipeline_settings.share_backend:
        shared = get_annotator_backend()

        def _shared_pipeline() -> AnnotationPipeline:
            return build_pipeline(shared.share(), pipeline_settings)
        return _shared_pipeline

    def _dedicated_pipeline() -> AnnotationPipeline:
        return build_pipeline(backend_factory(), pipeline_settings)
    return _dedicated_pipeline
