"""
Annotation Pipeline

Applies a fixed, ordered list of stages to a Document:
1. ssplit   - sentence segmentation
2. tokenize - tokenization
3. pos      - part-of-speech tagging
4. ner      - named-entity recognition
5. parse    - dependency parsing (optional)

Failures on one sentence are recorded on that sentence and the run goes on
(result status ``partial``). A catastrophic failure (annotator unavailable,
or no sentence at all could be segmented) aborts the run with
``DocumentFailed``, which still carries the partial annotation.
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from annotation_service.config.pipeline import PipelineSettings
from annotation_service.errors import (
    AnnotatorUnavailable,
    ConfigurationError,
    DocumentFailed,
    StageFailure,
)
from annotation_service.models.document import Document, DocumentStatus
from annotation_service.models.result import AnnotationResult
from annotation_service.utils.resource_tracker import ResourceTracker

from .backends.base import AnnotatorBackend
from .stages import STAGE_ORDER, STAGES, Stage

logger = logging.getLogger(__name__)


class PipelineConfig(BaseModel):
    """
    Configuration for one annotation pipeline (Pydantic V2)

    Attributes:
        annotators: Stage names; sorted into canonical order on validation
    """
    model_config = ConfigDict(
        validate_assignment=True,
        extra='forbid',
    )

    annotators: List[str] = Field(
        default_factory=lambda: ["ssplit", "tokenize", "pos", "ner"],
        description="Stages to run, subset of ssplit/tokenize/pos/ner/parse",
    )

    @field_validator('annotators')
    @classmethod
    def _canonical_order(cls, value: List[str]) -> List[str]:
        names = [name.strip().lower() for name in value if name.strip()]
        unknown = sorted(set(names) - set(STAGE_ORDER))
        if unknown:
            raise ValueError(f"Unknown annotators {unknown}; expected {list(STAGE_ORDER)}")
        if not names:
            raise ValueError("At least one annotator is required")
        ordered = [name for name in STAGE_ORDER if name in names]
        for name in ordered:
            missing = [req for req in STAGES[name].requires if req not in ordered]
            if missing:
                raise ValueError(f"Annotator '{name}' requires {missing}")
        return ordered

    @classmethod
    def from_settings(cls, pipeline_settings: PipelineSettings) -> "PipelineConfig":
        return cls(annotators=list(pipeline_settings.annotators))


class AnnotationPipeline:
    """
    Runs the configured stages over one document at a time.

    A pipeline instance is not reentrant: the coordinator gives each worker
    slot its own instance.

    Example:
        >>> pipeline = AnnotationPipeline(SpacyBackend().load())
        >>> result = pipeline.run(Document(id="d1", text="Alice met Bob."))
        >>> result.status
        <ResultStatus.OK: 'ok'>
    """

    def __init__(self, backend: AnnotatorBackend, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.backend = backend

        missing = [
            name for name in self.config.annotators
            if name not in backend.capabilities
        ]
        if missing:
            raise ConfigurationError(
                f"Backend '{backend.name}' cannot serve annotators {missing}"
            )

        self.stages: List[Stage] = [
            STAGES[name](backend) for name in self.config.annotators
        ]

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def run(self, document: Document) -> AnnotationResult:
        """
        Annotate *document* in place and return its frozen result.

        Raises:
            DocumentFailed: Catastrophic failure; ``exc.result`` holds the
                partial annotation and ``exc.transient`` the retry class.
        """
        logger.debug("Annotating document %s (%d chars)", document.id, len(document.text))
        document.status = DocumentStatus.IN_PROGRESS
        tracker = ResourceTracker()

        stage_name = None
        try:
            for stage in self.stages:
                stage_name = stage.name
                with tracker.track_module(stage.name):
                    stage.process(document)
        except AnnotatorUnavailable as exc:
            self._abort(document, tracker, stage_name, str(exc), exc.transient)
        except StageFailure as exc:
            self._abort(document, tracker, stage_name, exc.reason, False)

        document.status = DocumentStatus.COMPLETED
        usage = tracker.finalize()
        result = document.to_result(stage_timings=usage.module_timings)
        logger.debug(
            "Annotated document %s: %d sentences, status=%s, usage=%s",
            document.id, len(result), result.status.value, usage.to_dict(),
        )
        return result

    @staticmethod
    def _abort(
        document: Document,
        tracker: ResourceTracker,
        stage_name: Optional[str],
        message: str,
        transient: bool,
    ) -> None:
        document.status = DocumentStatus.FAILED
        document.add_error(stage_name or "pipeline", message)
        usage = tracker.finalize()
        error = f"{stage_name}: {message}" if stage_name else message
        result = document.to_result(error=error, stage_timings=usage.module_timings)
        logger.error(
            "Document %s failed in stage '%s' (%s): %s",
            document.id, stage_name, "transient" if transient else "deterministic", message,
        )
        raise DocumentFailed(error, transient=transient, result=result)


def build_pipeline(
    backend: AnnotatorBackend,
    pipeline_settings: Optional[PipelineSettings] = None,
) -> AnnotationPipeline:
    """
    Build a pipeline from settings.

    Raises:
        ConfigurationError: Invalid annotator list or unsupported stage.
    """
    if pipeline_settings is None:
        from annotation_service.config import settings
        pipeline_settings = settings.pipeline
    try:
        config = PipelineConfig.from_settings(pipeline_settings)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    return AnnotationPipeline(backend, config)
