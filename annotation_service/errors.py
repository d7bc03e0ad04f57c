"""
Error taxonomy for the annotation service.

Sentence-scoped errors (``DocumentValidationError``, ``StageFailure``) are
recovered inside the pipeline and surface only as metadata on the result.
Document-scoped errors (``DocumentFailed``, ``ProcessingTimeout``) reach the
queue adapter, which turns them into a broker disposition. ``DecodeError``
never reaches the pipeline at all.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from annotation_service.models.result import AnnotationResult


class AnnotationServiceError(Exception):
    """Base class for every error raised by the service."""


class ConfigurationError(AnnotationServiceError):
    """Invalid stage list or settings detected at startup."""


class DecodeError(AnnotationServiceError):
    """
    Inbound payload is not a valid annotation request.

    Terminal and non-retryable: the same bytes will always fail.

    Args:
        message: Human readable reason
        document_id: Id recovered from the payload, if any
    """

    def __init__(self, message: str, document_id: Optional[str] = None):
        super().__init__(message)
        self.document_id = document_id


class DocumentValidationError(AnnotationServiceError, ValueError):
    """A Document Model mutation would violate a span or index invariant."""


class StageFailure(AnnotationServiceError):
    """
    A stage could not complete one sentence.

    Args:
        stage: Name of the failing stage (e.g. ``"pos"``)
        message: Reason
        sentence_index: Index of the affected sentence, if known
    """

    def __init__(self, stage: str, message: str, sentence_index: Optional[int] = None):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.reason = message
        self.sentence_index = sentence_index


class AnnotatorUnavailable(AnnotationServiceError):
    """
    The annotator backend cannot serve requests (model missing, not loaded).

    ``transient`` distinguishes a temporary outage from a deterministic
    misconfiguration such as a model without the required component.
    """

    def __init__(self, message: str, transient: bool = True):
        super().__init__(message)
        self.transient = transient


class DocumentFailed(AnnotationServiceError):
    """
    Catastrophic pipeline failure for a whole document.

    Args:
        message: Reason
        transient: True if a redelivery may succeed
        result: ``failed`` AnnotationResult holding the partial annotation
    """

    def __init__(
        self,
        message: str,
        transient: bool,
        result: Optional["AnnotationResult"] = None,
    ):
        super().__init__(message)
        self.transient = transient
        self.result = result


class ProcessingTimeout(AnnotationServiceError):
    """Document exceeded the configured processing budget. Always transient."""

    transient = True

    def __init__(self, document_id: str, timeout: float):
        super().__init__(f"Document {document_id} exceeded {timeout:.1f}s processing budget")
        self.document_id = document_id
        self.timeout = timeout
