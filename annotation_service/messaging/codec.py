"""
Inbound message decoding and outbound result encoding.

Inbound:  {"id": "d1", "text": "Alice met Bob."}
          plus optional "task_id", "chunk_index", "total_chunks" set by the producer.
Outbound: see ``annotation_service.models.result``.
"""

import json
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from annotation_service.errors import DecodeError
from annotation_service.models.document import Document
from annotation_service.models.result import AnnotationResult


class InboundMessage(BaseModel):
    """Validated annotation request."""
    model_config = ConfigDict(extra='ignore', strict=True)

    id: str = Field(min_length=1)
    text: str
    task_id: Optional[str] = None
    chunk_index: Optional[int] = Field(default=None, ge=0)
    total_chunks: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode='after')
    def _check_chunk(self) -> "InboundMessage":
        if self.chunk_index is not None and self.total_chunks is not None:
            if self.chunk_index >= self.total_chunks:
                raise ValueError("chunk_index must be lower than total_chunks")
        return self

    def to_document(self) -> Document:
        return Document(
            id=self.id,
            text=self.text,
            task_id=self.task_id,
            chunk_index=self.chunk_index,
            total_chunks=self.total_chunks,
        )


def _peek_id(data) -> Optional[str]:
    if isinstance(data, dict):
        value = data.get('id')
        if isinstance(value, str) and value:
            return value
    return None


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get('loc', ())) or "message"
        parts.append(f"{location}: {err.get('msg')}")
    return "; ".join(parts)


def decode_message(
    body: Union[str, bytes, dict],
    max_text_length: Optional[int] = None,
) -> InboundMessage:
    """
    Decode and validate an inbound payload.

    Args:
        body: Raw JSON (str/bytes) or an already deserialized dict
        max_text_length: Reject texts longer than this (default from settings)

    Raises:
        DecodeError: Invalid JSON, wrong shape, missing or mistyped fields,
            empty id, or oversized text. ``document_id`` is set when the id
            could still be read from the payload.
    """
    if max_text_length is None:
        from annotation_service.config import settings
        max_text_length = settings.pipeline.max_text_length

    if isinstance(body, (bytes, bytearray)):
        try:
            body = body.decode('utf-8')
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Payload is not UTF-8: {exc}") from exc

    if isinstance(body, str):
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"Invalid JSON: {exc}") from exc
    else:
        data = body

    if not isinstance(data, dict):
        raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")

    document_id = _peek_id(data)
    try:
        message = InboundMessage.model_validate(data)
    except ValidationError as exc:
        raise DecodeError(_describe(exc), document_id=document_id) from exc

    if len(message.text) > max_text_length:
        raise DecodeError(
            f"text length {len(message.text)} exceeds limit {max_text_length}",
            document_id=document_id,
        )
    return message


def decode_document(body: Union[str, bytes, dict], max_text_length: Optional[int] = None) -> Document:
    """Decode a payload straight into a pending Document."""
    return decode_message(body, max_text_length=max_text_length).to_document()


def encode_result(result: AnnotationResult) -> str:
    """Encode a result as outbound JSON."""
    return result.to_json()


def encode_request(
    document_id: str,
    text: str,
    task_id: Optional[str] = None,
    chunk_index: Optional[int] = None,
    total_chunks: Optional[int] = None,
) -> dict:
    """Build an inbound message dict (producer side)."""
    message = InboundMessage(
        id=document_id,
        text=text,
        task_id=task_id,
        chunk_index=chunk_index,
        total_chunks=total_chunks,
    )
    return message.model_dump(exclude_none=True)
