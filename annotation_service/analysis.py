"""
Text statistics computed from an annotation result.

Mirrors the per-chunk metrics the aggregator merges into task reports:
word count, word frequencies, PERSON redaction, length-sorted sentences and
sentence sentiment counts.
"""

from collections import Counter
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from annotation_service.models.result import AnnotationResult
from annotation_service.sentiment import SentimentAnalyzer

REDACTION = "[NAME]"
PERSON_LABELS = frozenset({"PERSON", "PER", "B-PER", "I-PER"})


class TextStatistics(BaseModel):
    """Metrics for one annotated text (one chunk)."""

    word_count: int = 0
    word_frequencies: Dict[str, int] = Field(default_factory=dict)
    redacted_text: str = ""
    # Sentence texts, shortest first; ties keep document order
    sorted_sentences: List[str] = Field(default_factory=list)
    positive_sentences: int = 0
    negative_sentences: int = 0

    def top_words(self, n: int) -> List[Tuple[str, int]]:
        return Counter(self.word_frequencies).most_common(n)


def is_word(token_text: str) -> bool:
    return any(ch.isalnum() for ch in token_text)


def word_frequencies(result: AnnotationResult) -> Counter:
    return Counter(
        token.text.lower() for token in result.tokens if is_word(token.text)
    )


def redact_persons(result: AnnotationResult, text: str, offset: int = 0) -> str:
    """
    Replace each PERSON entity in *text* with ``[NAME]``.

    Consecutive PERSON tokens ("Alice Smith") collapse into one replacement.
    *offset* is the position of ``text[0]`` in the annotated document.
    """
    pieces = []
    cursor = 0
    in_person = False
    for token in result.tokens:
        start, end = token.span[0] - offset, token.span[1] - offset
        if token.ner in PERSON_LABELS:
            if in_person:
                # Whitespace between consecutive person tokens is dropped
                cursor = end
                continue
            pieces.append(text[cursor:start])
            pieces.append(REDACTION)
            cursor = end
            in_person = True
        else:
            in_person = False
    pieces.append(text[cursor:])
    return "".join(pieces)


def sentence_texts(result: AnnotationResult, text: str, offset: int = 0) -> List[str]:
    return [text[s.span[0] - offset:s.span[1] - offset] for s in result.sentences]


def analyze(
    result: AnnotationResult,
    text: Optional[str] = None,
    sentiment: Optional[SentimentAnalyzer] = None,
) -> TextStatistics:
    """
    Compute statistics for one result.

    Args:
        result: Annotation result
        text: Source text; when omitted, sentences are rebuilt from token texts
        sentiment: Sentence classifier (default: lexicon from settings)
    """
    if text is None:
        text = _reconstruct(result)
    sentences = sentence_texts(result, text)
    frequencies = word_frequencies(result)
    polarity = (sentiment or SentimentAnalyzer()).count_sentences(result)
    return TextStatistics(
        word_count=sum(frequencies.values()),
        word_frequencies=dict(frequencies),
        redacted_text=redact_persons(result, text),
        sorted_sentences=sorted(sentences, key=len),
        positive_sentences=polarity.positive,
        negative_sentences=polarity.negative,
    )


def _reconstruct(result: AnnotationResult) -> str:
    """Rebuild a text with the original offsets from token spans, gaps as spaces."""
    end = max((s.span[1] for s in result.sentences), default=0)
    chars = [" "] * end
    for token in result.tokens:
        chars[token.span[0]:token.span[1]] = token.text
    return "".join(chars)
