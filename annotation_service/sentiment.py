"""
Lexicon-based sentence sentiment.

Each sentence is scored from its token texts:

1. Words are lower-cased and matched against the positive and negative lists
2. A negator ("not", "never", "no", ...) flips the polarity of sentiment words
   that follow it within ``negation_window`` tokens
3. A score above zero makes the sentence positive, below zero negative,
   anything else neutral

The lexicon is a YAML file with ``positive`` and ``negative`` word lists,
resolved against the configs directory (default ``sentiment_lexicon.yaml``).

Usage:
    from annotation_service.sentiment import SentimentAnalyzer

    analyzer = SentimentAnalyzer()
    counts = analyzer.count_sentences(result)
    print(f"{counts.positive} positive, {counts.negative} negative")
"""

import logging
from enum import Enum
from functools import lru_cache
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel

from annotation_service.config._loader import load_yaml_section
from annotation_service.errors import ConfigurationError
from annotation_service.models.result import AnnotationResult

logger = logging.getLogger(__name__)

NEGATORS = frozenset({
    "not", "no", "never", "n't", "nothing", "nobody", "none", "neither", "nor", "without",
})


class Polarity(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class SentimentCounts(BaseModel):
    """Sentence counts per polarity for one text."""

    positive: int = 0
    negative: int = 0
    neutral: int = 0

    def __add__(self, other: "SentimentCounts") -> "SentimentCounts":
        return SentimentCounts(
            positive=self.positive + other.positive,
            negative=self.negative + other.negative,
            neutral=self.neutral + other.neutral,
        )


class SentimentLexicon:
    """Lower-cased positive and negative word sets."""

    def __init__(self, positive: Iterable[str], negative: Iterable[str]):
        self.positive = frozenset(w.lower() for w in positive)
        self.negative = frozenset(w.lower() for w in negative)
        overlap = self.positive & self.negative
        if overlap:
            raise ConfigurationError(
                f"Sentiment lexicon lists words as both positive and negative: {sorted(overlap)}"
            )

    @classmethod
    def load(cls, lexicon_file: str) -> "SentimentLexicon":
        """
        Load a lexicon YAML file.

        Raises:
            ConfigurationError: File missing or both lists empty
        """
        data = load_yaml_section(lexicon_file)
        positive = data.get('positive') or []
        negative = data.get('negative') or []
        if not positive and not negative:
            raise ConfigurationError(f"Sentiment lexicon {lexicon_file} is missing or empty")
        lexicon = cls(positive, negative)
        logger.info(
            "Loaded sentiment lexicon %s: %d positive, %d negative words",
            lexicon_file, len(lexicon.positive), len(lexicon.negative),
        )
        return lexicon

    def polarity(self, word: str) -> int:
        word = word.lower()
        if word in self.positive:
            return 1
        if word in self.negative:
            return -1
        return 0


@lru_cache(maxsize=4)
def get_lexicon(lexicon_file: str) -> SentimentLexicon:
    """Lexicon loaded once per file."""
    return SentimentLexicon.load(lexicon_file)


class SentimentAnalyzer:
    """
    Classifies sentences as positive, negative or neutral.

    Args:
        lexicon: Word lists (default: the configured lexicon file)
        negation_window: Tokens after a negator whose polarity is flipped
            (default from settings)
    """

    def __init__(self, lexicon: Optional[SentimentLexicon] = None, negation_window: Optional[int] = None):
        from annotation_service.config import settings

        self.lexicon = lexicon if lexicon is not None else get_lexicon(settings.sentiment.lexicon)
        self.negation_window = (
            negation_window if negation_window is not None else settings.sentiment.negation_window
        )

    def score(self, words: Sequence[str]) -> int:
        total = 0
        negated = 0
        for word in words:
            if word.lower() in NEGATORS:
                negated = self.negation_window
                continue
            value = self.lexicon.polarity(word)
            if negated:
                value = -value
                negated -= 1
            total += value
        return total

    def classify(self, words: Sequence[str]) -> Polarity:
        score = self.score(words)
        if score > 0:
            return Polarity.POSITIVE
        if score < 0:
            return Polarity.NEGATIVE
        return Polarity.NEUTRAL

    def count_sentences(self, result: AnnotationResult) -> SentimentCounts:
        """Polarity counts over the sentences of *result* that have tokens."""
        counts = {polarity: 0 for polarity in Polarity}
        for sentence in result.sentences:
            if not sentence.tokens:
                continue
            counts[self.classify([token.text for token in sentence.tokens])] += 1
        return SentimentCounts(
            positive=counts[Polarity.POSITIVE],
            negative=counts[Polarity.NEGATIVE],
            neutral=counts[Polarity.NEUTRAL],
        )
