"""Unit tests for annotation_service/analysis.py - text statistics."""

import pytest

from annotation_service.analysis import analyze, redact_persons, word_frequencies
from annotation_service.models import Document


@pytest.fixture
def annotate(make_pipeline):
    pipeline = make_pipeline()

    def _annotate(text, doc_id="a"):
        return pipeline.run(Document(id=doc_id, text=text))
    return _annotate


class TestAnalyze:
    """Tests for analyze()."""

    def test_word_count_ignores_punctuation(self, annotate):
        text = "Alice met Bob. Bob left!"
        stats = analyze(annotate(text), text)
        assert stats.word_count == 5

    def test_frequencies_lower_cased(self, annotate):
        result = annotate("The cat saw the dog.")
        assert word_frequencies(result)["the"] == 2

    def test_top_words(self, annotate):
        text = "Bob met Bob. Bob met Alice."
        stats = analyze(annotate(text), text)
        assert stats.top_words(2) == [("bob", 3), ("met", 2)]

    def test_sentences_sorted_by_length(self, annotate):
        text = "A long sentence here. Short. Medium one."
        stats = analyze(annotate(text), text)
        assert stats.sorted_sentences == ["Short.", "Medium one.", "A long sentence here."]

    def test_without_source_text(self, annotate):
        stats = analyze(annotate("Alice met Bob."))
        # Rebuilt from token spans
        assert stats.sorted_sentences == ["Alice met Bob."]
        assert stats.word_count == 3

    def test_sentiment_counts(self, annotate):
        text = "Bob is happy. The war was terrible. Alice left."
        stats = analyze(annotate(text), text)
        assert (stats.positive_sentences, stats.negative_sentences) == (1, 1)


class TestRedaction:
    """Tests for redact_persons()."""

    def test_persons_replaced(self, annotate):
        text = "Alice met Bob in Paris."
        assert redact_persons(annotate(text), text) == "[NAME] met [NAME] in Paris."

    def test_consecutive_person_tokens_collapse(self, annotate):
        text = "Alice Bob left."
        assert redact_persons(annotate(text), text) == "[NAME] left."

    def test_no_entities_unchanged(self, annotate):
        text = "The cat sat."
        assert redact_persons(annotate(text), text) == text
