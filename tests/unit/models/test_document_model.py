"""Unit tests for annotation_service/models/document.py - Document mutators."""

import random

import pytest

from annotation_service.errors import DocumentValidationError
from annotation_service.models import Dependency, Document, DocumentStatus


TEXT = "Alice met Bob. Bob left."


@pytest.fixture
def doc() -> Document:
    return Document(id="d1", text=TEXT)


@pytest.fixture
def tokenized(doc) -> Document:
    doc.add_sentence(0, 14)
    for start, end in [(0, 5), (6, 9), (10, 13), (13, 14)]:
        doc.add_token(0, start, end)
    return doc


class TestAddSentence:
    """Tests for Document.add_sentence()."""

    def test_appends_sentence(self, doc):
        sentence = doc.add_sentence(0, 14)
        assert (sentence.start, sentence.end) == (0, 14)
        assert len(doc) == 1

    def test_new_document_is_pending(self, doc):
        assert doc.status == DocumentStatus.PENDING

    @pytest.mark.parametrize("start,end", [(5, 5), (7, 3), (-1, 4), (0, len(TEXT) + 1)])
    def test_rejects_invalid_span(self, doc, start, end):
        with pytest.raises(DocumentValidationError):
            doc.add_sentence(start, end)
        assert doc.sentences == []

    def test_rejects_overlap_with_previous(self, doc):
        doc.add_sentence(0, 14)
        with pytest.raises(DocumentValidationError, match="overlaps"):
            doc.add_sentence(10, 20)
        assert len(doc) == 1

    def test_rejects_out_of_order(self, doc):
        doc.add_sentence(15, 24)
        with pytest.raises(DocumentValidationError):
            doc.add_sentence(0, 14)

    def test_adjacent_sentences_allowed(self, doc):
        doc.add_sentence(0, 14)
        doc.add_sentence(14, 24)
        assert len(doc) == 2

    def test_validation_error_is_value_error(self, doc):
        with pytest.raises(ValueError):
            doc.add_sentence(3, 3)


class TestAddToken:
    """Tests for Document.add_token()."""

    def test_token_text_matches_source(self, tokenized):
        assert tokenized.sentences[0].words == ["Alice", "met", "Bob", "."]
        for token in tokenized.sentences[0].tokens:
            assert token.text == TEXT[token.start:token.end]

    def test_unknown_sentence(self, doc):
        with pytest.raises(DocumentValidationError, match="out of range"):
            doc.add_token(0, 0, 5)

    def test_token_outside_sentence(self, doc):
        doc.add_sentence(0, 14)
        with pytest.raises(DocumentValidationError, match="outside"):
            doc.add_token(0, 10, 18)

    def test_overlapping_token(self, tokenized):
        with pytest.raises(DocumentValidationError, match="not after"):
            tokenized.add_token(0, 12, 14)
        assert len(tokenized.sentences[0]) == 4

    def test_empty_token(self, doc):
        doc.add_sentence(0, 14)
        with pytest.raises(DocumentValidationError, match="Empty"):
            doc.add_token(0, 2, 2)


class TestLabels:
    """Tests for set_tag() / set_entity()."""

    def test_set_tag(self, tokenized):
        tokenized.set_tag(0, 0, "NNP")
        assert tokenized.sentences[0].tokens[0].pos == "NNP"

    def test_set_entity(self, tokenized):
        tokenized.set_entity(0, 2, "PERSON")
        assert tokenized.sentences[0].tokens[2].ner == "PERSON"

    @pytest.mark.parametrize("label", ["", "   "])
    def test_empty_label_rejected(self, tokenized, label):
        with pytest.raises(DocumentValidationError):
            tokenized.set_tag(0, 0, label)
        assert tokenized.sentences[0].tokens[0].pos is None

    def test_unknown_token_index(self, tokenized):
        with pytest.raises(DocumentValidationError, match="Token index 9"):
            tokenized.set_entity(0, 9, "O")


class TestSetDependencies:
    """Tests for Document.set_dependencies()."""

    def _arcs(self, heads):
        return [Dependency(head=h, dependent=i, relation="dep") for i, h in enumerate(heads)]

    def test_valid_parse(self, tokenized):
        tokenized.set_dependencies(0, self._arcs([1, -1, 1, 1]))
        assert [d.head for d in tokenized.sentences[0].dependencies] == [1, -1, 1, 1]

    def test_missing_token(self, tokenized):
        with pytest.raises(DocumentValidationError, match="covers 3 of 4"):
            tokenized.set_dependencies(0, self._arcs([1, -1, 1]))
        assert tokenized.sentences[0].dependencies is None

    def test_head_out_of_range(self, tokenized):
        with pytest.raises(DocumentValidationError, match="Head 7"):
            tokenized.set_dependencies(0, self._arcs([1, -1, 7, 1]))

    def test_duplicate_dependent(self, tokenized):
        arcs = self._arcs([1, -1, 1, 1])
        arcs[3] = Dependency(head=1, dependent=2, relation="dep")
        with pytest.raises(DocumentValidationError, match="more than one head"):
            tokenized.set_dependencies(0, arcs)


class TestErrors:
    """Tests for mark_sentence_failed() / add_error() / all_errors."""

    def test_failed_sentence_skipped_by_iteration(self, doc):
        doc.add_sentence(0, 14)
        doc.add_sentence(15, 24)
        doc.mark_sentence_failed(0, "pos", "boom")
        assert [i for i, _ in doc.iter_sentences()] == [1]
        assert [i for i, _ in doc.iter_sentences(include_failed=True)] == [0, 1]

    def test_all_errors_document_first(self, doc):
        doc.add_sentence(0, 14)
        doc.mark_sentence_failed(0, "pos", "sentence level")
        doc.add_error("ssplit", "document level")
        assert [e.message for e in doc.all_errors] == ["document level", "sentence level"]
        assert doc.all_errors[1].sentence_index == 0


class TestSpanProperty:
    """Token spans stay strictly increasing and inside their sentence."""

    @pytest.mark.parametrize("seed", range(25))
    def test_random_span_sets(self, seed):
        rng = random.Random(seed)
        text = "".join(rng.choice("ab .") for _ in range(rng.randint(20, 120)))
        doc = Document(id=f"r{seed}", text=text)

        # Random sentence cut points, then random token proposals per sentence,
        # some of which are invalid and must be rejected without side effects
        cuts = sorted(rng.sample(range(1, len(text)), rng.randint(1, 5)))
        bounds = list(zip([0] + cuts, cuts + [len(text)]))
        for start, end in bounds:
            doc.add_sentence(start, end)

        for index, sentence in enumerate(doc.sentences):
            for _ in range(rng.randint(0, 15)):
                start = rng.randint(sentence.start - 3, sentence.end + 1)
                end = start + rng.randint(-1, 6)
                before = [(t.start, t.end) for t in sentence.tokens]
                try:
                    doc.add_token(index, start, end)
                except DocumentValidationError:
                    assert [(t.start, t.end) for t in sentence.tokens] == before

        for sentence in doc.sentences:
            spans = [(t.start, t.end) for t in sentence.tokens]
            for start, end in spans:
                assert sentence.start <= start < end <= sentence.end
            for (_, prev_end), (next_start, _) in zip(spans, spans[1:]):
                assert prev_end <= next_start
