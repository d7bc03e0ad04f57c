"""Unit tests for annotation_service/pipeline - stages and AnnotationPipeline."""

import pytest

from annotation_service.errors import ConfigurationError, DocumentFailed
from annotation_service.models import Document, DocumentStatus, ResultStatus
from annotation_service.pipeline import (
    AnnotationPipeline,
    PipelineConfig,
    STAGES,
    SentenceSegmentation,
    SentenceStage,
    Tokenization,
    build_pipeline,
)


class TestPipelineConfig:
    """Tests for PipelineConfig validation."""

    def test_default_annotators(self):
        assert PipelineConfig().annotators == ["ssplit", "tokenize", "pos", "ner"]

    def test_sorted_into_canonical_order(self):
        config = PipelineConfig(annotators=["ner", "tokenize", "ssplit", "POS"])
        assert config.annotators == ["ssplit", "tokenize", "pos", "ner"]

    def test_unknown_annotator(self):
        with pytest.raises(ValueError, match="Unknown annotators"):
            PipelineConfig(annotators=["ssplit", "sentiment"])

    def test_missing_prerequisite(self):
        with pytest.raises(ValueError, match="requires"):
            PipelineConfig(annotators=["ssplit", "pos"])

    def test_empty_list(self):
        with pytest.raises(ValueError):
            PipelineConfig(annotators=[])


class TestBuildPipeline:
    """Tests for build_pipeline() and capability checks."""

    def test_configuration_error_on_bad_settings(self, fake_backend, settings):
        bad = settings.pipeline.model_copy(update={"annotators": ["pos"]})
        with pytest.raises(ConfigurationError):
            build_pipeline(fake_backend, bad)

    def test_backend_without_capability(self, backend_cls):
        backend = backend_cls()
        backend.capabilities = frozenset({"ssplit", "tokenize"})
        with pytest.raises(ConfigurationError, match="cannot serve"):
            AnnotationPipeline(backend)

    def test_stage_names(self, make_pipeline):
        pipeline = make_pipeline(annotators=["ssplit", "tokenize", "pos", "ner", "parse"])
        assert pipeline.stage_names == ["ssplit", "tokenize", "pos", "ner", "parse"]


class TestRun:
    """Tests for AnnotationPipeline.run()."""

    def test_alice_met_bob(self, make_pipeline):
        document = Document(id="d1", text="Alice met Bob.")
        result = make_pipeline().run(document)

        assert result.id == "d1"
        assert result.status == ResultStatus.OK
        assert len(result.sentences) == 1
        tokens = result.sentences[0].tokens
        assert [t.text for t in tokens] == ["Alice", "met", "Bob", "."]
        assert all(t.pos for t in tokens)
        assert tokens[0].ner == "PERSON"
        assert tokens[2].ner == "PERSON"
        assert tokens[1].ner == "O"
        assert document.status == DocumentStatus.COMPLETED

    def test_stage_timings_recorded(self, make_pipeline):
        result = make_pipeline().run(Document(id="d1", text="Alice met Bob."))
        assert set(result.stage_timings) == {"ssplit", "tokenize", "pos", "ner"}

    def test_parse_stage(self, make_pipeline):
        pipeline = make_pipeline(annotators=["ssplit", "tokenize", "pos", "ner", "parse"])
        result = pipeline.run(Document(id="d1", text="Alice met Bob."))
        deps = result.sentences[0].dependencies
        assert deps[0].head == -1
        assert {d.dependent for d in deps} == {0, 1, 2, 3}

    def test_only_requested_stages_fill_fields(self, make_pipeline):
        result = make_pipeline(annotators=["ssplit", "tokenize"]).run(
            Document(id="d1", text="Alice met Bob.")
        )
        assert all(t.pos is None and t.ner is None for t in result.tokens)

    def test_empty_text_is_ok_without_sentences(self, make_pipeline):
        result = make_pipeline().run(Document(id="e", text="   "))
        assert result.status == ResultStatus.OK
        assert result.sentences == ()

    def test_partial_failure_isolated_to_sentence(self, make_pipeline):
        text = "Alice met Bob. The BAD token. Bob left Paris."
        result = make_pipeline().run(Document(id="d3", text=text))

        assert result.status == ResultStatus.PARTIAL
        assert len(result.sentences) == 3
        first, broken, last = result.sentences
        assert all(t.pos and t.ner for t in first.tokens)
        assert all(t.pos and t.ner for t in last.tokens)
        assert all(t.pos is None and t.ner is None for t in broken.tokens)
        assert [e.stage for e in result.errors] == ["pos"]
        assert result.errors[0].sentence_index == 1
        assert last.tokens[2].ner == "GPE"

    def test_unavailable_backend_fails_document(self, make_pipeline, backend_cls):
        document = Document(id="d4", text="Alice met Bob. Bob left.")
        pipeline = make_pipeline(backend=backend_cls(unavailable=True, transient=True))

        with pytest.raises(DocumentFailed) as excinfo:
            pipeline.run(document)

        exc = excinfo.value
        assert exc.transient is True
        assert exc.result.status == ResultStatus.FAILED
        assert exc.result.error.startswith("pos:")
        # Output of earlier stages survives
        assert len(exc.result.tokens) == 7
        assert document.status == DocumentStatus.FAILED

    def test_deterministic_unavailability(self, make_pipeline, backend_cls):
        pipeline = make_pipeline(backend=backend_cls(unavailable=True, transient=False))
        with pytest.raises(DocumentFailed) as excinfo:
            pipeline.run(Document(id="d5", text="Bob."))
        assert excinfo.value.transient is False


class TestStages:
    """Tests for individual stages."""

    def test_segmentation_trims_whitespace(self, fake_backend):
        document = Document(id="s", text="  Alice met Bob.   Bob left.  ")
        SentenceSegmentation(fake_backend).process(document)
        spans = [(s.start, s.end) for s in document.sentences]
        assert [document.text[a:b] for a, b in spans] == ["Alice met Bob.", "Bob left."]

    def test_segmentation_records_invalid_spans(self, backend_cls):
        class Overlapping(backend_cls):
            def split_sentences(self, text):
                return [(0, 5), (3, 9)]

        document = Document(id="s", text="Alice met Bob.")
        SentenceSegmentation(Overlapping()).process(document)
        assert len(document.sentences) == 1
        assert document.errors[0].stage == "ssplit"

    def test_tokenization_failure_marks_sentence(self, backend_cls):
        class NoTokens(backend_cls):
            def tokenize(self, text, start, end):
                return [] if text[start:end].startswith("Bob") else super().tokenize(text, start, end)

        document = Document(id="t", text="Alice met Bob. Bob left.")
        backend = NoTokens()
        SentenceSegmentation(backend).process(document)
        Tokenization(backend).process(document)
        assert not document.sentences[0].failed
        assert document.sentences[1].failed
        assert document.sentences[1].errors[0].stage == "tokenize"

    def test_label_count_mismatch(self, make_pipeline, backend_cls):
        class ShortTags(backend_cls):
            def tag(self, words, spaces=None):
                return ["NN"]

        result = make_pipeline(backend=ShortTags()).run(Document(id="m", text="Alice met Bob."))
        assert result.status == ResultStatus.PARTIAL
        assert "4 tokens" in result.errors[0].message

    def test_only_segmentation_works_on_whole_document(self):
        assert not issubclass(SentenceSegmentation, SentenceStage)
        assert not hasattr(SentenceSegmentation, "process_sentence")
        per_sentence = {name for name, stage in STAGES.items() if issubclass(stage, SentenceStage)}
        assert per_sentence == {"tokenize", "pos", "ner", "parse"}

    def test_sentence_stage_skips_failed_sentences(self, fake_backend):
        class Recording(SentenceStage):
            name = "record"

            def __init__(self, backend):
                super().__init__(backend)
                self.seen = []

            def process_sentence(self, document, index, sentence):
                self.seen.append(index)

        document = Document(id="r", text="Alice met Bob. Bob left.")
        SentenceSegmentation(fake_backend).process(document)
        document.mark_sentence_failed(0, "tokenize", "boom")
        stage = Recording(fake_backend)
        stage.process(document)
        assert stage.seen == [1]
