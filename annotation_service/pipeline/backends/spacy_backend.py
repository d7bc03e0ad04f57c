"""
spaCy implementation of the annotator backend.

Each stage runs only the pipeline components it needs, on a Doc built from
the words it is given, so stage outputs never depend on hidden state kept
between calls:

    ssplit    -> tok2vec, parser / senter / sentencizer
    tokenize  -> tokenizer only
    pos       -> tok2vec, tagger, morphologizer, attribute_ruler
    ner       -> tok2vec, ner, entity_ruler
    parse     -> tok2vec, parser

A loaded ``Language`` is read-mostly but spaCy does not promise thread safety,
so share one instance across slots only through ``LockedBackend``.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import spacy
from spacy.language import Language
from spacy.tokens import Doc

from annotation_service.errors import AnnotatorUnavailable

from .base import AnnotatorBackend, Span

logger = logging.getLogger(__name__)


class SpacyBackend(AnnotatorBackend):
    """
    Annotator backend over a spaCy ``Language``.

    Args:
        model_name: Package name passed to ``spacy.load`` (e.g. en_core_web_sm)
        nlp: Already constructed Language (skips ``spacy.load``)
        pos_attribute: ``"tag"`` for fine-grained tags, ``"pos"`` for UPOS
        max_length: Upper bound for ``nlp.max_length``
    """

    name = "spacy"

    SENTENCE_PIPES = ("tok2vec", "parser", "senter", "sentencizer")
    TAGGING_PIPES = ("tok2vec", "tagger", "morphologizer", "attribute_ruler")
    ENTITY_PIPES = ("tok2vec", "ner", "entity_ruler")
    PARSE_PIPES = ("tok2vec", "parser")

    def __init__(
        self,
        model_name: str = "en_core_web_sm",
        nlp: Optional[Language] = None,
        pos_attribute: str = "tag",
        max_length: int = 1_000_000,
    ):
        if pos_attribute not in ("tag", "pos"):
            raise ValueError(f"pos_attribute must be 'tag' or 'pos', got {pos_attribute!r}")
        self.model_name = model_name
        self.pos_attribute = pos_attribute
        self.max_length = max_length
        self._nlp = nlp
        if nlp is not None:
            self._prepare(nlp)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> "SpacyBackend":
        """
        Load the spaCy model if it is not loaded yet.

        Raises:
            AnnotatorUnavailable: Model package not installed (not transient).
        """
        if self._nlp is None:
            logger.info("Loading spaCy model '%s'", self.model_name)
            try:
                nlp = spacy.load(self.model_name)
            except OSError as exc:
                raise AnnotatorUnavailable(
                    f"spaCy model '{self.model_name}' is not installed. "
                    f"Download it with: python -m spacy download {self.model_name}",
                    transient=False,
                ) from exc
            self._prepare(nlp)
            self._nlp = nlp
            logger.info("Loaded spaCy model '%s' with pipes %s", self.model_name, nlp.pipe_names)
        return self

    @property
    def nlp(self) -> Language:
        if self._nlp is None:
            self.load()
        return self._nlp

    @property
    def capabilities(self):
        names = set(self.nlp.pipe_names)
        caps = {"ssplit", "tokenize"}
        if names & {"tagger", "morphologizer", "attribute_ruler"}:
            caps.add("pos")
        if names & {"ner", "entity_ruler"}:
            caps.add("ner")
        if "parser" in names:
            caps.add("parse")
        return frozenset(caps)

    def close(self) -> None:
        self._nlp = None

    def _prepare(self, nlp: Language) -> None:
        nlp.max_length = max(nlp.max_length, self.max_length)
        # Without a parser or senter, fall back to punctuation-based boundaries
        if not set(nlp.pipe_names) & {"parser", "senter", "sentencizer"}:
            nlp.add_pipe("sentencizer", first=True)
            logger.info("Model has no sentence boundary component, added sentencizer")

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def split_sentences(self, text: str) -> List[Span]:
        doc = self._apply(self.nlp.make_doc(text), self.SENTENCE_PIPES, "ssplit")
        return [(sent.start_char, sent.end_char) for sent in doc.sents]

    def tokenize(self, text: str, start: int, end: int) -> List[Span]:
        doc = self.nlp.make_doc(text[start:end])
        return [
            (start + token.idx, start + token.idx + len(token.text))
            for token in doc
            if not token.is_space
        ]

    def tag(self, words: Sequence[str], spaces: Optional[Sequence[bool]] = None) -> List[str]:
        doc = self._apply(self._doc(words, spaces), self.TAGGING_PIPES, "pos")
        if self.pos_attribute == "tag":
            return [token.tag_ or token.pos_ for token in doc]
        return [token.pos_ or token.tag_ for token in doc]

    def recognize(self, words: Sequence[str], spaces: Optional[Sequence[bool]] = None) -> List[str]:
        doc = self._apply(self._doc(words, spaces), self.ENTITY_PIPES, "ner")
        return [token.ent_type_ or "O" for token in doc]

    def parse(
        self,
        words: Sequence[str],
        spaces: Optional[Sequence[bool]] = None,
    ) -> List[Tuple[int, str]]:
        doc = self._apply(self._doc(words, spaces), self.PARSE_PIPES, "parse")
        return [
            (-1 if token.head.i == token.i else token.head.i, token.dep_)
            for token in doc
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _doc(self, words: Sequence[str], spaces: Optional[Sequence[bool]]) -> Doc:
        return Doc(
            self.nlp.vocab,
            words=list(words),
            spaces=list(spaces) if spaces is not None else None,
        )

    def _apply(self, doc: Doc, wanted: Iterable[str], stage: str) -> Doc:
        """Run the wanted components present in the pipeline, in pipeline order."""
        wanted = set(wanted)
        ran = False
        for name, component in self.nlp.pipeline:
            if name in wanted:
                doc = component(doc)
                if name != "tok2vec":
                    ran = True
        if not ran:
            raise AnnotatorUnavailable(
                f"spaCy pipeline {self.nlp.pipe_names} has no component for stage '{stage}'",
                transient=False,
            )
        return doc
