"""Sentence tokenization for book chapters and transcripts.

WHY: Sentences are the unit of alignment. Book text is split into
sentences whose indices become sentence ids; the transcript is split the
same way so the aligner can build lookahead windows of whole transcript
sentences.

HOW: spaCy's rule-based "sentencizer" on a blank language pipeline. It
needs no downloaded model, is deterministic, and is fast enough for whole
books. Pipelines are cached per language code.

RULES:
- Sentences are returned in document order, stripped of surrounding
  whitespace; empty or whitespace-only segments are discarded
- split_with_gaps keeps the text between sentences as separate entries
  so the pieces concatenate back to the exact input string
"""

from __future__ import annotations

import logging
from functools import lru_cache

import spacy

from cadence_sync.config import SPACY_LANGUAGE

logger = logging.getLogger(__name__)

# Whole chapters (and concatenated transcripts) exceed spaCy's default
# 1,000,000 character guard; the sentencizer has no memory-heavy components.
_MAX_DOCUMENT_LENGTH = 50_000_000


@lru_cache(maxsize=8)
def get_sentencizer(language: str = SPACY_LANGUAGE) -> spacy.language.Language:
    """Return a cached blank spaCy pipeline with a sentencizer pipe."""
    try:
        nlp = spacy.blank(language)
    except ImportError:
        logger.warning("spaCy has no language data for %r, falling back to 'xx'", language)
        nlp = spacy.blank("xx")
    if "sentencizer" not in nlp.pipe_names:
        nlp.add_pipe("sentencizer")
    nlp.max_length = _MAX_DOCUMENT_LENGTH
    return nlp


def tokenize_sentences(text: str, language: str = SPACY_LANGUAGE) -> list[str]:
    """Split text into an ordered list of sentences.

    Args:
        text: Chapter plain text or transcript text.
        language: spaCy language code.

    Returns:
        Non-empty, stripped sentence strings in document order.
    """
    if not text.strip():
        return []
    doc = get_sentencizer(language)(text)
    return [s.text.strip() for s in doc.sents if s.text.strip()]


def split_with_gaps(text: str, language: str = SPACY_LANGUAGE) -> list[str]:
    """Split text into sentences, keeping inter-sentence text as its own entries.

    WHY: The aligner converts match positions inside a window of joined
    transcript sentences back into absolute transcript offsets. That only
    works if joining the pieces reproduces the text exactly.

    HOW: Locates each tokenized sentence in the text after the previous
    one; any skipped text (whitespace, stray punctuation) is emitted as a
    separate entry, as is any trailing text.

    RULES:
    - "".join(split_with_gaps(text)) == text
    """
    pieces: list[str] = []
    cursor = 0
    for sentence in tokenize_sentences(text, language):
        start = text.find(sentence, cursor)
        if start < 0:
            continue
        if start > cursor:
            pieces.append(text[cursor:start])
        pieces.append(sentence)
        cursor = start + len(sentence)
    if cursor < len(text):
        pieces.append(text[cursor:])
    return pieces
