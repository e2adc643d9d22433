"""Tests for the sentence-aligned chunker."""

from __future__ import annotations

import pytest

from lexrag.ingest.chunker import SentenceChunker, chunk, split_sentences


def _sentence(i: int) -> str:
    # 74 characters: "Clause NN " + 63 letters + "."
    return f"Clause {i:02d} " + "a" * 63 + "."


def _document(n: int = 40) -> str:
    return " ".join(_sentence(i) for i in range(n))


def test_split_sentences_keeps_punctuation():
    assert split_sentences("One. Two! Three? Four") == ["One.", "Two!", "Three?", "Four"]


def test_split_sentences_collapses_surrounding_whitespace():
    assert split_sentences("  First.\n\n  Second.  ") == ["First.", "Second."]


def test_blank_text_yields_no_chunks():
    assert chunk("") == []
    assert chunk("   \n ") == []


def test_three_thousand_chars_into_four_chunks():
    text = _document()
    assert len(text) == 2999
    chunks = SentenceChunker(max_length=800, min_length=50).chunk(text)
    assert len(chunks) == 4
    assert all(len(c) == 749 for c in chunks)
    assert all(c.endswith(".") for c in chunks)


def test_chunks_never_exceed_max_length_for_normal_sentences():
    chunks = chunk(_document(), max_length=300, min_length=0)
    assert all(len(c) <= 300 for c in chunks)
    assert " ".join(chunks) == _document()


def test_overlong_sentence_emitted_whole():
    long_sentence = "word " * 60 + "end."
    chunks = chunk(f"Short one. {long_sentence} Tail here.", max_length=100, min_length=0)
    assert long_sentence.strip() in chunks


def test_short_chunks_dropped():
    chunks = chunk("Tiny. " + _sentence(1), max_length=50, min_length=20)
    assert chunks == [_sentence(1)]


@pytest.mark.parametrize("max_length,min_length", [(0, 0), (10, -1)])
def test_invalid_bounds(max_length, min_length):
    with pytest.raises(ValueError):
        SentenceChunker(max_length=max_length, min_length=min_length)
