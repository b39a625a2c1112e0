"""Unit tests for counsel.services.argument_analysis."""

import pytest

from counsel.models.schemas import KnowledgeReference
from counsel.services.argument_analysis import (
    as_points,
    detect_weaknesses,
    first_sentence,
    format_references,
    shorten,
)


def kinds(text):
    return [w.kind for w in detect_weaknesses(text)]


class TestDetectWeaknesses:
    def test_absolute_and_unsupported(self):
        assert kinds("The landlord always ignores every single request that we make about repairs to the flat.") == [
            "absolute_language",
            "unsupported_claim",
        ]

    def test_evidence_marker_counts_as_support(self):
        text = "The landlord received our written notice by email and the record shows no reply was sent."
        assert kinds(text) == []

    def test_digits_count_as_support(self):
        text = "The heater stopped working on 3 January and stayed broken for six more weeks."
        assert "unsupported_claim" not in kinds(text)

    def test_emotional_and_hedged(self):
        text = "I think this outrageous behaviour is probably deliberate and it has gone on for months now."
        assert kinds(text) == ["unsupported_claim", "emotional_appeal", "hedged_claim"]

    def test_short_text_flagged(self):
        assert kinds("They never paid.") == ["absolute_language", "unsupported_claim", "insufficient_detail"]

    def test_deterministic(self):
        text = "Clearly they lied, probably on purpose."
        assert detect_weaknesses(text) == detect_weaknesses(text)


def test_shorten():
    assert shorten("short text") == "short text"
    assert shorten("word " * 50, limit=20) == "word word word word..."


def test_first_sentence():
    assert first_sentence("First one. Second one.") == "First one."
    assert first_sentence("No terminator") == "No terminator"


@pytest.mark.parametrize(
    "value,expected",
    [
        (["a", " b ", "", 3], ["a", "b"]),
        ("single", ["single"]),
        (None, []),
        ({"not": "a list"}, []),
    ],
)
def test_as_points(value, expected):
    assert as_points(value) == expected


def test_format_references():
    refs = [KnowledgeReference(document_id="d1", source="lease.txt", excerpt="Repairs within 14 days.", score=0.5)]
    assert format_references(refs) == "[1] lease.txt: Repairs within 14 days."
    assert "No uploaded material" in format_references([])
