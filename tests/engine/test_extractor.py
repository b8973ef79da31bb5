from __future__ import annotations

from datetime import datetime, timezone

import pytest

from page_sentinel.config import ExtractionConfig
from page_sentinel.engine import ExtractionError, Extractor

NOW = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


def test_plain_text_match_carries_source_identity(sample_source_config) -> None:
    source = sample_source_config()
    occurrences = list(
        Extractor().extract("Diário Oficial. EDIÇÃO: 123 de 01/02/2024 Seção 1", source, NOW)
    )
    assert len(occurrences) == 1
    occurrence = occurrences[0]
    assert occurrence.source_id == "example"
    assert occurrence.source_type == "dou"
    assert occurrence.pattern == "EDIÇÃO:"
    assert occurrence.extracted_at == NOW
    assert occurrence.context_text[occurrence.match_offset :].startswith("EDIÇÃO: 123")


def test_context_window_is_bounded(sample_source_config) -> None:
    extractor = Extractor(ExtractionConfig(context_chars=5))
    text = "aaaaaaaaaa EDIÇÃO: 1 bbbbbbbbbb"
    occurrence = next(iter(extractor.extract(text, sample_source_config(), NOW)))
    assert occurrence.context_text == "aaaa EDIÇÃO: 1 bb"
    assert occurrence.match_offset == 5


def test_matching_ignores_case_by_default(sample_source_config) -> None:
    occurrences = list(Extractor().extract("edição: 5 publicada", sample_source_config(), NOW))
    assert len(occurrences) == 1
    strict = sample_source_config(patterns=[{"value": "EDIÇÃO:", "case_sensitive": True}])
    assert list(Extractor().extract("edição: 5 publicada", strict, NOW)) == []


def test_candidates_are_capped_per_pattern(sample_source_config) -> None:
    extractor = Extractor(ExtractionConfig(max_candidates_per_pattern=2, context_chars=0))
    text = "EDIÇÃO: 1. EDIÇÃO: 2. EDIÇÃO: 3."
    occurrences = list(extractor.extract(text, sample_source_config(), NOW))
    assert [occurrence.context_text for occurrence in occurrences] == ["EDIÇÃO:", "EDIÇÃO:"]
    assert len(occurrences) == 2


def test_occurrences_follow_document_order(sample_source_config) -> None:
    source = sample_source_config(patterns=["beta", "alpha"])
    occurrences = list(Extractor().extract("alpha first, then beta", source, NOW))
    assert [occurrence.pattern for occurrence in occurrences] == ["alpha", "beta"]


def test_same_offset_matches_follow_pattern_order(sample_source_config) -> None:
    extractor = Extractor(ExtractionConfig(context_chars=0))
    longer_first = sample_source_config(patterns=["EDIÇÃO: 1", "EDIÇÃO"])
    shorter_first = sample_source_config(patterns=["EDIÇÃO", "EDIÇÃO: 1"])
    assert [o.pattern for o in extractor.extract("EDIÇÃO: 1", longer_first, NOW)] == [
        "EDIÇÃO: 1",
        "EDIÇÃO",
    ]
    assert [o.pattern for o in extractor.extract("EDIÇÃO: 1", shorter_first, NOW)] == [
        "EDIÇÃO",
        "EDIÇÃO: 1",
    ]


def test_html_is_reduced_to_visible_text(sample_source_config) -> None:
    html = (
        "<html><head><style>p { color: red }</style></head><body>"
        '<script>var banner = "EDIÇÃO: 999";</script>'
        "<div><p>EDIÇÃO: 1</p>\n\n<p>de 01/02/2024</p></div></body></html>"
    )
    occurrences = list(Extractor().extract(html, sample_source_config(), NOW))
    assert len(occurrences) == 1
    assert "999" not in occurrences[0].context_text
    assert "EDIÇÃO: 1 de 01/02/2024" in occurrences[0].context_text


def test_sequence_is_restartable(sample_source_config) -> None:
    sequence = Extractor().extract("EDIÇÃO: 1 and EDIÇÃO: 2", sample_source_config(), NOW)
    first = list(sequence)
    second = list(sequence)
    assert first == second
    assert len(first) == 2
    assert sequence


def test_bytes_are_decoded(sample_source_config) -> None:
    payload = "EDIÇÃO: 7".encode("utf-8")
    assert len(list(Extractor().extract(payload, sample_source_config(), NOW))) == 1


def test_unreadable_content_yields_nothing(sample_source_config) -> None:
    extractor = Extractor()
    with pytest.raises(ExtractionError):
        extractor.plain_text(b"\xff\xfe\xfa")
    with pytest.raises(ExtractionError):
        extractor.plain_text("EDIÇÃO:\x00binary")

    sequence = extractor.extract("EDIÇÃO:\x00binary", sample_source_config(), NOW)
    assert not sequence
    assert list(sequence) == []
    assert list(extractor.extract(None, sample_source_config(), NOW)) == []
