"""Plain-text extraction and pattern scanning of fetched documents."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator

import structlog
from selectolax.lexbor import LexborHTMLParser

from ..config import ExtractionConfig, SourceConfig

_WHITESPACE = re.compile(r"\s+")
_HTML_MARKER = re.compile(r"<(?:!doctype|html|head|body|div|p|span|table|a|ul|li)\b", re.IGNORECASE)
_NON_TEXT_TAGS = ["script", "style", "noscript", "template"]


class ExtractionError(Exception):
    """Raised when content cannot be reduced to plain text."""


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


@dataclass(frozen=True, slots=True)
class CandidateOccurrence:
    """One pattern match with its surrounding text, for one check cycle."""

    source_id: str
    source_type: str
    pattern: str
    context_text: str
    extracted_at: datetime
    match_offset: int = 0


class OccurrenceSequence:
    """Lazy, restartable view over the occurrences of one document.

    Every iteration rescans the text; nothing is cached between passes.
    """

    def __init__(
        self,
        extractor: "Extractor",
        text: str,
        source: SourceConfig,
        extracted_at: datetime,
    ) -> None:
        self._extractor = extractor
        self._text = text
        self._source = source
        self._extracted_at = extracted_at

    def __iter__(self) -> Iterator[CandidateOccurrence]:
        return self._extractor._scan(self._text, self._source, self._extracted_at)

    def __bool__(self) -> bool:
        return next(iter(self), None) is not None


class Extractor:
    """Turn raw fetched content into candidate occurrences."""

    def __init__(
        self,
        config: ExtractionConfig | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.config = config or ExtractionConfig()
        self.logger = logger or structlog.get_logger("page_sentinel.extractor")

    def extract(
        self,
        content: str | bytes | None,
        source: SourceConfig,
        extracted_at: datetime | None = None,
    ) -> OccurrenceSequence:
        extracted_at = extracted_at or datetime.now(timezone.utc)
        try:
            text = self.plain_text(content)
        except ExtractionError as exc:
            self.logger.warning("extraction_failed", source_id=source.source_id, error=str(exc))
            text = ""
        return OccurrenceSequence(self, text, source, extracted_at)

    def plain_text(self, content: str | bytes | None) -> str:
        if not content:
            return ""
        if isinstance(content, bytes):
            try:
                content = content.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ExtractionError(f"content is not valid UTF-8 text: {exc}") from exc
        if "\x00" in content:
            raise ExtractionError("content contains NUL bytes, refusing to scan binary data")
        if not _HTML_MARKER.search(content):
            return content
        try:
            tree = LexborHTMLParser(content)
            tree.strip_tags(_NON_TEXT_TAGS)
            node = tree.body or tree.root
            if node is None:
                return ""
            return collapse_whitespace(node.text(separator=" "))
        except Exception as exc:  # noqa: BLE001
            raise ExtractionError(f"HTML parsing failed: {exc}") from exc

    # ------------------------------------------------------------------
    def _scan(
        self, text: str, source: SourceConfig, extracted_at: datetime
    ) -> Iterator[CandidateOccurrence]:
        if not text:
            return
        matches: list[tuple[int, int, re.Match[str]]] = []
        cap = self.config.max_candidates_per_pattern
        for index, pattern in enumerate(source.patterns):
            kept = 0
            for match in pattern.compile().finditer(text):
                if match.end() == match.start():
                    continue
                matches.append((match.start(), index, match))
                kept += 1
                if kept >= cap:
                    break
        matches.sort(key=lambda item: (item[0], item[1]))
        for _, index, match in matches:
            context, offset = self._context_window(text, match)
            yield CandidateOccurrence(
                source_id=source.source_id,
                source_type=source.source_type,
                pattern=source.patterns[index].value,
                context_text=context,
                extracted_at=extracted_at,
                match_offset=offset,
            )

    def _context_window(self, text: str, match: re.Match[str]) -> tuple[str, int]:
        width = self.config.context_chars
        start = max(0, match.start() - width)
        end = min(len(text), match.end() + width)
        context = collapse_whitespace(text[start:end])
        leading = _WHITESPACE.sub(" ", text[start : match.start()]).lstrip()
        return context, min(len(leading), len(context))


__all__ = [
    "CandidateOccurrence",
    "ExtractionError",
    "Extractor",
    "OccurrenceSequence",
    "collapse_whitespace",
]
