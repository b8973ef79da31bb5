"""Stable identities for detected occurrences."""

from __future__ import annotations

import re
import unicodedata

from ..config import FingerprintConfig
from .extractor import CandidateOccurrence

_DATE_TOKEN = re.compile(r"(?<!\d)(?:\d{2}/\d{2}/\d{4}|\d{4}-\d{2}-\d{2})(?!\d)")
_EDITION_TOKEN = re.compile(r"\d+(?:/\d+)?")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_NON_DIGIT = re.compile(r"\D+")


def normalize_text(text: str) -> str:
    """Fold accents, lowercase and drop everything outside ``[a-z0-9]``."""

    folded = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("", folded.lower())


def date_anchor(text: str) -> str:
    match = _DATE_TOKEN.search(text)
    return _NON_DIGIT.sub("", match.group(0)) if match else ""


def edition_anchor(text: str) -> str:
    # dates are blanked first so "01/02/2024" never reads as edition "01/02"
    without_dates = _DATE_TOKEN.sub(" ", text)
    match = _EDITION_TOKEN.search(without_dates)
    return _NON_DIGIT.sub("", match.group(0)) if match else ""


class Fingerprinter:
    """Map a candidate occurrence to ``type_edition_date_prefix``.

    Anchors come from the raw context window and the prefix from its
    normalised form, so the text around the match keeps otherwise identical
    entries from different issuers apart.
    """

    def __init__(self, config: FingerprintConfig | None = None) -> None:
        self.config = config or FingerprintConfig()

    def fingerprint(self, occurrence: CandidateOccurrence) -> str:
        context = occurrence.context_text
        prefix = normalize_text(context)[: self.config.prefix_length]
        value = f"{occurrence.source_type}_{edition_anchor(context)}_{date_anchor(context)}_{prefix}"
        return value[: self.config.max_length]


__all__ = ["Fingerprinter", "date_anchor", "edition_anchor", "normalize_text"]
