"""Engine components orchestrating fetch → extract → fingerprint → dedup → sink."""

from .dedup import DedupRecord, DedupStore, PersistenceError, RecordStats
from .extractor import CandidateOccurrence, ExtractionError, Extractor, OccurrenceSequence
from .fetcher import FetchError, FetchErrorKind, FetchResponse, Fetcher
from .fingerprint import Fingerprinter

__all__ = [
    "CandidateOccurrence",
    "DedupRecord",
    "DedupStore",
    "ExtractionError",
    "Extractor",
    "FetchError",
    "FetchErrorKind",
    "FetchResponse",
    "Fetcher",
    "Fingerprinter",
    "OccurrenceSequence",
    "PersistenceError",
    "RecordStats",
]
