"""Local keyword-overlap narrowing of related-note candidates."""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from zbrain_mcp.models.schema import NoteKind, NoteRecord
from zbrain_mcp.storage.note_index import NoteIndex

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 10


@dataclass
class PrefilterCandidate:
    """An index record together with the stored keywords that matched."""

    record: NoteRecord
    matched_keywords: Set[str] = field(default_factory=set)

    @property
    def match_count(self) -> int:
        return len(self.matched_keywords)


def keywords_match(a: str, b: str) -> bool:
    """Symmetric, case-insensitive substring match between two keywords.

    Short keywords match generously ("iot" matches "iotron"); the classifier
    stage is expected to weed out such false positives.
    """
    a, b = a.lower(), b.lower()
    return a in b or b in a


class KeywordPrefilter:
    """First retrieval stage: candidates sharing keywords with the query."""

    def __init__(self, index: NoteIndex):
        self.index = index

    def filter(
        self,
        keywords: Iterable[str],
        kind: Optional[NoteKind] = None,
        exclude_path: Optional[str] = None,
        limit: int = MAX_CANDIDATES,
    ) -> List[PrefilterCandidate]:
        """Return at most ``limit`` records ordered by matched-keyword count.

        Args:
            keywords: Query keywords.
            kind: Restrict the scan to one document kind.
            exclude_path: Document that never qualifies (the querying note).
            limit: Maximum number of candidates (capped at 10).

        Returns:
            Candidates sorted by descending match count, ties by path.
        """
        query = [k.strip().lower() for k in keywords if k and k.strip()]
        if not query:
            return []
        limit = max(0, min(limit, MAX_CANDIDATES))

        candidates: List[PrefilterCandidate] = []
        for record in self.index.query():
            if record.path == exclude_path or not record.keywords:
                continue
            if kind is not None and record.kind != kind:
                continue
            matched = {
                stored
                for stored in record.keywords
                if any(keywords_match(stored, q) for q in query)
            }
            if matched:
                candidates.append(PrefilterCandidate(record, matched))

        candidates.sort(key=lambda c: (-c.match_count, c.record.path))
        logger.debug(
            f"Prefilter matched {len(candidates)} records for {len(query)} keywords"
        )
        return candidates[:limit]
