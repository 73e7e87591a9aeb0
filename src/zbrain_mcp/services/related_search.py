"""Two-stage related-note retrieval: keyword prefilter, then classifier re-ranking."""
import logging
from typing import List, Optional, Sequence

from zbrain_mcp.models.schema import NoteKind, NoteRecord, RelatedNoteResult
from zbrain_mcp.observability import traced
from zbrain_mcp.services.classifier import ClassifierGateway
from zbrain_mcp.services.prefilter import KeywordPrefilter, PrefilterCandidate
from zbrain_mcp.storage.markdown_parser import MarkdownParser
from zbrain_mcp.storage.note_index import NoteIndex

logger = logging.getLogger(__name__)

# Query title used when a Zettel search has no title of its own
DEFAULT_ZETTEL_QUERY_TITLE = "New Zettel note"


def describe_candidate(record: NoteRecord) -> str:
    """One-line description of a candidate for the classifier."""
    return f"{record.title} (keywords: {', '.join(record.keywords)})"


class HybridSearch:
    """Finds notes related to a query note.

    Pipeline: extract keywords -> prefilter -> classifier scoring -> map
    positional indices back to candidates. Any empty stage ends the search
    with an empty result.
    """

    def __init__(
        self,
        index: NoteIndex,
        classifier: ClassifierGateway,
        prefilter: Optional[KeywordPrefilter] = None,
        parser: Optional[MarkdownParser] = None,
    ):
        self.index = index
        self.classifier = classifier
        self.prefilter = prefilter or KeywordPrefilter(index)
        self.parser = parser or index.parser

    @traced("find_related")
    def find_related(
        self,
        content: str,
        title: str,
        exclude_path: Optional[str] = None,
    ) -> List[RelatedNoteResult]:
        """Related notes across the whole vault for free-form content."""
        keywords = self.classifier.extract_keywords(content)
        if not keywords:
            return []
        return self.search(title, keywords, exclude_path=exclude_path)

    @traced("find_related_zettels")
    def find_related_zettels(
        self,
        keywords: Sequence[str],
        exclude_path: Optional[str] = None,
        title: Optional[str] = None,
    ) -> List[RelatedNoteResult]:
        """Related Zettel notes for known keywords (duplicate/merge detection)."""
        return self.search(
            title or DEFAULT_ZETTEL_QUERY_TITLE,
            keywords,
            kind=NoteKind.ZETTEL,
            exclude_path=exclude_path,
        )

    def search(
        self,
        title: str,
        keywords: Sequence[str],
        kind: Optional[NoteKind] = None,
        exclude_path: Optional[str] = None,
    ) -> List[RelatedNoteResult]:
        """Run the prefilter and scoring stages for already-known keywords."""
        if not keywords:
            return []
        candidates = self.prefilter.filter(keywords, kind=kind, exclude_path=exclude_path)
        if not candidates:
            return []

        scores = self.classifier.score_relatedness(
            title, list(keywords), [describe_candidate(c.record) for c in candidates]
        )
        return self._map_scores(scores, candidates)

    @staticmethod
    def _map_scores(scores, candidates: List[PrefilterCandidate]) -> List[RelatedNoteResult]:
        results: List[RelatedNoteResult] = []
        seen = set()
        for score in scores:
            if not 0 <= score.index < len(candidates):
                logger.debug(
                    f"Discarding relatedness index {score.index} "
                    f"(only {len(candidates)} candidates)"
                )
                continue
            candidate = candidates[score.index]
            if candidate.record.path in seen:
                continue
            seen.add(candidate.record.path)
            results.append(
                RelatedNoteResult(
                    target=candidate.record,
                    relevance=score.relevance,
                    matched_keywords=set(candidate.matched_keywords),
                    reason=score.reason,
                    connection_type=score.connection_type,
                )
            )
        return results

    def save_keywords(self, path: str, keywords: Sequence[str]) -> NoteRecord:
        """Replace a document's ``keywords`` metadata and re-index it.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            NoteValidationError: If its metadata block is malformed.
        """
        document = self.parser.parse(self.index.store.read(path))
        document.keywords = list(keywords)
        self.index.store.write(path, self.parser.render(document))
        return self.index.upsert(path)
