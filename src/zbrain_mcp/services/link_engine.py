"""Merge-or-create commits of new Zettel ideas, with bidirectional linking.

For each idea extracted from a source note the engine looks for an existing
Zettel note that already covers it. Above the merge threshold the caller
decides whether to merge into that note or create a new one. New notes are
linked to the related Zettel notes found for them, and every related note
gets a backlink, so each relation is visible from both ends.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from zbrain_mcp.config import config
from zbrain_mcp.exceptions import BrainError, NoteNotFoundError
from zbrain_mcp.models.document import LINKED_NOTES_HEADING, Document, Section
from zbrain_mcp.models.schema import NoteKind, RelatedNoteResult, ZkCandidate
from zbrain_mcp.observability import traced
from zbrain_mcp.services.id_allocator import IdAllocator
from zbrain_mcp.services.related_search import HybridSearch
from zbrain_mcp.services.structure_index import StructureIndex
from zbrain_mcp.storage.note_index import NoteIndex
from zbrain_mcp.utils import base_name, join_path, sanitize_file_name, utc_now, wikilink

logger = logging.getLogger(__name__)

CORE_IDEA_HEADING = "Core idea"
IMPORTANCE_HEADING = "Why it matters"
CONTEXT_HEADING = "Context"

# Called with the candidate and the best existing match; True means merge
MergeDecider = Callable[[ZkCandidate, RelatedNoteResult], bool]


def always_create(candidate: ZkCandidate, match: RelatedNoteResult) -> bool:
    return False


def always_merge(candidate: ZkCandidate, match: RelatedNoteResult) -> bool:
    return True


class CommitAction(str, Enum):
    CREATED = "created"
    MERGED = "merged"
    FAILED = "failed"


@dataclass
class CommitOutcome:
    """What happened to one candidate."""

    candidate: ZkCandidate
    action: CommitAction
    path: Optional[str] = None
    linked: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.action != CommitAction.FAILED


def link_entry(target: str, relevance: float, reason: str = "") -> List[str]:
    """Lines of one linked-notes entry: the link with its relevance, then the reason."""
    lines = [f"- {wikilink(target)} ({round(relevance * 100)}%)"]
    if reason:
        lines.append(f"  → {reason}")
    return lines


def build_zettel_document(
    candidate: ZkCandidate,
    source_name: str,
    created: str,
) -> Document:
    """Assemble the document of a new Zettel note."""
    concepts = ", ".join(candidate.related_concepts)
    return Document(
        metadata={
            "type": NoteKind.ZETTEL.value,
            "title": candidate.title,
            "source": wikilink(source_name),
            "keywords": list(candidate.keywords),
            "created": created,
        },
        preamble=[f"# {candidate.title}"],
        sections=[
            Section(CORE_IDEA_HEADING, [candidate.body]),
            Section(IMPORTANCE_HEADING, [candidate.importance or ""]),
            Section(
                CONTEXT_HEADING,
                [
                    f"- **Source**: {wikilink(source_name)}",
                    f"- **Related concepts**: {concepts}",
                ],
            ),
            Section(LINKED_NOTES_HEADING, [f"- {wikilink(source_name)} (source)"]),
        ],
    )


class MergeLinkEngine:
    """Commits Zettel candidates and keeps linked-notes sections consistent."""

    def __init__(
        self,
        index: NoteIndex,
        search: HybridSearch,
        allocator: IdAllocator,
        structure_index: Optional[StructureIndex] = None,
        zettel_folder: Optional[str] = None,
        merge_threshold: Optional[float] = None,
        pacing_delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.index = index
        self.store = index.store
        self.parser = index.parser
        self.search = search
        self.allocator = allocator
        self.structure_index = structure_index
        self.zettel_folder = zettel_folder if zettel_folder is not None else config.zettel_folder
        self.merge_threshold = (
            merge_threshold if merge_threshold is not None else config.zk_merge_threshold
        )
        self.pacing_delay = pacing_delay
        self._sleep = sleep

    def should_propose_merge(self, match: RelatedNoteResult) -> bool:
        return match.relevance >= self.merge_threshold

    @traced("commit_candidate")
    def commit_candidate(
        self,
        candidate: ZkCandidate,
        source_path: str,
        decide: MergeDecider = always_create,
    ) -> CommitOutcome:
        """Merge a candidate into a near-duplicate Zettel, or create a new one.

        ``decide`` is consulted only when the best existing match reaches the
        merge threshold, and blocks until it answers.

        Raises:
            ClassifierError: If a classifier call fails for good.
            NoteNotFoundError: If the chosen merge target no longer exists.
            IdCollisionError: If the allocated identifier is already in use.
        """
        similar = self.search.find_related_zettels(candidate.keywords, title=candidate.title)
        best = max(similar, key=lambda r: r.relevance, default=None)

        if best is not None and self.should_propose_merge(best):
            logger.info(
                f"'{candidate.title}' resembles {best.target.path} "
                f"({best.relevance_percent}%), asking for a decision"
            )
            if decide(candidate, best):
                path = self.merge_into(best.target.path, candidate, source_path)
                return CommitOutcome(candidate, CommitAction.MERGED, path=path)

        return self.create_zettel(candidate, source_path)

    def commit_candidates(
        self,
        candidates: Sequence[ZkCandidate],
        source_path: str,
        decide: MergeDecider = always_create,
    ) -> List[CommitOutcome]:
        """Commit candidates one after another.

        A failing candidate is recorded in its outcome; the others still run.
        """
        outcomes: List[CommitOutcome] = []
        for position, candidate in enumerate(candidates):
            if position and self.pacing_delay > 0:
                self._sleep(self.pacing_delay)
            try:
                outcomes.append(self.commit_candidate(candidate, source_path, decide))
            except BrainError as e:
                logger.error(f"Failed to commit '{candidate.title}': {e}")
                outcomes.append(CommitOutcome(candidate, CommitAction.FAILED, error=str(e)))
        return outcomes

    # ------------------------------------------------------------------
    # Merge path
    # ------------------------------------------------------------------

    def merge_into(self, target_path: str, candidate: ZkCandidate, source_path: str) -> str:
        """Append the candidate to an existing Zettel as a dated addendum.

        The addendum goes before the "Linked notes" section (or at the end);
        keywords are merged with the existing ones first.

        Raises:
            NoteNotFoundError: If the target document no longer exists.
        """
        if not self.store.exists(target_path):
            self.index.remove(target_path)
            raise NoteNotFoundError(
                target_path, f"Merge target '{target_path}' no longer exists"
            )

        now = utc_now()
        document = self.parser.parse(self.store.read(target_path))
        addendum = Section(
            f"Added {now.date().isoformat()}",
            [f"*Source: {wikilink(base_name(source_path))}*", "", candidate.body],
        )
        document.insert_section_before(addendum, LINKED_NOTES_HEADING)
        document.merge_keywords(candidate.keywords)
        document.metadata["updated"] = now.isoformat()

        self.store.write(target_path, self.parser.render(document))
        self.index.upsert(target_path)
        logger.info(f"Merged '{candidate.title}' into {target_path}")
        return target_path

    # ------------------------------------------------------------------
    # Create path
    # ------------------------------------------------------------------

    def create_zettel(self, candidate: ZkCandidate, source_path: str) -> CommitOutcome:
        """Create a new Zettel note and link it with related Zettel notes."""
        zettel_id = self.allocator.allocate()
        path = join_path(
            self.zettel_folder, f"{zettel_id} {sanitize_file_name(candidate.title)}.md"
        )
        document = build_zettel_document(
            candidate, base_name(source_path), utc_now().isoformat()
        )
        self.store.create(path, self.parser.render(document))
        self.index.upsert(path)
        logger.info(f"Created Zettel {path}")

        related = self.search.find_related_zettels(
            candidate.keywords, exclude_path=path, title=candidate.title
        )
        linked = self.link_related(path, related)

        if self.structure_index is not None:
            try:
                self.structure_index.add_note(path, list(candidate.keywords))
            except BrainError as e:
                logger.warning(f"Structure index not updated for {path}: {e}")

        return CommitOutcome(candidate, CommitAction.CREATED, path=path, linked=linked)

    def link_related(self, new_path: str, related: Sequence[RelatedNoteResult]) -> List[str]:
        """Link a new Zettel and its related notes in both directions.

        The backlink is written first; a related note whose backlink cannot
        be written is left out of the new note too. If the new note itself
        cannot be updated, the backlinks added here are removed again, so no
        relation is ever recorded on one side only.

        Returns:
            Paths of the related notes that are now linked.
        """
        linked: List[RelatedNoteResult] = []
        added: List[str] = []
        for result in related:
            try:
                if self.add_backlink(
                    result.target.path, new_path, result.relevance, result.reason
                ):
                    added.append(result.target.path)
            except BrainError as e:
                logger.warning(f"Skipping link with {result.target.path}: {e}")
                continue
            linked.append(result)

        if linked:
            try:
                document = self.parser.parse(self.store.read(new_path))
                section = document.ensure_section(LINKED_NOTES_HEADING)
                for result in linked:
                    section.add_link_entry(
                        result.target.link_name,
                        link_entry(result.target.link_name, result.relevance, result.reason),
                    )
                self.store.write(new_path, self.parser.render(document))
                self.index.upsert(new_path)
            except BrainError:
                for related_path in added:
                    self.remove_backlink(related_path, new_path)
                raise

        return [result.target.path for result in linked]

    def add_backlink(
        self,
        related_path: str,
        new_path: str,
        relevance: float,
        reason: str = "",
    ) -> bool:
        """Add a link to ``new_path`` in a related note's "Linked notes" section.

        Returns:
            False if the related note already links to the new note anywhere.
        """
        name = base_name(new_path)
        document = self.parser.parse(self.store.read(related_path))
        if document.links_to(name):
            return False
        document.ensure_section(LINKED_NOTES_HEADING).add_link_entry(
            name, link_entry(name, relevance, reason)
        )
        self.store.write(related_path, self.parser.render(document))
        self.index.upsert(related_path)
        return True

    def remove_backlink(self, related_path: str, new_path: str) -> bool:
        """Take a link to ``new_path`` back out of a related note.

        Failures are logged; the note keeps the link.
        """
        name = base_name(new_path)
        try:
            document = self.parser.parse(self.store.read(related_path))
            section = document.section(LINKED_NOTES_HEADING)
            if section is None or not section.remove_link_entry(name):
                return False
            self.store.write(related_path, self.parser.render(document))
            self.index.upsert(related_path)
        except BrainError as e:
            logger.error(f"Could not remove link to {name} from {related_path}: {e}")
            return False
        logger.info(f"Removed link to {name} from {related_path}")
        return True
