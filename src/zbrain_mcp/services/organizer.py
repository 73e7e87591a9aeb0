"""Note organization workflows built on top of the linking engine.

``NoteOrganizer`` classifies inbox notes into the project/library/archive
layout, links them to project hubs and related notes, extracts Zettel
ideas, splits mixed memos and recommends projects to focus on. Bulk
operations run sequentially with a pacing delay; one failing note never
stops the rest.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from zbrain_mcp.config import BrainConfig, config
from zbrain_mcp.exceptions import BrainError, BulkOperationError, DocumentExistsError
from zbrain_mcp.models.document import RELATED_NOTES_HEADING, Section
from zbrain_mcp.models.schema import (
    ChangeEvent,
    ClassifyResult,
    FocusItem,
    NoteKind,
    RelatedNoteResult,
    SplitSection,
)
from zbrain_mcp.observability import timed_operation, traced
from zbrain_mcp.services.classifier import ClassifierGateway
from zbrain_mcp.services.link_engine import CommitOutcome, MergeDecider, MergeLinkEngine, always_create
from zbrain_mcp.services.related_search import HybridSearch
from zbrain_mcp.storage.note_index import NoteIndex
from zbrain_mcp.storage.project_registry import ProjectHubRegistry
from zbrain_mcp.utils import (
    base_name,
    join_path,
    parent_folder,
    sanitize_file_name,
    utc_now,
    wikilink,
)

logger = logging.getLogger(__name__)

NEW_PROJECT_PREFIX = "NEW:"


@dataclass
class BatchReport:
    """Result of a bulk operation: counts plus one short line per failure."""

    processed: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    moved: List[str] = field(default_factory=list)
    failed_paths: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.failed

    def record_failure(self, path: str, error: Exception) -> None:
        self.failed += 1
        message = error.message if isinstance(error, BrainError) else str(error)
        self.errors.append(f"{path}: {message}")
        self.failed_paths.append(path)

    def raise_if_all_failed(self, operation: str) -> None:
        """Raise ``BulkOperationError`` when items were attempted and none succeeded."""
        if self.failed and not self.processed:
            raise BulkOperationError(
                f"All {self.failed} notes failed in {operation}",
                operation=operation,
                total_count=self.total,
                success_count=0,
                failed_paths=self.failed_paths,
            )


@dataclass
class LinkReport:
    """What ``link_note`` attached to a note."""

    keywords: List[str] = field(default_factory=list)
    project: Optional[str] = None
    related: List[RelatedNoteResult] = field(default_factory=list)


@dataclass
class ClassificationOutcome:
    """Where a classified note went and what it was linked to."""

    original_path: str
    path: str
    result: ClassifyResult
    links: Optional[LinkReport] = None
    link_error: Optional[str] = None


@dataclass
class SplitReport:
    """Notes created from a split memo."""

    source_path: str
    created: List[str] = field(default_factory=list)
    archived_path: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    single_topic: bool = False


class NoteOrganizer:
    """Classify, link, extract and split notes in the vault."""

    def __init__(
        self,
        index: NoteIndex,
        classifier: ClassifierGateway,
        search: HybridSearch,
        registry: ProjectHubRegistry,
        engine: MergeLinkEngine,
        cfg: Optional[BrainConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.index = index
        self.store = index.store
        self.parser = index.parser
        self.classifier = classifier
        self.search = search
        self.registry = registry
        self.engine = engine
        self.config = cfg or config
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Single notes
    # ------------------------------------------------------------------

    @traced("classify_note")
    def classify_note(self, path: str) -> ClassificationOutcome:
        """Classify a note, record the result in its metadata and move it.

        Linking (keywords, project hub, related notes) runs afterwards; its
        failure is reported in the outcome and does not undo the move.

        Raises:
            DocumentNotFoundError: If the note does not exist.
            NoteValidationError: If its metadata block is malformed.
            DocumentExistsError: If the destination path is taken.
            ClassifierError: If classification fails.
        """
        content = self.store.read(path)
        document = self.parser.parse(content)
        result = self.classifier.classify_destination(content, self.registry.project_ids())

        project_folder = sanitize_file_name(result.project_name) if result.project_name else None
        folder = self.config.target_folder(result.target_type.value, project_folder)
        new_path = join_path(folder, path.rsplit("/", 1)[-1])
        if new_path != path and self.store.exists(new_path):
            raise DocumentExistsError(new_path, operation="move")

        metadata = document.metadata
        metadata["target_type"] = result.target_type.value
        if result.project_name:
            metadata["project"] = result.project_name
        metadata["title"] = result.title
        metadata["summary"] = result.summary
        if result.next_action:
            metadata["next_action"] = result.next_action
        metadata["processed_at"] = utc_now().isoformat()
        self.store.write(path, self.parser.render(document))

        if new_path != path:
            self.store.move(path, new_path)
            self.index.remove(path)
        self.index.upsert(new_path)
        logger.info(f"Classified {path} -> {new_path} ({result.target_type.value})")

        outcome = ClassificationOutcome(original_path=path, path=new_path, result=result)
        try:
            outcome.links = self.link_note(new_path, result.title, content)
        except BrainError as e:
            logger.warning(f"Linking failed for {new_path}, classification kept: {e}")
            outcome.link_error = e.message
        return outcome

    def link_note(self, path: str, title: str, content: str) -> LinkReport:
        """Attach keywords, a project hub link and related-note links to a note."""
        report = LinkReport()
        report.keywords = self.classifier.extract_keywords(content)
        if report.keywords:
            self.search.save_keywords(path, report.keywords)

        if self.registry.project_ids():
            report.project = self._link_project(path, title, report.keywords)

        report.related = self.search.search(title, report.keywords, exclude_path=path)
        if report.related:
            self._write_related_section(path, report.related)
        return report

    def extract_zettels(
        self,
        path: str,
        decide: MergeDecider = always_create,
    ) -> List[CommitOutcome]:
        """Extract atomic ideas from a note and commit each as a Zettel."""
        content = self.store.read(path)
        with timed_operation("extract_zettels", path=path) as op:
            candidates = self.classifier.extract_zettels(content)
            outcomes = self.engine.commit_candidates(candidates, path, decide)
            op["candidates"] = len(candidates)
        return outcomes

    @traced("split_note")
    def split_note(self, path: str) -> SplitReport:
        """Split a mixed memo into one note per topic and archive the original.

        A memo the classifier sees as a single topic is left untouched.
        """
        content = self.store.read(path)
        sections = self.classifier.split_content(content, self.registry.project_ids())
        report = SplitReport(source_path=path)
        if len(sections) <= 1:
            report.single_topic = True
            return report

        for section in sections:
            try:
                report.created.append(self._create_split_note(section, path))
            except BrainError as e:
                logger.error(f"Split section '{section.title}' failed: {e}")
                report.errors.append(f"{section.title}: {e.message}")

        archive_path = join_path(self.config.archives_folder, path.rsplit("/", 1)[-1])
        try:
            self.store.move(path, archive_path)
            self.index.remove(path)
            self.index.upsert(archive_path)
            report.archived_path = archive_path
        except BrainError as e:
            logger.error(f"Could not archive {path}: {e}")
            report.errors.append(f"{path}: {e.message}")
        return report

    @traced("focus_projects")
    def focus_projects(self) -> List[FocusItem]:
        """Ask the classifier which projects deserve attention now."""
        return self.classifier.get_focus(self.collect_projects_summary())

    def collect_projects_summary(self) -> List[str]:
        """One ``- title: summary (next: action)`` line per project note.

        Hub documents are skipped; they carry links, not status.
        """
        lines = []
        for path in self.store.list(self.config.projects_folder):
            try:
                metadata = self.parser.read_metadata(self.store.read(path))
            except BrainError as e:
                logger.warning(f"Skipping unreadable project note {path}: {e}")
                continue
            if NoteKind.from_metadata(metadata.get("type")) == NoteKind.PROJECT_HUB:
                continue
            title = metadata.get("title") or base_name(path)
            summary = metadata.get("summary") or ""
            next_action = metadata.get("next_action") or ""
            lines.append(f"- {title}: {summary} (next: {next_action})")
        return lines

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def is_inbox_path(self, path: str) -> bool:
        return path.lower().endswith(".md") and (
            parent_folder(path) == self.config.inbox_folder.strip("/")
        )

    def has_trigger(self, path: str) -> bool:
        """Whether an existing note carries the trigger tag."""
        return self.config.trigger_tag in self.store.read(path)

    def pending_inbox_paths(self) -> List[str]:
        """Inbox notes that carry the trigger tag, in path order."""
        paths = []
        for path in self.store.list(self.config.inbox_folder):
            if not self.is_inbox_path(path):
                continue
            try:
                if self.has_trigger(path):
                    paths.append(path)
            except BrainError as e:
                logger.warning(f"Skipping unreadable inbox note {path}: {e}")
        return paths

    @traced("process_inbox")
    def process_inbox(self) -> BatchReport:
        """Classify every triggered inbox note, one at a time."""
        return self._classify_all(self.pending_inbox_paths())

    def handle_events(self, events: Iterable[ChangeEvent]) -> BatchReport:
        """Classify the triggered inbox notes of a drained event batch."""
        paths: List[str] = []
        for event in events:
            if event.path in paths or not self.is_inbox_path(event.path):
                continue
            if not self.store.exists(event.path):
                continue
            try:
                if self.has_trigger(event.path):
                    paths.append(event.path)
            except BrainError as e:
                logger.warning(f"Skipping unreadable inbox note {event.path}: {e}")
        if paths:
            logger.info(f"Auto-classifying {len(paths)} inbox notes")
        return self._classify_all(paths)

    def _classify_all(self, paths: List[str]) -> BatchReport:
        report = BatchReport()
        for position, path in enumerate(paths):
            if position and self.config.bulk_pacing_delay > 0:
                self._sleep(self.config.bulk_pacing_delay)
            try:
                outcome = self.classify_note(path)
                report.processed += 1
                report.moved.append(outcome.path)
            except BrainError as e:
                logger.error(f"Failed to classify {path}: {e}")
                report.record_failure(path, e)
        return report

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _link_project(self, path: str, title: str, keywords: List[str]) -> Optional[str]:
        detection = self.registry.detect_project(title, keywords)
        if detection.project_id:
            if self.registry.add_link(detection.project_id, title, path):
                return detection.project_id
            return None
        if detection.is_new:
            name = detection.new_project_name
            self.registry.create_hub(name, self.config.projects_folder)
            if self.registry.add_link(name, title, path):
                return name
        return None

    def _write_related_section(self, path: str, related: List[RelatedNoteResult]) -> None:
        document = self.parser.parse(self.store.read(path))
        lines = [
            f"- {wikilink(r.target.link_name)} (relevance: {r.relevance_percent}%)"
            for r in related
        ]
        document.replace_section(Section(RELATED_NOTES_HEADING, lines))
        self.store.write(path, self.parser.render(document))
        self.index.upsert(path)

    def _create_split_note(self, section: SplitSection, source_path: str) -> str:
        project = section.project
        is_new = section.is_new_project
        if project and project.upper().startswith(NEW_PROJECT_PREFIX):
            project = project[len(NEW_PROJECT_PREFIX):].strip() or None
            is_new = True

        folder = self.config.target_folder(
            section.target_type.value, sanitize_file_name(project) if project else None
        )
        path = join_path(folder, f"{sanitize_file_name(section.title)}.md")

        document = self.parser.parse(f"# {section.title}\n\n{section.content}\n")
        document.metadata = {
            "target_type": section.target_type.value,
            "keywords": list(section.keywords),
            "source": wikilink(base_name(source_path)),
            "created": utc_now().isoformat(),
        }
        if project:
            document.metadata["project"] = project
        self.store.create(path, self.parser.render(document))
        self.index.upsert(path)

        if project:
            if is_new:
                self.registry.create_hub(project, self.config.projects_folder)
            self.registry.add_link(project, section.title, path)
        return path
