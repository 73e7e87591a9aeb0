"""Registry of project hub (map of content) documents."""
import logging
import threading
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from zbrain_mcp.exceptions import BrainError
from zbrain_mcp.models.document import RELATED_NOTES_HEADING, Document, Section
from zbrain_mcp.models.schema import NoteKind, ProjectDetection, ProjectHub
from zbrain_mcp.storage.note_index import NoteIndex
from zbrain_mcp.utils import base_name, join_path, sanitize_file_name, utc_now, wikilink

if TYPE_CHECKING:
    from zbrain_mcp.services.classifier import ClassifierGateway

logger = logging.getLogger(__name__)

HUB_OVERVIEW_HEADING = "Overview"
HUB_IN_PROGRESS_HEADING = "In progress"


class ProjectHubRegistry:
    """Tracks project hubs by project id, at most one hub per id.

    Hubs are discovered from the note index (documents of kind
    ``project-moc``). The registry writes through the index's store and
    re-indexes every hub it touches.
    """

    def __init__(self, index: NoteIndex, classifier: Optional["ClassifierGateway"] = None):
        self.index = index
        self.store = index.store
        self.parser = index.parser
        self.classifier = classifier
        self._hubs: Dict[str, ProjectHub] = {}
        self._lock = threading.RLock()

    def scan(self) -> int:
        """Populate the registry from indexed project hub documents.

        When two hubs claim the same project id, the one scanned last (by
        path order) wins.
        """
        hubs: Dict[str, ProjectHub] = {}
        records = sorted(
            self.index.query(lambda r: r.kind == NoteKind.PROJECT_HUB),
            key=lambda r: r.path,
        )
        for record in records:
            project_id = record.project or base_name(record.path)
            if project_id in hubs:
                logger.warning(
                    f"Duplicate hub for project '{project_id}': "
                    f"{hubs[project_id].path} replaced by {record.path}"
                )
            hubs[project_id] = ProjectHub(
                path=record.path, title=record.title, project_id=project_id
            )
        with self._lock:
            self._hubs = hubs
        logger.info(f"Project hub scan complete: {len(hubs)} projects")
        return len(hubs)

    def project_ids(self) -> List[str]:
        with self._lock:
            return list(self._hubs)

    def hubs(self) -> List[ProjectHub]:
        with self._lock:
            return list(self._hubs.values())

    def get(self, project_id: str) -> Optional[ProjectHub]:
        with self._lock:
            return self._hubs.get(project_id)

    def has(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._hubs

    def hub_path(self, project_id: str) -> Optional[str]:
        hub = self.get(project_id)
        return hub.path if hub else None

    def detect_project(self, title: str, keywords: Sequence[str]) -> ProjectDetection:
        """Ask the classifier which project a note belongs to."""
        project_ids = self.project_ids()
        if not project_ids or self.classifier is None:
            return ProjectDetection.none()
        return self.classifier.detect_project(title, list(keywords), project_ids)

    def add_link(self, project_id: str, note_title: str, note_path: str) -> bool:
        """Link a note from its project hub's "Related notes" section.

        Returns:
            True if the hub links to the note afterwards (including when the
            link already existed), False if the project is unknown.
        """
        with self._lock:
            hub = self._hubs.get(project_id)
            if hub is None or not self.store.exists(hub.path):
                return False

            if self.store.exists(note_path):
                link_name = base_name(note_path)
            else:
                link_name = sanitize_file_name(note_title)

            document = self.parser.parse(self.store.read(hub.path))
            if document.links_to(link_name):
                return True

            section = document.ensure_section(RELATED_NOTES_HEADING)
            # Newest links first, right below the heading
            position = 0
            while position < len(section.lines) and not section.lines[position].strip():
                position += 1
            section.lines.insert(position, f"- {wikilink(link_name)}")

            self.store.write(hub.path, self.parser.render(document))
            self.index.upsert(hub.path)
            logger.info(f"Linked '{link_name}' from project hub '{project_id}'")
            return True

    def create_hub(self, project_id: str, parent_folder: str) -> Optional[ProjectHub]:
        """Create the hub document of a new project.

        Returns:
            The new hub, or None if the project is already registered or a
            document already exists at the hub's path.
        """
        with self._lock:
            if project_id in self._hubs:
                return None
            path = join_path(parent_folder, f"{sanitize_file_name(project_id)} MOC.md")
            if self.store.exists(path):
                logger.info(f"Hub document {path} already exists, not creating another")
                self._adopt_existing(path)
                return None

            title = f"{project_id} project"
            document = Document(
                metadata={
                    "type": NoteKind.PROJECT_HUB.value,
                    "project": project_id,
                    "title": title,
                    "created": utc_now().isoformat(),
                },
                preamble=[f"# {title}"],
                sections=[
                    Section(HUB_OVERVIEW_HEADING),
                    Section(HUB_IN_PROGRESS_HEADING),
                    Section(RELATED_NOTES_HEADING),
                ],
            )
            self.store.create(path, self.parser.render(document))
            self.index.upsert(path)

            hub = ProjectHub(path=path, title=title, project_id=project_id)
            self._hubs[project_id] = hub
            logger.info(f"Created project hub {path}")
            return hub

    def _adopt_existing(self, path: str) -> None:
        """Register an unindexed hub document found at a hub path."""
        try:
            record = self.index.upsert(path)
        except BrainError as e:
            logger.warning(f"Cannot index existing hub document {path}: {e}")
            return
        if record.kind == NoteKind.PROJECT_HUB:
            project_id = record.project or base_name(path)
            self._hubs.setdefault(
                project_id,
                ProjectHub(path=path, title=record.title, project_id=project_id),
            )
