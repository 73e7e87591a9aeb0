"""MCP server implementation for the Zero Friction Brain."""

import atexit
import logging
import threading
import uuid
from typing import Optional

from mcp.server.fastmcp import FastMCP

from zbrain_mcp.config import BrainConfig, config
from zbrain_mcp.exceptions import BrainError, BulkOperationError
from zbrain_mcp.observability import metrics, timed_operation
from zbrain_mcp.services.classifier import ClassifierGateway
from zbrain_mcp.services.event_queue import DebouncedEventQueue
from zbrain_mcp.services.id_allocator import create_allocator
from zbrain_mcp.services.link_engine import (
    CommitAction,
    MergeLinkEngine,
    always_create,
    always_merge,
)
from zbrain_mcp.services.organizer import NoteOrganizer
from zbrain_mcp.services.related_search import HybridSearch
from zbrain_mcp.services.structure_index import StructureIndex
from zbrain_mcp.storage.document_store import DocumentStore, FileSystemStore, StoreWatch
from zbrain_mcp.storage.note_index import NoteIndex
from zbrain_mcp.storage.project_registry import ProjectHubRegistry

logger = logging.getLogger(__name__)

MERGE_POLICIES = {"create": always_create, "merge": always_merge}


class BrainMcpServer:
    """MCP server for the Zero Friction Brain."""

    def __init__(
        self,
        cfg: Optional[BrainConfig] = None,
        store: Optional[DocumentStore] = None,
        classifier: Optional[ClassifierGateway] = None,
    ):
        """Initialize the MCP server.

        Args:
            cfg: Configuration; the global config when omitted.
            store: Document store; a ``FileSystemStore`` over the vault
                directory when omitted.
            classifier: Classifier gateway; built from configuration
                (Gemini backend) when omitted.
        """
        self.config = cfg or config
        self.mcp = FastMCP(self.config.server_name)

        self.store = store or FileSystemStore(self.config.get_vault_path())
        self.index = NoteIndex(self.store)
        self.classifier = classifier or ClassifierGateway.from_config(self.config)
        self.registry = ProjectHubRegistry(self.index, self.classifier)
        self.search = HybridSearch(self.index, self.classifier)
        self.structure_index = StructureIndex(
            self.index, self.config.zettel_folder, self.classifier
        )
        self.engine = MergeLinkEngine(
            self.index,
            self.search,
            create_allocator(self.config.zk_id_type, self.index),
            structure_index=self.structure_index,
            zettel_folder=self.config.zettel_folder,
            merge_threshold=self.config.zk_merge_threshold,
            pacing_delay=self.config.bulk_pacing_delay,
        )
        self.organizer = NoteOrganizer(
            self.index,
            self.classifier,
            self.search,
            self.registry,
            self.engine,
            cfg=self.config,
        )

        self._watch: Optional[StoreWatch] = None
        self._event_queue: Optional[DebouncedEventQueue] = None
        # Held by every operation that edits the vault, watcher batches included
        self._worker_lock = threading.RLock()

        self.initialize()
        atexit.register(self._shutdown)
        self._register_tools()

    def initialize(self) -> None:
        """Build the note index and the project registry from the vault."""
        count = self.index.rebuild()
        self.registry.scan()
        self.engine.allocator.reseed()
        logger.info(
            f"Zero Friction Brain MCP server {self.config.server_version} "
            f"initialized ({count} documents)"
        )

    def start_watching(self) -> None:
        """Classify triggered inbox notes automatically as they change."""
        if self._watch is not None:
            return
        self._event_queue = DebouncedEventQueue(
            self.organizer.handle_events,
            delay=self.config.debounce_seconds,
            worker_lock=self._worker_lock,
        )
        self._watch = self.store.watch(self._event_queue.push)
        logger.info(f"Watching '{self.config.inbox_folder}' for '{self.config.trigger_tag}'")

    def _shutdown(self) -> None:
        """Stop the watcher and drop pending change events."""
        if self._watch is not None:
            self._watch.stop()
            self._watch = None
        if self._event_queue is not None:
            self._event_queue.stop()
            self._event_queue = None

    def format_error_response(self, error: Exception) -> str:
        """Format an error as one short line.

        Domain errors show their message; anything else is logged with a
        reference id and reported generically.
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, BrainError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        elif isinstance(error, (IOError, OSError)):
            logger.error(f"File system error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: A file system error occurred (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="zk_rebuild_index")
        def zk_rebuild_index() -> str:
            """Rescan the vault and rebuild the note index and project registry."""
            with timed_operation("zk_rebuild_index") as op:
                try:
                    with self._worker_lock:
                        count = self.index.rebuild()
                        projects = self.registry.scan()
                        self.engine.allocator.reseed()
                    op["count"] = count
                    return (
                        f"Index rebuilt: {count} documents, "
                        f"{self.index.zettel_count()} Zettel notes, {projects} projects"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_find_related")
        def zk_find_related(path: str, zettels_only: bool = False) -> str:
            """Find notes related to a note in the vault.

            Args:
                path: Vault-relative path of the note (e.g. "00 Inbox/idea.md")
                zettels_only: Only consider Zettel notes
            """
            with timed_operation("zk_find_related", path=path) as op:
                try:
                    record = self.index.get(path) or self.index.upsert(path)
                    if zettels_only:
                        results = self.search.find_related_zettels(
                            record.keywords, exclude_path=path, title=record.title
                        )
                    else:
                        results = self.search.find_related(
                            self.store.read(path), record.title, exclude_path=path
                        )
                    op["result_count"] = len(results)

                    if not results:
                        return f"No related notes found for '{record.title}'"

                    output = f"Notes related to '{record.title}':\n\n"
                    for i, result in enumerate(results, 1):
                        output += f"{i}. {result.target.title} ({result.target.path})\n"
                        output += f"   Relevance: {result.relevance_percent}%"
                        if result.connection_type.value != "unspecified":
                            output += f" ({result.connection_type.value})"
                        output += "\n"
                        if result.reason:
                            output += f"   Reason: {result.reason}\n"
                        output += "\n"
                    return output.rstrip()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_extract_zettels")
        def zk_extract_zettels(path: str, merge_policy: str = "create") -> str:
            """Extract atomic ideas from a note into Zettel notes.

            Args:
                path: Vault-relative path of the source note
                merge_policy: What to do when an idea closely matches an
                    existing Zettel: "create" a new note anyway, or "merge"
                    it into the existing one
            """
            with timed_operation("zk_extract_zettels", path=path) as op:
                try:
                    decide = MERGE_POLICIES.get(merge_policy.strip().lower())
                    if decide is None:
                        return (
                            f"Invalid merge_policy: '{merge_policy}'. "
                            f"Use: {', '.join(MERGE_POLICIES)}"
                        )
                    with self._worker_lock:
                        outcomes = self.organizer.extract_zettels(path, decide)
                    op["result_count"] = len(outcomes)

                    if not outcomes:
                        return f"No Zettel ideas found in '{path}'"

                    output = f"Processed {len(outcomes)} ideas from '{path}':\n\n"
                    for outcome in outcomes:
                        title = outcome.candidate.title
                        if outcome.action == CommitAction.FAILED:
                            output += f"- FAILED {title}: {outcome.error}\n"
                            continue
                        output += f"- {outcome.action.value} {outcome.path}"
                        if outcome.linked:
                            output += f" (linked with {len(outcome.linked)})"
                        output += "\n"
                    return output.rstrip()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_classify_note")
        def zk_classify_note(path: str) -> str:
            """Classify a note into a project, the library or the archive and move it.

            Args:
                path: Vault-relative path of the note
            """
            with timed_operation("zk_classify_note", path=path):
                try:
                    with self._worker_lock:
                        outcome = self.organizer.classify_note(path)
                    result = outcome.result
                    output = f"Classified '{result.title}' as {result.target_type.value}\n"
                    if result.project_name:
                        output += f"Project: {result.project_name}\n"
                    output += f"Moved to: {outcome.path}\n"
                    if result.summary:
                        output += f"Summary: {result.summary}\n"
                    if result.next_action:
                        output += f"Next action: {result.next_action}\n"
                    if outcome.links is not None:
                        links = outcome.links
                        if links.keywords:
                            output += f"Keywords: {', '.join(links.keywords)}\n"
                        if links.project:
                            output += f"Linked from project hub: {links.project}\n"
                        if links.related:
                            output += f"Related notes: {len(links.related)}\n"
                    elif outcome.link_error:
                        output += f"Linking skipped: {outcome.link_error}\n"
                    return output.rstrip()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_split_note")
        def zk_split_note(path: str) -> str:
            """Split a note covering several topics into one note per topic.

            The original note is moved to the archive afterwards.

            Args:
                path: Vault-relative path of the note
            """
            with timed_operation("zk_split_note", path=path) as op:
                try:
                    with self._worker_lock:
                        report = self.organizer.split_note(path)
                    if report.single_topic:
                        return f"'{path}' covers a single topic; nothing to split"
                    op["result_count"] = len(report.created)

                    output = f"Split '{path}' into {len(report.created)} notes:\n\n"
                    for created in report.created:
                        output += f"- {created}\n"
                    if report.archived_path:
                        output += f"\nOriginal archived to: {report.archived_path}\n"
                    for error in report.errors:
                        output += f"Error: {error}\n"
                    return output.rstrip()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_process_inbox")
        def zk_process_inbox() -> str:
            """Classify every inbox note carrying the trigger tag."""
            with timed_operation("zk_process_inbox") as op:
                try:
                    with self._worker_lock:
                        report = self.organizer.process_inbox()
                    op["processed"] = report.processed
                    op["failed"] = report.failed

                    if report.total == 0:
                        return (
                            f"No inbox notes tagged '{self.config.trigger_tag}' "
                            f"in '{self.config.inbox_folder}'"
                        )
                    try:
                        report.raise_if_all_failed("process_inbox")
                        output = (
                            f"Inbox processed: {report.processed} classified, "
                            f"{report.failed} failed\n"
                        )
                    except BulkOperationError as e:
                        logger.error(f"[{e.code.name}] {e.message}")
                        output = f"Error: {e.message}\n"
                    for moved in report.moved:
                        output += f"- {moved}\n"
                    for error in report.errors:
                        output += f"Error: {error}\n"
                    return output.rstrip()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_rebuild_structure_index")
        def zk_rebuild_structure_index() -> str:
            """Regenerate the Zettelkasten index document from all Zettel notes."""
            with timed_operation("zk_rebuild_structure_index") as op:
                try:
                    with self._worker_lock:
                        count = self.structure_index.rebuild()
                    op["count"] = count
                    if count == 0:
                        return "No Zettel notes yet; index not written"
                    return f"Structure index rebuilt with {count} notes: {self.structure_index.path}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_list_projects")
        def zk_list_projects() -> str:
            """List the projects that have a hub document."""
            with timed_operation("zk_list_projects") as op:
                try:
                    hubs = sorted(self.registry.hubs(), key=lambda h: h.project_id.lower())
                    op["count"] = len(hubs)
                    if not hubs:
                        return (
                            "No projects registered yet.\n\n"
                            "Use zk_create_project_hub to create one."
                        )
                    output = f"Projects ({len(hubs)}):\n\n"
                    for hub in hubs:
                        output += f"* {hub.project_id}\n"
                        output += f"  Hub: {hub.path}\n"
                    return output.rstrip()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_create_project_hub")
        def zk_create_project_hub(project_id: str, folder: Optional[str] = None) -> str:
            """Create the hub document of a new project.

            Args:
                project_id: Project identifier (also the hub's title stem)
                folder: Vault folder for the hub (defaults to the projects folder)
            """
            with timed_operation("zk_create_project_hub", project=project_id[:30]):
                try:
                    project_id = project_id.strip()
                    if not project_id:
                        return "Error: project_id must not be empty"
                    with self._worker_lock:
                        hub = self.registry.create_hub(
                            project_id, folder or self.config.projects_folder
                        )
                    if hub is None:
                        existing = self.registry.hub_path(project_id)
                        if existing:
                            return f"Project '{project_id}' already has a hub: {existing}"
                        return f"A document already exists at the hub path for '{project_id}'"
                    return f"Project hub created: {hub.path}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_focus")
        def zk_focus() -> str:
            """Recommend the top 3 projects to focus on now, with a next step each."""
            with timed_operation("zk_focus") as op:
                try:
                    items = self.organizer.focus_projects()
                    op["result_count"] = len(items)
                    if not items:
                        return (
                            f"No projects to recommend in '{self.config.projects_folder}'"
                        )
                    output = "Focus now:\n\n"
                    for i, item in enumerate(items, 1):
                        output += f"{i}. {item.title}\n"
                        if item.why:
                            output += f"   Why: {item.why}\n"
                        if item.next_action:
                            output += f"   Next: {item.next_action}\n"
                    return output.rstrip()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_status")
        def zk_status(sections: str = "all") -> str:
            """Get a status dashboard.

            Args:
                sections: Comma-separated sections to include:
                    - "summary": Document counts
                    - "config": Folders, ID scheme and thresholds
                    - "metrics": Server performance metrics
                    - "all": Include all sections (default)
            """
            with timed_operation("zk_status"):
                try:
                    requested = set(s.strip().lower() for s in sections.split(","))
                    include_all = "all" in requested

                    output = "# Zero Friction Brain Status\n\n"

                    if include_all or "summary" in requested:
                        output += "## Summary\n"
                        output += f"**Version:** {self.config.server_version}\n"
                        output += f"**Documents:** {len(self.index)}\n"
                        output += f"**Zettel notes:** {self.index.zettel_count()}\n"
                        output += f"**Projects:** {len(self.registry.project_ids())}\n"
                        output += f"**Classifier calls:** {self.classifier.call_count}\n\n"

                    if include_all or "config" in requested:
                        output += "## Config\n"
                        output += f"**Vault:** {self.config.vault_dir}\n"
                        output += f"**Inbox:** {self.config.inbox_folder}\n"
                        output += f"**Zettel folder:** {self.config.zettel_folder}\n"
                        output += f"**ID scheme:** {self.config.zk_id_type.value}\n"
                        output += f"**Merge threshold:** {self.config.zk_merge_threshold:.2f}\n"
                        output += f"**Trigger tag:** {self.config.trigger_tag}\n"
                        output += f"**Auto watch:** {'On' if self._watch else 'Off'}\n\n"

                    if include_all or "metrics" in requested:
                        summary = metrics.get_summary()
                        output += "## Metrics\n"
                        output += f"**Uptime:** {summary['uptime_seconds']:.0f}s\n"
                        output += f"**Operations:** {summary['total_operations']}"
                        output += f" ({summary['total_errors']} errors)\n"
                        for name, m in sorted(metrics.get_metrics().items()):
                            output += (
                                f"  - {name}: {m['count']} calls, "
                                f"avg {m['avg_duration_ms']}ms"
                            )
                            if m["error_count"]:
                                output += f", {m['error_count']} errors"
                                if m["last_error_code"]:
                                    output += f" (last: {m['last_error_code']})"
                            output += "\n"

                    return output.rstrip()
                except Exception as e:
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
