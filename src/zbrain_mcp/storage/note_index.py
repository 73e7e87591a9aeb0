"""In-memory index of document metadata."""
import logging
import threading
from typing import Callable, Dict, Iterator, List, Optional, Set

from zbrain_mcp.exceptions import NoteValidationError, StorageError
from zbrain_mcp.models.schema import NoteKind, NoteRecord
from zbrain_mcp.observability import traced
from zbrain_mcp.storage.document_store import DocumentStore
from zbrain_mcp.storage.markdown_parser import MarkdownParser
from zbrain_mcp.utils import base_name

logger = logging.getLogger(__name__)

RecordPredicate = Callable[[NoteRecord], bool]


class IndexView:
    """Lazy, restartable view over the records matching a predicate.

    Every iteration takes a fresh snapshot of the index, so a view obtained
    before an update reflects that update when iterated again.
    """

    def __init__(self, index: "NoteIndex", predicate: Optional[RecordPredicate] = None):
        self._index = index
        self._predicate = predicate

    def __iter__(self) -> Iterator[NoteRecord]:
        for record in self._index._snapshot():
            if self._predicate is None or self._predicate(record):
                yield record


class NoteIndex:
    """Mapping from document path to ``NoteRecord``.

    The index is the only owner of note records. Collaborators receive it
    explicitly and read through ``get``/``query``; mutation happens through
    ``rebuild``, ``upsert`` and ``remove`` after the underlying document
    write has succeeded.
    """

    def __init__(self, store: DocumentStore, parser: Optional[MarkdownParser] = None):
        self.store = store
        self.parser = parser or MarkdownParser()
        self._records: Dict[str, NoteRecord] = {}
        self._lock = threading.RLock()

    @traced("rebuild_index")
    def rebuild(self) -> int:
        """Clear and repopulate the index from every document in the store.

        Returns:
            Number of indexed documents.
        """
        records: Dict[str, NoteRecord] = {}
        for path in self.store.list():
            try:
                content = self.store.read(path)
            except StorageError as e:
                logger.warning(f"Indexing {path} with defaults, read failed: {e}")
                content = ""
            records[path] = self._derive(path, content)

        with self._lock:
            self._records = records
        logger.info(f"Note index rebuilt: {len(records)} documents")
        return len(records)

    def upsert(self, path: str) -> NoteRecord:
        """Re-derive the record of one document and replace it.

        Raises:
            DocumentNotFoundError: If the document no longer exists.
        """
        record = self._derive(path, self.store.read(path))
        with self._lock:
            self._records[path] = record
        return record

    def remove(self, path: str) -> bool:
        """Remove a record; returns False if the path was not indexed."""
        with self._lock:
            return self._records.pop(path, None) is not None

    def get(self, path: str) -> Optional[NoteRecord]:
        with self._lock:
            return self._records.get(path)

    def query(self, predicate: Optional[RecordPredicate] = None) -> IndexView:
        """Records matching ``predicate`` (all records when omitted).

        No enumeration order is guaranteed.
        """
        return IndexView(self, predicate)

    def zettels(self) -> List[NoteRecord]:
        return list(self.query(lambda record: record.is_zettel))

    def zettel_count(self) -> int:
        return sum(1 for _ in self.query(lambda record: record.is_zettel))

    def zettel_ids(self) -> Set[str]:
        """Identifiers of all Zettel-kind documents currently indexed."""
        return {record.zettel_id for record in self.zettels() if record.zettel_id}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._records

    def _snapshot(self) -> List[NoteRecord]:
        with self._lock:
            return list(self._records.values())

    def _derive(self, path: str, content: str) -> NoteRecord:
        """Build a record from a document's metadata block.

        A malformed block yields default values instead of an error.
        """
        try:
            metadata = self.parser.read_metadata(content)
        except NoteValidationError as e:
            logger.warning(f"Malformed metadata in {path}, using defaults: {e.message}")
            metadata = {}

        title = metadata.get("title")
        if not isinstance(title, str) or not title.strip():
            title = base_name(path)

        keywords = metadata.get("keywords")
        if isinstance(keywords, (list, tuple)):
            keywords = [k for k in keywords if isinstance(k, (str, int, float))]
        elif not isinstance(keywords, (str, int, float)):
            keywords = []

        project = metadata.get("project")
        if project is not None and not isinstance(project, str):
            project = str(project)

        return NoteRecord(
            path=path,
            title=title.strip(),
            keywords=keywords,
            kind=NoteKind.from_metadata(metadata.get("type")),
            project=project.strip() if project and project.strip() else None,
        )
