"""The Zettelkasten structure index: one derived entry-point document.

The document lists the most recently added Zettel notes and groups all of
them by topic (their primary keyword). It is patched as notes are created
and can be regenerated from the note index at any time.
"""
import datetime
import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

from zbrain_mcp.exceptions import ClassifierError
from zbrain_mcp.models.document import Document, Section, link_targets
from zbrain_mcp.models.schema import NoteKind, NoteRecord, TopicStructure
from zbrain_mcp.observability import traced
from zbrain_mcp.services.classifier import ClassifierGateway
from zbrain_mcp.storage.note_index import NoteIndex
from zbrain_mcp.utils import base_name, join_path, utc_now, wikilink

logger = logging.getLogger(__name__)

INDEX_FILE_NAME = "ZK Index.md"
INDEX_TITLE = "Zettelkasten Index"
RECENT_HEADING = "Recently added"
TOPICS_HEADING = "By topic"
DEFAULT_TOPIC = "Misc"
MAX_RECENT = 10
# Topics need this many notes before the classifier describes them
MIN_NOTES_FOR_STRUCTURE = 2

_TIMESTAMP_ID = re.compile(r"(\d{13})")
_DATE_SEQUENCE_ID = re.compile(r"(\d{8})-\d{3,}")

_RELATION_SYMBOLS = {"develops": "→", "builds-on": "←"}


def infer_created(path: str, now: datetime.datetime) -> datetime.datetime:
    """Creation time of a Zettel inferred from the identifier in its path."""
    match = _TIMESTAMP_ID.search(path)
    if match:
        return datetime.datetime.fromtimestamp(
            int(match.group(1)) / 1000, tz=datetime.timezone.utc
        )
    match = _DATE_SEQUENCE_ID.search(path)
    if match:
        try:
            return datetime.datetime.strptime(match.group(1), "%Y%m%d").replace(
                tzinfo=datetime.timezone.utc
            )
        except ValueError:
            pass
    return now


def primary_topic(keywords: List[str]) -> str:
    return keywords[0] if keywords else DEFAULT_TOPIC


class StructureIndex:
    """Maintains ``<zettel folder>/ZK Index.md``."""

    def __init__(
        self,
        index: NoteIndex,
        zettel_folder: str,
        classifier: Optional[ClassifierGateway] = None,
        clock: Callable[[], datetime.datetime] = utc_now,
    ):
        self.index = index
        self.store = index.store
        self.parser = index.parser
        self.zettel_folder = zettel_folder
        self.classifier = classifier
        self._clock = clock

    @property
    def path(self) -> str:
        return join_path(self.zettel_folder, INDEX_FILE_NAME)

    def add_note(self, note_path: str, keywords: List[str]) -> None:
        """Patch the index with a newly created Zettel note."""
        name = base_name(note_path)
        topic = primary_topic(keywords)

        if self.store.exists(self.path):
            document = self.parser.parse(self.store.read(self.path))
        else:
            document = self._empty_document()

        recent = document.ensure_section(RECENT_HEADING)
        entries = [
            line for line in recent.lines
            if line.startswith("- ") and name not in link_targets(line)
        ]
        recent.lines = ([f"- {wikilink(name)}"] + entries)[:MAX_RECENT]

        self._add_to_topic(document.ensure_section(TOPICS_HEADING), topic, name)

        document.metadata["type"] = NoteKind.ZK_INDEX.value
        document.metadata["updated"] = self._clock().isoformat()
        self.store.write(self.path, self.parser.render(document))
        self.index.upsert(self.path)
        logger.debug(f"Structure index patched with {name} under '{topic}'")

    @traced("rebuild_structure_index")
    def rebuild(self) -> int:
        """Regenerate the whole document from the Zettel notes in the index.

        Returns:
            Number of Zettel notes listed; 0 leaves the document untouched.
        """
        zettels = sorted(self.index.zettels(), key=lambda r: r.path)
        if not zettels:
            return 0

        now = self._clock()
        topics: Dict[str, List[NoteRecord]] = {}
        dated: List[Tuple[datetime.datetime, NoteRecord]] = []
        for record in zettels:
            topics.setdefault(primary_topic(record.keywords), []).append(record)
            dated.append((infer_created(record.path, now), record))
        dated.sort(key=lambda item: item[0], reverse=True)

        document = self._empty_document()
        recent = document.section(RECENT_HEADING)
        recent.lines = [f"- {wikilink(r.link_name)}" for _, r in dated[:MAX_RECENT]]

        topic_lines: List[str] = []
        for topic, records in topics.items():
            structure = self._topic_structure(topic, records)
            topic_lines.extend(self._render_topic(topic, records, structure))
        document.section(TOPICS_HEADING).lines = topic_lines

        self.store.write(self.path, self.parser.render(document))
        self.index.upsert(self.path)
        logger.info(f"Structure index rebuilt: {len(zettels)} notes, {len(topics)} topics")
        return len(zettels)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _empty_document(self) -> Document:
        return Document(
            metadata={
                "type": NoteKind.ZK_INDEX.value,
                "updated": self._clock().isoformat(),
            },
            preamble=[f"# {INDEX_TITLE}"],
            sections=[Section(RECENT_HEADING), Section(TOPICS_HEADING)],
        )

    @staticmethod
    def _add_to_topic(section: Section, topic: str, name: str) -> None:
        header = f"### {topic}"
        lines = section.lines
        if header not in lines:
            lines[0:0] = [header, f"- {wikilink(name)}", ""]
            return

        start = lines.index(header) + 1
        end = start
        while end < len(lines) and not lines[end].startswith("### "):
            end += 1
        block = lines[start:end]
        if any(name in link_targets(line) for line in block):
            return
        # After the last link of the block
        insert_at = start
        for offset, line in enumerate(block):
            if line.startswith("- "):
                insert_at = start + offset + 1
        lines.insert(insert_at, f"- {wikilink(name)}")

    def _topic_structure(self, topic: str, records: List[NoteRecord]) -> Optional[TopicStructure]:
        if self.classifier is None or len(records) < MIN_NOTES_FOR_STRUCTURE:
            return None
        notes = [f"{r.title} (keywords: {', '.join(r.keywords)})" for r in records]
        try:
            return self.classifier.generate_topic_structure(topic, notes)
        except ClassifierError as e:
            logger.error(f"Topic structure generation failed for '{topic}': {e}")
            return None

    @staticmethod
    def _render_topic(
        topic: str,
        records: List[NoteRecord],
        structure: Optional[TopicStructure],
    ) -> List[str]:
        lines = [f"### {topic}"]
        if structure and structure.description:
            lines.extend([structure.description, ""])
        lines.append("**Key notes:**")
        for record in records:
            info = structure.note_for(record.title) if structure else None
            role = f" - {info.role}" if info and info.role else ""
            lines.append(f"- {wikilink(record.link_name)}{role}")
            for relation in info.relations if info else []:
                target = relation.get("target")
                if not target:
                    continue
                symbol = _RELATION_SYMBOLS.get(str(relation.get("type", "")).lower(), "↔")
                lines.append(f"  {symbol} {target}")
        if structure and structure.related_topics:
            lines.extend(["", f"**Related topics:** {', '.join(structure.related_topics)}"])
        lines.append("")
        return lines
