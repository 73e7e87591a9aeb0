"""Data models for the Zero Friction Brain MCP server."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, Field, field_validator

from zbrain_mcp.utils import base_name, unique_keywords


class NoteKind(str, Enum):
    """Kinds of documents the engine distinguishes (metadata ``type`` key)."""

    PLAIN = "plain"  # Any note without a recognized type
    ZETTEL = "zettel"  # Atomic Zettelkasten note
    ZK_INDEX = "zk-index"  # The derived structure index document
    PROJECT_HUB = "project-moc"  # Project map of content

    @classmethod
    def from_metadata(cls, value: object) -> "NoteKind":
        """Map a metadata ``type`` value to a kind; unknown values are PLAIN."""
        if isinstance(value, str):
            normalized = value.strip().lower()
            for kind in cls:
                if kind.value == normalized:
                    return kind
        return cls.PLAIN


class ConnectionType(str, Enum):
    """How a related note connects to the note it was found for."""

    EXPANSION = "expansion"
    REBUTTAL = "rebuttal"
    EXAMPLE = "example"
    PREMISE = "premise"
    APPLICATION = "application"
    UNSPECIFIED = "unspecified"

    @classmethod
    def parse(cls, label: object) -> "ConnectionType":
        """Parse a classifier label; anything unrecognized is UNSPECIFIED."""
        if isinstance(label, str):
            normalized = label.strip().lower()
            for connection in cls:
                if connection.value == normalized:
                    return connection
        return cls.UNSPECIFIED


class IdScheme(str, Enum):
    """Numbering schemes for new Zettel notes."""

    TIMESTAMP = "timestamp"  # Milliseconds since the epoch
    DATE_SEQUENCE = "date-sequence"  # YYYYMMDD-NNN
    LUHMANN = "luhmann"  # Alternating digit/letter positions


class TargetType(str, Enum):
    """Where the classifier sends a note."""

    PROJECT = "project"
    LIBRARY = "library"
    ARCHIVE = "archive"

    @classmethod
    def parse(cls, value: object) -> "TargetType":
        """Parse a classifier label, defaulting to LIBRARY."""
        if isinstance(value, str):
            normalized = value.strip().lower()
            for target in cls:
                if target.value == normalized:
                    return target
        return cls.LIBRARY


class NoteRecord(BaseModel):
    """Lightweight metadata of one document, owned by the note index."""

    path: str = Field(..., description="Store-relative path, unique key")
    title: str = Field(..., description="Title from metadata or file name")
    keywords: List[str] = Field(
        default_factory=list, description="Ordered, de-duplicated keywords"
    )
    kind: NoteKind = Field(default=NoteKind.PLAIN, description="Document kind")
    project: Optional[str] = Field(default=None, description="Owning project")

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("keywords", mode="before")
    @classmethod
    def normalize_keywords(cls, v: object) -> List[str]:
        """Keep keywords as an ordered set of strings."""
        if v is None:
            return []
        if isinstance(v, (str, int, float)):
            v = [v]
        return unique_keywords(v)

    @property
    def link_name(self) -> str:
        """Name used in wiki links to this document."""
        return base_name(self.path)

    @property
    def zettel_id(self) -> str:
        """Identifier prefix of the file name (``<ID> <title>.md``)."""
        name = self.link_name.strip()
        return name.split()[0] if name else ""

    @property
    def is_zettel(self) -> bool:
        return self.kind == NoteKind.ZETTEL


@dataclass
class RelatedNoteResult:
    """One related note found by the hybrid search (never stored)."""

    target: NoteRecord
    relevance: float
    matched_keywords: Set[str] = field(default_factory=set)
    reason: str = ""
    connection_type: ConnectionType = ConnectionType.UNSPECIFIED

    @property
    def relevance_percent(self) -> int:
        return round(self.relevance * 100)


@dataclass
class RelatednessScore:
    """Classifier verdict for one candidate, indexing into the supplied list."""

    index: int
    relevance: float
    reason: str = ""
    connection_type: ConnectionType = ConnectionType.UNSPECIFIED


class ZkCandidate(BaseModel):
    """An atomic idea proposed by the classifier for a new Zettel note."""

    title: str = Field(..., description="One-sentence title of the idea")
    body: str = Field(default="", description="Explanation of the idea")
    keywords: List[str] = Field(default_factory=list, description="Ordered keywords")
    importance: Optional[str] = Field(default=None, description="Why it matters")
    related_concepts: List[str] = Field(
        default_factory=list, description="Concepts it could connect to"
    )

    @field_validator("keywords", mode="before")
    @classmethod
    def normalize_keywords(cls, v: object) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        return unique_keywords(v)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v.strip()


class ProjectHub(BaseModel):
    """A project map-of-content document tracked by the registry."""

    path: str = Field(..., description="Store path of the hub document")
    title: str = Field(..., description="Hub title")
    project_id: str = Field(..., description="Unique project identifier")

    model_config = {"frozen": True}


@dataclass(frozen=True)
class ProjectDetection:
    """Outcome of asking which project a note belongs to.

    Exactly one of three shapes: an existing ``project_id``, a proposed
    ``new_project_name``, or neither (no project).
    """

    project_id: Optional[str] = None
    new_project_name: Optional[str] = None

    @classmethod
    def none(cls) -> "ProjectDetection":
        return cls()

    @classmethod
    def existing(cls, project_id: str) -> "ProjectDetection":
        return cls(project_id=project_id)

    @classmethod
    def new(cls, name: str) -> "ProjectDetection":
        return cls(new_project_name=name)

    @property
    def is_new(self) -> bool:
        return self.new_project_name is not None

    @property
    def is_none(self) -> bool:
        return self.project_id is None and self.new_project_name is None


class ClassifyResult(BaseModel):
    """Destination decided by the classifier for an inbox note."""

    target_type: TargetType = TargetType.LIBRARY
    project_name: Optional[str] = None
    is_new_project: bool = False
    title: str = "Untitled"
    summary: str = ""
    next_action: Optional[str] = None


class SplitSection(BaseModel):
    """One self-contained section split out of a mixed note."""

    title: str = "Untitled"
    content: str = ""
    target_type: TargetType = TargetType.LIBRARY
    project: Optional[str] = None
    is_new_project: bool = False
    keywords: List[str] = Field(default_factory=list)
    is_atomic: bool = False

    @field_validator("keywords", mode="before")
    @classmethod
    def normalize_keywords(cls, v: object) -> List[str]:
        if not isinstance(v, list):
            return []
        return unique_keywords(v)


@dataclass
class TopicNote:
    """Role of one note inside a topic, as described by the classifier."""

    title: str
    role: str = ""
    relations: List[dict] = field(default_factory=list)


@dataclass
class TopicStructure:
    """Classifier description of one structure-index topic."""

    description: str = ""
    notes: List[TopicNote] = field(default_factory=list)
    related_topics: List[str] = field(default_factory=list)

    def note_for(self, title: str) -> Optional[TopicNote]:
        for note in self.notes:
            if note.title == title:
                return note
        return None


@dataclass(frozen=True)
class FocusItem:
    """A project recommended for attention right now."""

    title: str
    why: str = ""
    next_action: str = ""


class ChangeKind(str, Enum):
    """Kinds of document change notifications."""

    CREATED = "created"
    MODIFIED = "modified"


@dataclass(frozen=True)
class ChangeEvent:
    """A change notification emitted by the document store."""

    path: str
    kind: ChangeKind
