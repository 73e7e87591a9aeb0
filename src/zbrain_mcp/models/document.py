"""Structured edit model for vault documents.

A document is a metadata mapping (the YAML front matter), a preamble (the
text before the first ``## `` heading, usually the ``# Title`` line) and an
ordered list of level-2 sections. Edits mutate this model and
``MarkdownParser.render`` serializes it back, so there is always exactly one
metadata block and link lists stay de-duplicated.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from zbrain_mcp.utils import unique_keywords

# [[target]], [[target|alias]] and [[target#heading]] all point at ``target``
WIKILINK_PATTERN = re.compile(r"\[\[([^\]|#]+)(?:[#|][^\]]*)?\]\]")

# Section headings the engine writes
LINKED_NOTES_HEADING = "Linked notes"
RELATED_NOTES_HEADING = "Related notes"


def link_targets(text: str) -> List[str]:
    """Return the wiki-link targets in ``text`` in order of appearance."""
    return [m.group(1).strip() for m in WIKILINK_PATTERN.finditer(text)]


@dataclass
class Section:
    """A level-2 section: its heading text and the lines below it."""

    heading: str
    lines: List[str] = field(default_factory=list)

    def matches(self, heading: str) -> bool:
        return self.heading.strip().lower() == heading.strip().lower()

    def links(self) -> List[str]:
        targets: List[str] = []
        for line in self.lines:
            targets.extend(link_targets(line))
        return targets

    def has_link(self, target: str) -> bool:
        return target in self.links()

    def add_link_entry(self, target: str, entry_lines: List[str]) -> bool:
        """Append a link entry unless the section already links to ``target``.

        Returns:
            True if the entry was added, False if it was already present.
        """
        if self.has_link(target):
            return False
        # Keep the list contiguous: drop trailing blanks before appending
        while self.lines and not self.lines[-1].strip():
            self.lines.pop()
        self.lines.extend(entry_lines)
        return True

    def remove_link_entry(self, target: str) -> bool:
        """Remove the entry linking to ``target`` along with its indented lines."""
        for start, line in enumerate(self.lines):
            if line.startswith("- ") and target in link_targets(line):
                end = start + 1
                while end < len(self.lines) and self.lines[end].startswith("  "):
                    end += 1
                del self.lines[start:end]
                return True
        return False


@dataclass
class Document:
    """A parsed vault document."""

    metadata: Dict[str, Any] = field(default_factory=dict)
    preamble: List[str] = field(default_factory=list)
    sections: List[Section] = field(default_factory=list)

    # -- sections ---------------------------------------------------------

    def section(self, heading: str) -> Optional[Section]:
        """Find the first section with the given heading (case-insensitive)."""
        for section in self.sections:
            if section.matches(heading):
                return section
        return None

    def ensure_section(self, heading: str) -> Section:
        """Return the section with ``heading``, appending it if missing."""
        existing = self.section(heading)
        if existing is not None:
            return existing
        created = Section(heading=heading)
        self.sections.append(created)
        return created

    def insert_section_before(self, new_section: Section, before_heading: str) -> None:
        """Insert ``new_section`` ahead of ``before_heading``, or at the end."""
        for position, section in enumerate(self.sections):
            if section.matches(before_heading):
                self.sections.insert(position, new_section)
                return
        self.sections.append(new_section)

    def replace_section(self, new_section: Section) -> None:
        """Replace the section with the same heading, or append it."""
        for position, section in enumerate(self.sections):
            if section.matches(new_section.heading):
                self.sections[position] = new_section
                return
        self.sections.append(new_section)

    # -- links ------------------------------------------------------------

    def links(self) -> List[str]:
        """All wiki-link targets in the body, in document order."""
        targets: List[str] = []
        for line in self.preamble:
            targets.extend(link_targets(line))
        for section in self.sections:
            targets.extend(link_targets(section.heading))
            targets.extend(section.links())
        return targets

    def links_to(self, target: str) -> bool:
        return target in self.links()

    # -- metadata ---------------------------------------------------------

    @property
    def keywords(self) -> List[str]:
        value = self.metadata.get("keywords")
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return unique_keywords(value)
        return unique_keywords([value])

    @keywords.setter
    def keywords(self, keywords: List[str]) -> None:
        self.metadata["keywords"] = unique_keywords(keywords)

    def merge_keywords(self, new_keywords: List[str]) -> List[str]:
        """Merge keywords: existing first, then unseen new ones, in order."""
        merged = unique_keywords(list(self.keywords) + list(new_keywords))
        self.metadata["keywords"] = merged
        return merged

    @property
    def title(self) -> Optional[str]:
        """Title from metadata, falling back to the first ``# `` heading."""
        value = self.metadata.get("title")
        if isinstance(value, str) and value.strip():
            return value.strip()
        for line in self.preamble:
            if line.startswith("# "):
                return line[2:].strip()
        return None
