"""Markdown parsing and serialization for vault documents.

Handles conversion between raw markdown with YAML front matter and the
structured ``Document`` edit model. Kept apart from the store so that the
parsing rules are cohesive and independently testable.
"""
import logging
from typing import Any, Dict, List

import frontmatter
import yaml

from zbrain_mcp.exceptions import NoteValidationError
from zbrain_mcp.models.document import Document, Section

logger = logging.getLogger(__name__)

_FENCE_MARKERS = ("```", "~~~")


class MarkdownParser:
    """Parses and serializes vault documents as markdown with front matter."""

    def read_metadata(self, content: str) -> Dict[str, Any]:
        """Parse only the metadata block of a document.

        Returns:
            The metadata mapping (empty when the document has no block).

        Raises:
            NoteValidationError: If the block is not valid YAML or not a mapping.
        """
        try:
            post = frontmatter.loads(content)
        except (yaml.YAMLError, ValueError, TypeError) as e:
            raise NoteValidationError(
                f"Malformed metadata block: {e}", field="frontmatter"
            ) from e
        if not isinstance(post.metadata, dict):
            raise NoteValidationError(
                "Metadata block is not a mapping", field="frontmatter"
            )
        return dict(post.metadata)

    def parse(self, content: str) -> Document:
        """Parse a document into metadata, preamble and level-2 sections.

        Raises:
            NoteValidationError: If the metadata block is malformed. Editing
                such a document would silently drop its metadata, so callers
                must skip it instead.
        """
        try:
            post = frontmatter.loads(content)
        except (yaml.YAMLError, ValueError, TypeError) as e:
            raise NoteValidationError(
                f"Malformed metadata block: {e}", field="frontmatter"
            ) from e

        preamble, sections = self._split_sections(post.content)
        return Document(
            metadata=dict(post.metadata),
            preamble=preamble,
            sections=sections,
        )

    def render(self, document: Document) -> str:
        """Serialize a document back to markdown with front matter.

        Blank-line padding around sections is normalized to exactly one
        blank line between blocks.
        """
        blocks: List[str] = []
        preamble = self._trim_blank(document.preamble)
        if preamble:
            blocks.append("\n".join(preamble))
        for section in document.sections:
            lines = self._trim_blank(section.lines)
            block = f"## {section.heading}"
            if lines:
                block += "\n" + "\n".join(lines)
            blocks.append(block)
        body = "\n\n".join(blocks)

        if not document.metadata:
            return body + "\n"

        post = frontmatter.Post(body, **document.metadata)
        return frontmatter.dumps(post, sort_keys=False) + "\n"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _split_sections(body: str) -> "tuple[List[str], List[Section]]":
        """Split a body into the preamble and its ``## `` sections.

        Headings inside fenced code blocks are not section boundaries.
        """
        preamble: List[str] = []
        sections: List[Section] = []
        current = None
        in_fence = False

        for line in body.splitlines():
            stripped = line.strip()
            if stripped.startswith(_FENCE_MARKERS):
                in_fence = not in_fence
            if not in_fence and line.startswith("## "):
                current = Section(heading=line[3:].strip())
                sections.append(current)
                continue
            if current is None:
                preamble.append(line)
            else:
                current.lines.append(line)

        return preamble, sections

    @staticmethod
    def _trim_blank(lines: List[str]) -> List[str]:
        start, end = 0, len(lines)
        while start < end and not lines[start].strip():
            start += 1
        while end > start and not lines[end - 1].strip():
            end -= 1
        return [line.rstrip() for line in lines[start:end]]
