"""Storage layer for the Zero Friction Brain MCP server."""

from zbrain_mcp.storage.document_store import DocumentStore, FileSystemStore
from zbrain_mcp.storage.markdown_parser import MarkdownParser
from zbrain_mcp.storage.note_index import NoteIndex
from zbrain_mcp.storage.project_registry import ProjectHubRegistry

__all__ = [
    "DocumentStore",
    "FileSystemStore",
    "MarkdownParser",
    "NoteIndex",
    "ProjectHubRegistry",
]
