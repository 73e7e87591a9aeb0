"""
Zero Friction Brain - a note organizer and Zettelkasten linker for Markdown vaults.
This package classifies incoming notes into a project hierarchy, extracts atomic
Zettelkasten ideas from longer notes, and keeps a web of bidirectional links
between related notes. It is exposed as a Model Context Protocol (MCP) server.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("zbrain-mcp")
except PackageNotFoundError:
    __version__ = "0.3.0"
