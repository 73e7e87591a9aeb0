"""Utility functions for the Zero Friction Brain MCP server."""
import datetime
import re
from datetime import timezone
from typing import Iterable, List

# Characters a vault file name cannot carry
_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|#\[\]]')
_WHITESPACE_RUN = re.compile(r"\s+")


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def sanitize_file_name(name: str, max_length: int = 100) -> str:
    """Make a note title usable as a vault file name.

    Unsafe characters become underscores, whitespace runs collapse to a
    single space, and the result is trimmed to ``max_length``.

    Examples:
        "Sensor: calibration?" -> "Sensor_ calibration_"
        "  many   spaces " -> "many spaces"
    """
    if not name:
        return ""
    result = _UNSAFE_FILENAME_CHARS.sub("_", name)
    result = _WHITESPACE_RUN.sub(" ", result).strip()
    return result[:max_length].strip()


def base_name(path: str) -> str:
    """Return the file name of a store path without its ``.md`` extension.

    This is also the target of a wiki link to that document.
    """
    name = path.rsplit("/", 1)[-1]
    if name.lower().endswith(".md"):
        name = name[:-3]
    return name


def parent_folder(path: str) -> str:
    """Return the folder part of a store path ('' for top-level documents)."""
    if "/" not in path:
        return ""
    return path.rsplit("/", 1)[0]


def join_path(folder: str, name: str) -> str:
    """Join a store folder and a file name with POSIX separators."""
    folder = folder.strip("/")
    return f"{folder}/{name}" if folder else name


def wikilink(target: str) -> str:
    """Format a wiki link to a document name."""
    return f"[[{target}]]"


def unique_keywords(keywords: Iterable[object]) -> List[str]:
    """Normalize keywords into an ordered set of non-empty strings.

    Insertion order is preserved and exact duplicates are dropped.
    """
    seen = set()
    result: List[str] = []
    for item in keywords:
        if item is None:
            continue
        keyword = str(item).strip()
        if keyword and keyword not in seen:
            seen.add(keyword)
            result.append(keyword)
    return result


def truncate_content(content: str, max_chars: int) -> str:
    """Truncate content sent to the classifier to stay within token limits."""
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + "\n\n[... truncated ...]"
