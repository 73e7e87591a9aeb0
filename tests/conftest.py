"""Common test fixtures for the Zero Friction Brain MCP server."""

from pathlib import Path
from typing import Iterable, Optional

import pytest

from tests.fakes import ManualClock, ScriptedBackend
from zbrain_mcp.config import config
from zbrain_mcp.models.document import Document, Section
from zbrain_mcp.services.classifier import ClassifierGateway
from zbrain_mcp.services.related_search import HybridSearch
from zbrain_mcp.storage.document_store import FileSystemStore
from zbrain_mcp.storage.markdown_parser import MarkdownParser
from zbrain_mcp.storage.note_index import NoteIndex
from zbrain_mcp.storage.project_registry import ProjectHubRegistry

ZETTEL_FOLDER = "10 Zettelkasten"


@pytest.fixture
def vault_dir(tmp_path) -> Path:
    """Create an empty vault directory."""
    vault = tmp_path / "vault"
    vault.mkdir()
    return vault


@pytest.fixture
def test_config(vault_dir, monkeypatch):
    """Configure with test paths and no pacing (auto-restored even on crash)."""
    monkeypatch.setattr(config, "vault_dir", vault_dir)
    monkeypatch.setattr(config, "bulk_pacing_delay", 0.0)
    monkeypatch.setattr(config, "classifier_min_delay", 0.0)
    monkeypatch.setattr(config, "classifier_initial_backoff", 0.0)
    monkeypatch.setattr(config, "debounce_seconds", 0.05)
    monkeypatch.setattr(config, "gemini_api_key", None)
    monkeypatch.setattr(config, "trigger_tag", "#done")
    monkeypatch.setattr(config, "inbox_folder", "00 Inbox")
    yield config


@pytest.fixture
def store(vault_dir):
    return FileSystemStore(vault_dir)


@pytest.fixture
def parser():
    return MarkdownParser()


@pytest.fixture
def index(store):
    return NoteIndex(store)


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def gateway(backend, clock):
    """Classifier gateway over the scripted backend, never really sleeping."""
    return ClassifierGateway(backend, min_delay=0.0, sleep=clock.sleep, clock=clock)


@pytest.fixture
def registry(index, gateway):
    return ProjectHubRegistry(index, gateway)


@pytest.fixture
def search(index, gateway):
    return HybridSearch(index, gateway)


@pytest.fixture
def write_note(store, index, parser):
    """Write a note into the vault and index it.

    Returns a function ``write_note(path, title=None, keywords=None,
    kind=None, project=None, body="", sections=None)`` giving back the path.
    """

    def _write(
        path: str,
        title: Optional[str] = None,
        keywords: Optional[Iterable[str]] = None,
        kind: Optional[str] = None,
        project: Optional[str] = None,
        body: str = "",
        sections: Optional[list] = None,
    ) -> str:
        metadata = {}
        if title is not None:
            metadata["title"] = title
        if keywords is not None:
            metadata["keywords"] = list(keywords)
        if kind is not None:
            metadata["type"] = kind
        if project is not None:
            metadata["project"] = project
        document = Document(
            metadata=metadata,
            preamble=[f"# {title}"] if title else [],
            sections=list(sections or []),
        )
        text = parser.render(document)
        if body:
            text = text + "\n" + body + "\n"
        store.write(path, text)
        index.upsert(path)
        return path

    return _write


@pytest.fixture
def write_zettel(write_note):
    """Write a Zettel note into the Zettelkasten folder."""

    def _write(name: str, keywords: Iterable[str], title: Optional[str] = None, body: str = "") -> str:
        return write_note(
            f"{ZETTEL_FOLDER}/{name}.md",
            title=title or name,
            keywords=keywords,
            kind="zettel",
            sections=[Section("Core idea", [body or f"About {name}."])],
        )

    return _write
