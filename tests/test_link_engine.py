# tests/test_link_engine.py
"""Tests for merge-or-create commits and bidirectional linking."""
import datetime

import pytest

from tests.conftest import ZETTEL_FOLDER
from tests.fakes import RELATEDNESS, score_by_word
from zbrain_mcp.exceptions import DocumentNotFoundError, NoteNotFoundError
from zbrain_mcp.models.document import LINKED_NOTES_HEADING
from zbrain_mcp.models.schema import NoteKind, RelatedNoteResult, ZkCandidate
from zbrain_mcp.services.id_allocator import DateSequenceAllocator
from zbrain_mcp.services.link_engine import (
    CONTEXT_HEADING,
    CORE_IDEA_HEADING,
    IMPORTANCE_HEADING,
    CommitAction,
    MergeLinkEngine,
    always_merge,
    build_zettel_document,
    link_entry,
)
from zbrain_mcp.services.structure_index import StructureIndex
from zbrain_mcp.utils import base_name

DRIFT = "20260101-001 Drift"
DRIFT_PATH = f"{ZETTEL_FOLDER}/{DRIFT}.md"


class DecisionRecorder:
    def __init__(self, answer: bool):
        self.answer = answer
        self.calls = []

    def __call__(self, candidate, match):
        self.calls.append((candidate.title, match.target.path, match.relevance))
        return self.answer


@pytest.fixture
def engine_sleeps():
    return []


@pytest.fixture
def engine(index, search, engine_sleeps):
    allocator = DateSequenceAllocator(index, today=lambda: datetime.date(2026, 1, 2))
    return MergeLinkEngine(
        index,
        search,
        allocator,
        zettel_folder=ZETTEL_FOLDER,
        merge_threshold=0.8,
        sleep=engine_sleeps.append,
    )


def candidate(title="Sensors need recalibration", keywords=("sensor",)):
    return ZkCandidate(
        title=title,
        body="Drift accumulates, so sensors need periodic recalibration.",
        keywords=list(keywords),
        importance="Accuracy of the farm data depends on it",
        related_concepts=["drift", "maintenance"],
    )


class TestMergeDecision:
    def test_relevance_above_threshold_asks_for_decision(self, engine, backend, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        backend.on(RELATEDNESS, score_by_word({"Drift": 0.85}))
        decide = DecisionRecorder(False)

        outcome = engine.commit_candidate(candidate(), "00 Inbox/memo.md", decide)

        assert decide.calls == [("Sensors need recalibration", DRIFT_PATH, 0.85)]
        assert outcome.action == CommitAction.CREATED

    def test_relevance_below_threshold_creates_without_asking(self, engine, backend, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        backend.on(RELATEDNESS, score_by_word({"Drift": 0.79}))
        decide = DecisionRecorder(True)

        outcome = engine.commit_candidate(candidate(), "00 Inbox/memo.md", decide)

        assert decide.calls == []
        assert outcome.action == CommitAction.CREATED

    def test_should_propose_merge_boundary(self, engine, index, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        record = index.get(DRIFT_PATH)
        assert engine.should_propose_merge(RelatedNoteResult(record, 0.8))
        assert not engine.should_propose_merge(RelatedNoteResult(record, 0.79))


class TestCreatePath:
    def test_create_links_both_directions(self, engine, backend, store, parser, index, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        backend.on(RELATEDNESS, score_by_word({"Drift": 0.7}, reason="both about drift"))

        outcome = engine.commit_candidate(candidate(), "00 Inbox/memo.md")

        assert outcome.action == CommitAction.CREATED
        assert outcome.path == f"{ZETTEL_FOLDER}/20260102-001 Sensors need recalibration.md"
        assert outcome.linked == [DRIFT_PATH]

        new_doc = parser.parse(store.read(outcome.path))
        assert new_doc.metadata["type"] == "zettel"
        assert new_doc.metadata["source"] == "[[memo]]"
        linked = new_doc.section(LINKED_NOTES_HEADING)
        assert linked.has_link("memo")
        assert linked.has_link(DRIFT)
        assert "- [[20260101-001 Drift]] (70%)" in linked.lines
        assert "  → both about drift" in linked.lines

        drift_doc = parser.parse(store.read(DRIFT_PATH))
        assert drift_doc.section(LINKED_NOTES_HEADING).has_link(base_name(outcome.path))

        assert index.get(outcome.path).kind == NoteKind.ZETTEL

    def test_related_search_excludes_the_new_note(self, engine, backend, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        backend.on(RELATEDNESS, score_by_word({"Drift": 0.7, "recalibration": 0.95}))

        outcome = engine.commit_candidate(candidate(), "00 Inbox/memo.md")

        assert outcome.linked == [DRIFT_PATH]
        last_prompt = backend.prompts[RELATEDNESS][-1]
        assert "20260102-001" not in last_prompt

    def test_linking_twice_adds_each_link_once(self, engine, backend, store, index, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        backend.on(RELATEDNESS, score_by_word({"Drift": 0.7}))
        outcome = engine.commit_candidate(candidate(), "00 Inbox/memo.md")
        new_name = base_name(outcome.path)

        related = [RelatedNoteResult(index.get(DRIFT_PATH), 0.7, reason="again")]
        assert engine.link_related(outcome.path, related) == [DRIFT_PATH]

        assert store.read(DRIFT_PATH).count(f"[[{new_name}]]") == 1
        assert store.read(outcome.path).count(f"[[{DRIFT}]]") == 1

    def test_add_backlink_is_idempotent(self, engine, store, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        new_path = f"{ZETTEL_FOLDER}/20260102-001 New.md"
        assert engine.add_backlink(DRIFT_PATH, new_path, 0.9, "reason") is True
        assert engine.add_backlink(DRIFT_PATH, new_path, 0.9, "reason") is False
        assert store.read(DRIFT_PATH).count("[[20260102-001 New]]") == 1

    def test_failed_backlink_leaves_relation_out_on_both_sides(
        self, engine, store, index, write_zettel
    ):
        write_zettel(DRIFT, ["sensor"])
        gone = write_zettel("20260101-002 Gone", ["sensor"])
        new = write_zettel("20260102-001 New", ["sensor"])
        gone_record = index.get(gone)
        store.delete(gone)

        linked = engine.link_related(
            new,
            [
                RelatedNoteResult(gone_record, 0.9),
                RelatedNoteResult(index.get(DRIFT_PATH), 0.8),
            ],
        )

        assert linked == [DRIFT_PATH]
        text = store.read(new)
        assert "[[20260101-002 Gone]]" not in text
        assert f"[[{DRIFT}]]" in text

    def test_unwritable_new_note_takes_its_backlinks_back(
        self, engine, store, index, write_zettel
    ):
        write_zettel(DRIFT, ["sensor"])
        keep = write_zettel("20260101-002 Keep", ["sensor"])
        new = write_zettel("20260102-001 New", ["sensor"])
        # Linked before this run; not ours to remove
        engine.add_backlink(keep, new, 0.7, "older link")
        new_record = index.get(new)
        store.delete(new)

        with pytest.raises(DocumentNotFoundError):
            engine.link_related(
                new_record.path,
                [
                    RelatedNoteResult(index.get(DRIFT_PATH), 0.9, reason="drift"),
                    RelatedNoteResult(index.get(keep), 0.8),
                ],
            )

        drift_text = store.read(DRIFT_PATH)
        assert "[[20260102-001 New]]" not in drift_text
        assert "→ drift" not in drift_text
        assert "About 20260101-001 Drift." in drift_text
        assert "[[20260102-001 New]]" in store.read(keep)

    def test_remove_backlink_without_a_link(self, engine, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        assert engine.remove_backlink(DRIFT_PATH, f"{ZETTEL_FOLDER}/20260102-001 New.md") is False

    def test_create_patches_structure_index(self, index, search, backend, store, write_zettel):
        structure = StructureIndex(index, ZETTEL_FOLDER)
        engine = MergeLinkEngine(
            index,
            search,
            DateSequenceAllocator(index, today=lambda: datetime.date(2026, 1, 2)),
            structure_index=structure,
            zettel_folder=ZETTEL_FOLDER,
            merge_threshold=0.8,
        )
        outcome = engine.commit_candidate(candidate(), "00 Inbox/memo.md")
        text = store.read(structure.path)
        assert f"[[{base_name(outcome.path)}]]" in text
        assert "### sensor" in text


class TestMergePath:
    def test_merge_appends_dated_addendum(self, engine, backend, store, parser, index, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        backend.on(RELATEDNESS, score_by_word({"Drift": 0.9}))

        outcome = engine.commit_candidate(
            candidate(keywords=("sensor", "maintenance")), "00 Inbox/memo.md", always_merge
        )

        assert outcome.action == CommitAction.MERGED
        assert outcome.path == DRIFT_PATH
        assert index.zettel_count() == 1
        document = parser.parse(store.read(DRIFT_PATH))
        addendum = document.sections[-1]
        assert addendum.heading.startswith("Added ")
        assert "*Source: [[memo]]*" in addendum.lines
        assert document.keywords == ["sensor", "maintenance"]
        assert "updated" in document.metadata
        assert index.get(DRIFT_PATH).keywords == ["sensor", "maintenance"]

    def test_addendum_goes_before_linked_notes(self, engine, store, parser, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        engine.add_backlink(DRIFT_PATH, f"{ZETTEL_FOLDER}/x.md", 0.9)
        engine.merge_into(DRIFT_PATH, candidate(), "00 Inbox/memo.md")
        headings = [s.heading for s in parser.parse(store.read(DRIFT_PATH)).sections]
        assert headings[-1] == LINKED_NOTES_HEADING
        assert headings[-2].startswith("Added ")

    def test_merge_into_missing_target(self, engine, index, store, write_zettel):
        write_zettel(DRIFT, ["sensor"])
        store.delete(DRIFT_PATH)
        with pytest.raises(NoteNotFoundError):
            engine.merge_into(DRIFT_PATH, candidate(), "00 Inbox/memo.md")
        assert DRIFT_PATH not in index


class TestCommitCandidates:
    def test_failure_is_recorded_and_the_rest_continue(
        self, engine, backend, engine_sleeps, write_zettel
    ):
        write_zettel(DRIFT, ["sensor"])
        backend.on(RELATEDNESS, RuntimeError("boom"), "[]")
        engine.pacing_delay = 0.5

        outcomes = engine.commit_candidates(
            [candidate("First idea"), candidate("Second idea")], "00 Inbox/memo.md"
        )

        assert [o.action for o in outcomes] == [CommitAction.FAILED, CommitAction.CREATED]
        assert "boom" in outcomes[0].error
        assert not outcomes[0].succeeded
        assert outcomes[1].succeeded
        assert engine_sleeps == [0.5]


def test_build_zettel_document():
    document = build_zettel_document(candidate(), "memo", "2026-01-02T00:00:00+00:00")
    assert document.metadata["title"] == "Sensors need recalibration"
    assert document.metadata["keywords"] == ["sensor"]
    assert [s.heading for s in document.sections] == [
        CORE_IDEA_HEADING,
        IMPORTANCE_HEADING,
        CONTEXT_HEADING,
        LINKED_NOTES_HEADING,
    ]
    assert "- **Related concepts**: drift, maintenance" in document.section(CONTEXT_HEADING).lines


def test_link_entry():
    assert link_entry("Note", 0.834, "why") == ["- [[Note]] (83%)", "  → why"]
    assert link_entry("Note", 0.5) == ["- [[Note]] (50%)"]
