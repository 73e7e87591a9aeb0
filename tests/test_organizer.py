# tests/test_organizer.py
"""Tests for the note organization workflows."""
import datetime

import pytest

from tests.conftest import ZETTEL_FOLDER
from tests.fakes import (
    CLASSIFY,
    DETECT_PROJECT,
    EXTRACT_ZETTELS,
    FOCUS,
    KEYWORDS,
    RELATEDNESS,
    SPLIT,
    as_json,
    score_by_word,
)
from zbrain_mcp.exceptions import (
    BulkOperationError,
    DocumentExistsError,
    DocumentNotFoundError,
)
from zbrain_mcp.models.document import RELATED_NOTES_HEADING
from zbrain_mcp.models.schema import ChangeEvent, ChangeKind
from zbrain_mcp.services.id_allocator import DateSequenceAllocator
from zbrain_mcp.services.link_engine import CommitAction, MergeLinkEngine
from zbrain_mcp.services.organizer import BatchReport, NoteOrganizer

INBOX = "00 Inbox"
LIBRARY_REPLY = as_json({"targetType": "library", "title": "Filed", "summary": "s"})


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def organizer(test_config, index, gateway, search, registry, sleeps):
    engine = MergeLinkEngine(
        index,
        search,
        DateSequenceAllocator(index, today=lambda: datetime.date(2026, 1, 2)),
        zettel_folder=ZETTEL_FOLDER,
        merge_threshold=0.8,
    )
    return NoteOrganizer(index, gateway, search, registry, engine, cfg=test_config, sleep=sleeps.append)


class TestClassifyNote:
    def test_project_note_is_moved_tagged_and_linked(
        self, organizer, registry, backend, store, parser, index, write_note
    ):
        hub = registry.create_hub("Farm", "01 Projects")
        write_note("02 Library/Soil.md", title="Soil", keywords=["sensor"])
        memo = write_note(f"{INBOX}/memo.md", body="The soil sensors drift. #done")
        backend.on(CLASSIFY, as_json({
            "targetType": "project",
            "projectName": "Farm",
            "title": "Sensor memo",
            "summary": "About sensors",
            "nextAction": "Order new sensors",
        }))
        backend.on(KEYWORDS, '["sensor"]')
        backend.on(DETECT_PROJECT, "Farm")
        backend.on(RELATEDNESS, score_by_word({"Soil": 0.9}))

        outcome = organizer.classify_note(memo)

        assert outcome.original_path == memo
        assert outcome.path == "01 Projects/Farm/memo.md"
        assert not store.exists(memo)
        assert memo not in index
        assert outcome.path in index

        document = parser.parse(store.read(outcome.path))
        assert document.metadata["target_type"] == "project"
        assert document.metadata["project"] == "Farm"
        assert document.metadata["title"] == "Sensor memo"
        assert document.metadata["next_action"] == "Order new sensors"
        assert "processed_at" in document.metadata
        assert document.keywords == ["sensor"]
        assert "- [[Soil]] (relevance: 90%)" in document.section(RELATED_NOTES_HEADING).lines

        assert outcome.links.project == "Farm"
        assert [r.target.path for r in outcome.links.related] == ["02 Library/Soil.md"]
        assert "[[memo]]" in store.read(hub.path)

    def test_library_note_without_projects(self, organizer, backend, store, write_note):
        memo = write_note(f"{INBOX}/memo.md", body="Bread notes #done")
        backend.on(CLASSIFY, LIBRARY_REPLY)

        outcome = organizer.classify_note(memo)

        assert outcome.path == "02 Library/memo.md"
        assert store.exists(outcome.path)
        assert outcome.links.project is None
        assert backend.calls_for(DETECT_PROJECT) == 0

    def test_taken_destination_leaves_note_in_place(self, organizer, backend, store, write_note):
        write_note("02 Library/memo.md", title="Other")
        memo = write_note(f"{INBOX}/memo.md", body="text #done")
        before = store.read(memo)
        backend.on(CLASSIFY, LIBRARY_REPLY)

        with pytest.raises(DocumentExistsError):
            organizer.classify_note(memo)
        assert store.read(memo) == before

    def test_linking_failure_keeps_the_move(self, organizer, backend, store, write_note):
        memo = write_note(f"{INBOX}/memo.md", body="text #done")
        backend.on(CLASSIFY, LIBRARY_REPLY)
        backend.on(KEYWORDS, RuntimeError("broken"))

        outcome = organizer.classify_note(memo)

        assert outcome.path == "02 Library/memo.md"
        assert store.exists(outcome.path)
        assert outcome.links is None
        assert "broken" in outcome.link_error

    def test_missing_note(self, organizer):
        with pytest.raises(DocumentNotFoundError):
            organizer.classify_note(f"{INBOX}/missing.md")


class TestSplitNote:
    def test_sections_become_notes_and_original_is_archived(
        self, organizer, backend, store, parser, registry, write_note
    ):
        memo = write_note(f"{INBOX}/memo.md", body="Sensors and bread.")
        backend.on(SPLIT, as_json([
            {
                "title": "Sensor plan",
                "content": "Buy sensors.",
                "targetType": "project",
                "projectName": "NEW: Greenhouse",
                "keywords": ["sensor"],
            },
            {
                "title": "Bread recipe",
                "content": "Flour and water.",
                "targetType": "library",
                "keywords": ["bread"],
            },
        ]))

        report = organizer.split_note(memo)

        assert not report.single_topic
        assert report.created == [
            "01 Projects/Greenhouse/Sensor plan.md",
            "02 Library/Bread recipe.md",
        ]
        assert report.archived_path == "03 Archives/memo.md"
        assert report.errors == []
        assert not store.exists(memo)

        plan = parser.parse(store.read(report.created[0]))
        assert plan.metadata["project"] == "Greenhouse"
        assert plan.metadata["source"] == "[[memo]]"
        assert plan.keywords == ["sensor"]
        assert plan.title == "Sensor plan"

        assert registry.has("Greenhouse")
        assert "[[Sensor plan]]" in store.read(registry.hub_path("Greenhouse"))

    def test_single_topic_is_left_alone(self, organizer, backend, store, write_note):
        memo = write_note(f"{INBOX}/memo.md", body="Only bread.")
        before = store.read(memo)
        backend.on(SPLIT, as_json([{"title": "Bread", "content": "Only bread."}]))

        report = organizer.split_note(memo)

        assert report.single_topic
        assert report.created == []
        assert store.read(memo) == before

    def test_failing_section_is_reported(self, organizer, backend, store, write_note):
        write_note("02 Library/Bread recipe.md", title="Existing")
        memo = write_note(f"{INBOX}/memo.md", body="Sensors and bread.")
        backend.on(SPLIT, as_json([
            {"title": "Sensor plan", "content": "Buy sensors.", "targetType": "library"},
            {"title": "Bread recipe", "content": "Flour.", "targetType": "library"},
        ]))

        report = organizer.split_note(memo)

        assert report.created == ["02 Library/Sensor plan.md"]
        assert len(report.errors) == 1
        assert report.errors[0].startswith("Bread recipe:")
        assert report.archived_path == "03 Archives/memo.md"


class TestExtractZettels:
    def test_each_idea_becomes_a_zettel(self, organizer, backend, store, write_note):
        memo = write_note(f"{INBOX}/memo.md", body="Ideas about sensors and bread.")
        backend.on(EXTRACT_ZETTELS, as_json([
            {"title": "Sensors drift", "body": "They do.", "keywords": ["sensor"]},
            {"title": "Bread needs time", "body": "It does.", "keywords": ["bread"]},
        ]))

        outcomes = organizer.extract_zettels(memo)

        assert [o.action for o in outcomes] == [CommitAction.CREATED, CommitAction.CREATED]
        assert [o.path for o in outcomes] == [
            f"{ZETTEL_FOLDER}/20260102-001 Sensors drift.md",
            f"{ZETTEL_FOLDER}/20260102-002 Bread needs time.md",
        ]
        assert all(store.exists(o.path) for o in outcomes)
        # The source note is not moved
        assert store.exists(memo)

    def test_no_ideas(self, organizer, backend, write_note):
        memo = write_note(f"{INBOX}/memo.md", body="Nothing.")
        backend.on(EXTRACT_ZETTELS, "[]")
        assert organizer.extract_zettels(memo) == []


class TestInbox:
    def test_is_inbox_path(self, organizer):
        assert organizer.is_inbox_path(f"{INBOX}/a.md")
        assert not organizer.is_inbox_path(f"{INBOX}/sub/a.md")
        assert not organizer.is_inbox_path(f"{INBOX}/a.txt")
        assert not organizer.is_inbox_path("02 Library/a.md")

    def test_process_inbox_classifies_tagged_notes(
        self, organizer, backend, store, sleeps, monkeypatch, test_config, write_note
    ):
        monkeypatch.setattr(test_config, "bulk_pacing_delay", 0.5)
        write_note(f"{INBOX}/a.md", body="first #done")
        untagged = write_note(f"{INBOX}/b.md", body="not yet")
        write_note(f"{INBOX}/c.md", body="second #done")
        nested = write_note(f"{INBOX}/sub/d.md", body="nested #done")
        backend.on(CLASSIFY, LIBRARY_REPLY)

        report = organizer.process_inbox()

        assert report.processed == 2
        assert report.failed == 0
        assert report.moved == ["02 Library/a.md", "02 Library/c.md"]
        assert store.exists(untagged)
        assert store.exists(nested)
        assert sleeps == [0.5]

    def test_one_failure_does_not_stop_the_rest(self, organizer, backend, write_note):
        write_note(f"{INBOX}/a.md", body="first #done")
        write_note(f"{INBOX}/b.md", body="second #done")
        backend.on(CLASSIFY, "no json here", LIBRARY_REPLY)

        report = organizer.process_inbox()

        assert report.processed == 1
        assert report.failed == 1
        assert report.failed_paths == [f"{INBOX}/a.md"]
        assert report.errors[0].startswith(f"{INBOX}/a.md: ")
        assert report.moved == ["02 Library/b.md"]
        report.raise_if_all_failed("process_inbox")

    def test_all_failed(self, organizer, backend, write_note):
        write_note(f"{INBOX}/a.md", body="first #done")
        backend.on(CLASSIFY, "no json here")

        report = organizer.process_inbox()

        with pytest.raises(BulkOperationError) as exc_info:
            report.raise_if_all_failed("process_inbox")
        assert exc_info.value.details["failed_count"] == 1

    def test_handle_events_filters_and_dedupes(self, organizer, backend, store, write_note):
        tagged = write_note(f"{INBOX}/a.md", body="#done")
        untagged = write_note(f"{INBOX}/b.md", body="draft")
        elsewhere = write_note("02 Library/c.md", body="#done")
        backend.on(CLASSIFY, LIBRARY_REPLY)

        report = organizer.handle_events([
            ChangeEvent(tagged, ChangeKind.CREATED),
            ChangeEvent(tagged, ChangeKind.MODIFIED),
            ChangeEvent(untagged, ChangeKind.MODIFIED),
            ChangeEvent(elsewhere, ChangeKind.MODIFIED),
            ChangeEvent(f"{INBOX}/deleted.md", ChangeKind.MODIFIED),
        ])

        assert report.processed == 1
        assert report.moved == ["02 Library/a.md"]
        assert backend.calls_for(CLASSIFY) == 1
        assert store.exists(untagged)


class TestFocus:
    def test_collects_project_notes_without_hubs(self, organizer, store, write_note):
        write_note("01 Projects/Farm MOC.md", title="Farm", kind="project-moc", project="Farm")
        store.write(
            "01 Projects/Farm/sensors.md",
            "---\ntitle: Sensors\nsummary: Soil moisture map\nnext_action: Order sensors\n---\nbody\n",
        )
        store.write("01 Projects/loose.md", "no metadata\n")
        store.write("01 Projects/broken.md", "---\ntitle: [unclosed\n---\n")

        assert organizer.collect_projects_summary() == [
            "- Sensors: Soil moisture map (next: Order sensors)",
            "- loose:  (next: )",
        ]

    def test_focus_projects(self, organizer, store, backend):
        store.write(
            "01 Projects/Farm/sensors.md",
            "---\ntitle: Sensors\nsummary: Soil moisture map\n---\n",
        )
        backend.on(FOCUS, as_json([
            {"title": "Farm", "why": "harvest", "next_action": "order sensors"}
        ]))

        items = organizer.focus_projects()

        assert [(i.title, i.why, i.next_action) for i in items] == [
            ("Farm", "harvest", "order sensors")
        ]
        assert "- Sensors: Soil moisture map (next: )" in backend.prompts[FOCUS][0]

    def test_no_project_notes_means_no_call(self, organizer, backend):
        assert organizer.focus_projects() == []
        assert backend.calls_for(FOCUS) == 0


class TestBatchReport:
    def test_counts(self):
        report = BatchReport(processed=2)
        report.record_failure("x.md", ValueError("bad"))
        assert report.total == 3
        assert report.errors == ["x.md: bad"]
        report.raise_if_all_failed("op")

    def test_empty_report_never_raises(self):
        BatchReport().raise_if_all_failed("op")
