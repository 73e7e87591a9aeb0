# tests/test_prefilter.py
"""Tests for the keyword prefilter."""
from zbrain_mcp.models.schema import NoteKind
from zbrain_mcp.services.prefilter import MAX_CANDIDATES, KeywordPrefilter, keywords_match


class TestKeywordsMatch:
    def test_substring_either_way(self):
        assert keywords_match("IoT", "iot sensor")
        assert keywords_match("sensor network", "Sensor")
        assert not keywords_match("sensor", "farm")

    def test_short_keyword_matches_generously(self):
        assert keywords_match("ai", "maintenance")


class TestKeywordPrefilter:
    def test_orders_by_match_count_then_path(self, index, write_note):
        write_note("c.md", title="C", keywords=["sensor"])
        write_note("b.md", title="B", keywords=["sensor", "calibration"])
        write_note("a.md", title="A", keywords=["sensor"])
        write_note("z.md", title="Z", keywords=["cooking"])

        results = KeywordPrefilter(index).filter(["sensor", "calibration"])
        assert [c.record.path for c in results] == ["b.md", "a.md", "c.md"]
        assert results[0].matched_keywords == {"sensor", "calibration"}

    def test_never_more_than_ten(self, index, write_note):
        for i in range(15):
            write_note(f"n{i:02d}.md", title=f"N{i}", keywords=["sensor"])
        results = KeywordPrefilter(index).filter(["sensor"], limit=50)
        assert len(results) == MAX_CANDIDATES
        paths = [c.record.path for c in results]
        assert paths == sorted(paths)

    def test_excludes_path_kind_and_empty_keywords(self, index, write_note, write_zettel):
        write_note("self.md", title="Self", keywords=["sensor"])
        write_note("plain.md", title="Plain", keywords=["sensor"])
        write_note("nokw.md", title="sensor")
        zettel = write_zettel("20260101-001 Sensor", ["sensor"])

        prefilter = KeywordPrefilter(index)
        all_paths = {c.record.path for c in prefilter.filter(["sensor"], exclude_path="self.md")}
        assert all_paths == {"plain.md", zettel}
        zettels = prefilter.filter(["sensor"], kind=NoteKind.ZETTEL)
        assert [c.record.path for c in zettels] == [zettel]

    def test_empty_query(self, index, write_note):
        write_note("a.md", title="A", keywords=["sensor"])
        assert KeywordPrefilter(index).filter([]) == []
        assert KeywordPrefilter(index).filter(["  "]) == []
