"""
Unit tests for saved source persistence (MetadataStore).
"""

from unittest.mock import patch

import pytest
import yaml
from prometheus_client import REGISTRY

from camrelay.metadata_store import MetadataStore
from camrelay.services.errors import BadRequestError

URL = "rtsp://admin:pw@cam.local/live"


def persist_failures() -> float:
    return REGISTRY.get_sample_value("camrelay_metadata_persist_failures_total") or 0.0


class TestLoading:
    """Tests for MetadataStore.load()."""

    def test_missing_file_loads_empty(self, tmp_path):
        store = MetadataStore(tmp_path / "sources.yml")
        assert store.records == []

    def test_corrupt_file_loads_empty(self, tmp_path):
        """Should start empty instead of failing on unparseable content."""
        path = tmp_path / "sources.yml"
        path.write_text("[unclosed: {\n")

        assert MetadataStore(path).records == []

    def test_non_list_top_level_loads_empty(self, tmp_path):
        path = tmp_path / "sources.yml"
        path.write_text("source_url: rtsp://x/y\n")

        assert MetadataStore(path).records == []

    def test_json_file_loads(self, tmp_path):
        """Should read a JSON array of records."""
        path = tmp_path / "sources.json"
        path.write_text('[{"source_url": "rtsp://cam/a", "label": "A", "screenshots": []}]')

        records = MetadataStore(path).records
        assert [r.source_url for r in records] == ["rtsp://cam/a"]
        assert records[0].label == "A"

    def test_legacy_camel_case_file_loads(self, tmp_path):
        """Should map the old saved-streams.json keys onto records."""
        path = tmp_path / "saved-streams.json"
        path.write_text(
            '[{"rtspUrl": "rtsp://cam/a", "lastStreamId": "s-old", '
            '"lastStartedAt": "2024-05-01T10:00:00.000Z", "label": "Gate", "notes": "",'
            ' "screenshots": [{"fileName": "s-old-2024.jpg", "capturedAt": "2024-05-01T10:01:00.000Z"}]}]'
        )

        records = MetadataStore(path).records

        assert len(records) == 1
        assert records[0].source_url == "rtsp://cam/a"
        assert records[0].last_session_id == "s-old"
        assert records[0].last_started_at == "2024-05-01T10:00:00.000Z"
        assert records[0].label == "Gate"
        assert records[0].screenshots[0].file_name == "s-old-2024.jpg"

    def test_skips_invalid_and_duplicate_entries(self, tmp_path):
        path = tmp_path / "sources.yml"
        path.write_text(yaml.safe_dump([
            {"source_url": "rtsp://cam/a", "label": "first"},
            "garbage",
            {"label": "no url"},
            {"source_url": "rtsp://cam/a", "label": "dupe"},
            {"source_url": "rtsp://cam/b"},
        ]))

        records = MetadataStore(path).records
        assert [r.source_url for r in records] == ["rtsp://cam/a", "rtsp://cam/b"]
        assert records[0].label == "first"


class TestUpsertOnStart:
    """Tests for upsert_on_start()."""

    def test_creates_record(self, store):
        record = store.upsert_on_start(URL, "s1", "Gate", "north side")

        assert record.last_session_id == "s1"
        assert record.label == "Gate"
        assert record.notes == "north side"
        assert record.screenshots == []

    def test_empty_values_do_not_overwrite(self, store):
        """Should keep existing label/notes when the new start has none."""
        store.upsert_on_start(URL, "s1", "Gate", "north side")
        record = store.upsert_on_start(URL, "s2", "", None)

        assert record.last_session_id == "s2"
        assert record.label == "Gate"
        assert record.notes == "north side"
        assert len(store.records) == 1

    def test_persists_and_reloads(self, store, settings):
        store.upsert_on_start(URL, "s1", "Gate", "")

        reloaded = MetadataStore(settings.sources_file)
        assert reloaded.find_by_url(URL).label == "Gate"
        assert reloaded.find_by_url(URL).last_session_id == "s1"


class TestUpdateMetadataOnly:
    """Tests for update_metadata_only()."""

    def test_empty_values_overwrite(self, store):
        """Should clear label/notes, unlike upsert_on_start."""
        store.upsert_on_start(URL, "s1", "Gate", "north side")
        record = store.update_metadata_only(URL, "", "")

        assert record.label == ""
        assert record.notes == ""
        assert record.last_session_id == "s1"

    def test_creates_record_without_session(self, store):
        record = store.update_metadata_only("rtsp://cam/new", "New", None)

        assert record.last_session_id is None
        assert record.label == "New"

    @pytest.mark.parametrize("url", [None, "", "   ", 5])
    def test_requires_url(self, store, url):
        with pytest.raises(BadRequestError):
            store.update_metadata_only(url, "x")

    def test_truncates(self, store):
        record = store.update_metadata_only(URL, "x" * 61, "y" * 281)

        assert len(record.label) == 60
        assert len(record.notes) == 280

    def test_surrounding_whitespace_hits_same_record(self, store):
        """Should key records on the trimmed URL."""
        store.upsert_on_start("rtsp://cam/a", "s1", "Start")
        record = store.update_metadata_only("  rtsp://cam/a ", "Edited", "")

        assert [r.source_url for r in store.records] == ["rtsp://cam/a"]
        assert record.label == "Edited"
        assert record.last_session_id == "s1"


class TestScreenshots:
    """Tests for append_screenshot()."""

    def test_keeps_twenty_newest_first(self, store):
        """Should cap history at 20 with the newest capture first."""
        store.upsert_on_start(URL, "s1")
        for i in range(25):
            store.append_screenshot(URL, "s1", f"shot-{i:02d}.jpg")

        shots = store.find_by_url(URL).screenshots
        assert len(shots) == 20
        assert shots[0].file_name == "shot-24.jpg"
        assert shots[-1].file_name == "shot-05.jpg"

    def test_creates_record_for_unknown_url(self, store):
        record = store.append_screenshot("rtsp://cam/other", "s9", "x.jpg")

        assert record.last_session_id == "s9"
        assert record.screenshots[0].file_name == "x.jpg"


class TestPersistenceFailure:
    """A failed write is logged; memory stays authoritative."""

    def test_write_failure_keeps_memory_state(self, store, caplog):
        before = persist_failures()

        with patch("camrelay.metadata_store.os.replace", side_effect=OSError("disk full")):
            record = store.upsert_on_start(URL, "s1", "Gate")

        assert record.label == "Gate"
        assert store.find_by_url(URL) is record
        assert persist_failures() == before + 1
        assert "Failed to write saved sources file" in caplog.text
        assert not list(store.path.parent.glob(".sources_*"))
