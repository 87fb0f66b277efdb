"""Saved source records with atomic YAML persistence.

Durable per-URL history for CamRelay: last session, label/notes and the
screenshot log of every source that was ever started or annotated.

Features:
    - Ordered list of SavedSourceRecord, one per source URL
    - Upsert-on-write: every mutation is persisted before returning
    - Atomic writes (temp file + rename), never a half-written file
    - Auto-recovery: missing or corrupt file loads as an empty list
    - Legacy JSON files load too (YAML is a JSON superset), including
      camelCase keys (rtspUrl, lastStreamId, lastStartedAt, fileName)

Durability:
    Best-effort. A failed write is logged and swallowed; the in-memory list
    stays authoritative for the life of the process.

Thread Safety:
    RLock around every read-modify-write so a write always completes (or
    fails and logs) before the next read.

Logging Strategy:
    DEBUG - Saves, record counts
    INFO  - Load source, first-time initialization
    WARN  - Invalid formats, skipped entries
    ERROR - YAML parsing, I/O failures (persistence warnings)
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models.source import MAX_SCREENSHOTS, SavedSourceRecord, ScreenshotRecord
from .services.errors import BadRequestError
from .utils.strings import mask_credentials, sanitize_label, sanitize_notes
from . import metrics

logger = logging.getLogger(__name__)

# Legacy camelCase keys written by the previous Node server
LEGACY_RECORD_KEYS = {
    "rtspUrl": "source_url",
    "lastStreamId": "last_session_id",
    "lastStartedAt": "last_started_at",
}
LEGACY_SCREENSHOT_KEYS = {
    "fileName": "file_name",
    "capturedAt": "captured_at",
}


def _rename_legacy_keys(entry: dict, mapping: dict[str, str]) -> dict:
    renamed = dict(entry)
    for old, new in mapping.items():
        if old in renamed and new not in renamed:
            renamed[new] = renamed.pop(old)
    return renamed


def normalize_url(source_url: str) -> str:
    """Record key for a source URL (surrounding whitespace dropped)."""
    return source_url.strip()


def utc_now_iso() -> str:
    """Current UTC time as ISO 8601 with millisecond precision and 'Z'."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ============================================================================
# Metadata Store
# ============================================================================

class MetadataStore:
    """Ordered, persisted list of saved source records.

    Attributes:
        path: Durable record file
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        self._records: list[SavedSourceRecord] = self.load()
        logger.info(f"Metadata store: {len(self._records)} saved source(s) from {self.path}")

    # ========================================================================
    # Loading
    # ========================================================================

    def load(self) -> list[SavedSourceRecord]:
        """Load records from disk. Never raises.

        Returns:
            Records in file order, or an empty list if the file is missing,
            unreadable or malformed
        """
        if not self.path.exists():
            logger.info(f"No saved sources file yet: {self.path}")
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Saved sources parsing error: {e}", exc_info=True)
            return []
        except OSError as e:
            logger.error(f"Failed to read saved sources file: {e}")
            return []

        if data is None:
            return []

        if not isinstance(data, list):
            logger.warning("Invalid saved sources format (expected list), starting empty")
            return []

        records: list[SavedSourceRecord] = []
        seen: set[str] = set()
        for idx, entry in enumerate(data):
            record = self._parse_entry(entry, idx)
            if record is None or record.source_url in seen:
                continue
            seen.add(record.source_url)
            records.append(record)

        logger.debug(f"Loaded {len(records)} saved source(s)")
        return records

    @staticmethod
    def _parse_entry(entry: Any, idx: int) -> SavedSourceRecord | None:
        if not isinstance(entry, dict):
            logger.warning(f"Skipping saved source #{idx}: not a mapping")
            return None

        entry = _rename_legacy_keys(entry, LEGACY_RECORD_KEYS)
        source_url = entry.get("source_url")
        if isinstance(source_url, str):
            source_url = normalize_url(source_url)

        screenshots = entry.get("screenshots")
        if not isinstance(screenshots, list):
            screenshots = []
        screenshots = [
            _rename_legacy_keys(shot, LEGACY_SCREENSHOT_KEYS) if isinstance(shot, dict) else shot
            for shot in screenshots
        ]

        try:
            return SavedSourceRecord(
                source_url=source_url,
                last_session_id=entry.get("last_session_id"),
                last_started_at=entry.get("last_started_at"),
                label=entry.get("label") or "",
                notes=entry.get("notes") or "",
                screenshots=screenshots[:MAX_SCREENSHOTS],
            )
        except ValidationError as e:
            logger.warning(f"Skipping invalid saved source #{idx}: {e.error_count()} error(s)")
            return None

    # ========================================================================
    # Queries
    # ========================================================================

    @property
    def records(self) -> list[SavedSourceRecord]:
        """Snapshot of all records in insertion order."""
        with self._lock:
            return list(self._records)

    def list_records(self) -> list[SavedSourceRecord]:
        return self.records

    def find_by_url(self, source_url: str) -> SavedSourceRecord | None:
        source_url = normalize_url(source_url)
        with self._lock:
            for record in self._records:
                if record.source_url == source_url:
                    return record
            return None

    # ========================================================================
    # Mutations
    # ========================================================================

    def upsert_on_start(
        self,
        source_url: str,
        session_id: str,
        label: Any = None,
        notes: Any = None
    ) -> SavedSourceRecord:
        """Record a successful session start.

        Label/notes are only overwritten with non-empty sanitized input;
        last_session_id/last_started_at are always refreshed.
        """
        source_url = normalize_url(source_url)
        safe_label = sanitize_label(label)
        safe_notes = sanitize_notes(notes)
        now = utc_now_iso()

        with self._lock:
            record = self.find_by_url(source_url)
            if record is None:
                record = SavedSourceRecord(
                    source_url=source_url,
                    last_session_id=session_id,
                    last_started_at=now,
                    label=safe_label,
                    notes=safe_notes,
                )
                self._records.append(record)
                logger.info(f"Saved new source: {mask_credentials(source_url)}")
            else:
                record.last_session_id = session_id
                record.last_started_at = now
                if safe_label:
                    record.label = safe_label
                if safe_notes:
                    record.notes = safe_notes

            self._persist()
            return record

    def update_metadata_only(
        self,
        source_url: Any,
        label: Any = None,
        notes: Any = None
    ) -> SavedSourceRecord:
        """Replace label/notes, creating the record if needed.

        Unlike upsert_on_start, empty values DO overwrite existing ones.

        Raises:
            BadRequestError: source_url missing or blank
        """
        if not isinstance(source_url, str) or not source_url.strip():
            raise BadRequestError("Source URL is required")

        source_url = normalize_url(source_url)
        safe_label = sanitize_label(label)
        safe_notes = sanitize_notes(notes)

        with self._lock:
            record = self.find_by_url(source_url)
            if record is None:
                record = SavedSourceRecord(
                    source_url=source_url,
                    label=safe_label,
                    notes=safe_notes,
                )
                self._records.append(record)
            else:
                record.label = safe_label
                record.notes = safe_notes

            self._persist()
            return record

    def append_screenshot(
        self,
        source_url: str,
        session_id: str,
        file_name: str
    ) -> SavedSourceRecord:
        """Prepend a screenshot to a source's history (max 20, newest first)."""
        source_url = normalize_url(source_url)
        now = utc_now_iso()

        with self._lock:
            record = self.find_by_url(source_url)
            if record is None:
                record = SavedSourceRecord(
                    source_url=source_url,
                    last_session_id=session_id,
                    last_started_at=now,
                )
                self._records.append(record)

            shot = ScreenshotRecord(file_name=file_name, captured_at=now)
            record.screenshots = [shot, *record.screenshots][:MAX_SCREENSHOTS]

            self._persist()
            return record

    # ========================================================================
    # Persistence
    # ========================================================================

    def _persist(self) -> None:
        """Write all records atomically. Failures are logged, not raised."""
        payload = [record.model_dump(mode="json") for record in self._records]
        temp_path = None

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=".sources_",
                suffix=".yml.tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(
                    payload,
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    allow_unicode=True
                )
            os.replace(temp_path, self.path)
            temp_path = None
            logger.debug(f"Saved {len(payload)} source record(s)")

        except (OSError, yaml.YAMLError) as e:
            metrics.metadata_persist_failures_total.inc()
            logger.error(f"Failed to write saved sources file: {e}")

        finally:
            if temp_path and os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError as cleanup_err:
                    logger.warning(f"Temp cleanup failed: {cleanup_err}")
