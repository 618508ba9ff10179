"""Unit tests for sectioncal_lite.lite_models."""

from datetime import UTC, date, datetime

import pytest
from pydantic import ValidationError

from sectioncal_lite.lite_models import (
    CacheSnapshot,
    CacheState,
    CacheStatus,
    DayDigestEntry,
    Occurrence,
    RebuildOutcome,
    RebuildResult,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]


def _occurrence(**kwargs) -> Occurrence:
    defaults = {
        "id": "ev",
        "summary": "CLASSE 3B",
        "start": datetime(2025, 1, 13, 8, tzinfo=UTC),
        "end": datetime(2025, 1, 13, 9, tzinfo=UTC),
    }
    defaults.update(kwargs)
    return Occurrence(**defaults)


class TestOccurrence:
    def test_from_raw_text_resolves_escapes(self) -> None:
        occ = Occurrence.from_raw_text(
            id="ev",
            raw_summary="Uscita 4A\\, 4B",
            raw_description="riga\\nseconda\\; fine",
            start=datetime(2025, 1, 13, 8, tzinfo=UTC),
            end=datetime(2025, 1, 13, 9, tzinfo=UTC),
        )

        assert occ.summary == "Uscita 4A, 4B"
        assert occ.description == "riga\nseconda; fine"

    def test_is_immutable(self) -> None:
        occ = _occurrence()

        with pytest.raises(ValidationError):
            occ.summary = "changed"

    def test_json_dump_uses_iso_format(self) -> None:
        timed = _occurrence().model_dump(mode="json")
        all_day = _occurrence(
            start=date(2025, 1, 13), end=date(2025, 1, 13), is_all_day=True
        ).model_dump(mode="json")

        assert timed["start"] == "2025-01-13T08:00:00+00:00"
        assert all_day["start"] == "2025-01-13"
        assert all_day["is_all_day"] is True
        assert set(timed) == {
            "id",
            "summary",
            "description",
            "start",
            "end",
            "is_all_day",
            "is_recurring",
        }


class TestCacheModels:
    def test_snapshot_occurrence_count(self) -> None:
        snapshot = CacheSnapshot(
            recent_occurrences=(_occurrence(), _occurrence(id="ev2")),
            built_at=datetime(2025, 1, 13, 7, tzinfo=UTC),
            built_for_day=date(2025, 1, 13),
        )

        assert snapshot.occurrence_count == 2
        assert snapshot.today_section_index == {}

    def test_rebuild_result_success_flag(self) -> None:
        assert RebuildResult(outcome=RebuildOutcome.SUCCESS).success is True
        assert RebuildResult(outcome=RebuildOutcome.SKIPPED).success is False
        assert RebuildResult(outcome=RebuildOutcome.FAILURE).model_dump(mode="json") == {
            "outcome": "failure",
            "occurrence_count": 0,
            "error_message": None,
        }

    def test_cache_status_json(self) -> None:
        status = CacheStatus(
            state=CacheState.READY,
            occurrence_count=3,
            built_at=datetime(2025, 1, 13, 7, tzinfo=UTC),
            built_for_day=date(2025, 1, 13),
        )

        data = status.model_dump(mode="json")

        assert data["state"] == "ready"
        assert data["built_at"] == "2025-01-13T07:00:00+00:00"
        assert data["built_for_day"] == "2025-01-13"

    def test_cache_status_without_snapshot(self) -> None:
        data = CacheStatus(state=CacheState.BUILDING).model_dump(mode="json")

        assert data["built_at"] is None
        assert data["state"] == "building"

    def test_day_digest_entry_defaults(self) -> None:
        entry = DayDigestEntry(occurrence=_occurrence())

        assert entry.sections == []
        assert entry.class_code is None
        assert entry.professors == []
