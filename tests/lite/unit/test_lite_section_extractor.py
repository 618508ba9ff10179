"""Unit tests for section, class and professor extraction."""

from datetime import UTC, datetime

import pytest

from sectioncal_lite.lite_models import Occurrence
from sectioncal_lite.lite_section_extractor import (
    MAX_PROFESSOR_NAME_LENGTH,
    extract_class_from_summary,
    extract_professors,
    extract_sections,
    occurrence_text,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]


class TestExtractSections:
    def test_uppercase_and_digit_tokens_in_order(self) -> None:
        assert extract_sections("CLASSE 3B - PROF. ROSSI ASSENTE") == [
            "CLASSE",
            "3B",
            "PROF",
            "ROSSI",
            "ASSENTE",
        ]

    def test_duplicates_removed(self) -> None:
        assert extract_sections("4A uscita 4A 4B") == ["4A", "4B"]

    def test_mixed_case_words_not_tokens(self) -> None:
        assert extract_sections("Uscita anticipata 4A") == ["4A"]

    def test_lowercase_tokens_ignored(self) -> None:
        assert extract_sections("classe 3b") == []

    def test_empty_text(self) -> None:
        assert extract_sections("") == []


class TestExtractClass:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("CLASSE 3B - PROF. ROSSI ASSENTE", "3B"),
            ("Uscita anticipata classe 4a", "4A"),
            ("Verifica CLASSE   5C oggi", "5C"),
            ("Assemblea d'istituto", None),
            ("SOTTOCLASSE 2A", None),
            ("", None),
        ],
    )
    def test_extract_class_from_summary(self, text: str, expected: str | None) -> None:
        assert extract_class_from_summary(text) == expected


class TestExtractProfessors:
    def test_singular_marker_takes_next_word(self) -> None:
        assert extract_professors("CLASSE 3B - PROF. ROSSI ASSENTE") == ["ROSSI"]

    def test_marker_without_dot(self) -> None:
        assert extract_professors("sostituisce prof Bianchi") == ["Bianchi"]

    def test_feminine_marker(self) -> None:
        assert extract_professors("PROF.SSA VERDI assente") == ["VERDI"]

    def test_plural_marker_takes_name_list(self) -> None:
        assert extract_professors("PROFF. ROSSI, BIANCHI E VERDI in gita") == [
            "ROSSI",
            "BIANCHI",
            "VERDI",
        ]

    def test_plural_feminine_marker(self) -> None:
        assert extract_professors("Prof.sse Neri e Gialli") == ["Neri", "Gialli"]

    def test_apostrophe_in_name(self) -> None:
        assert extract_professors("PROF. D'ANGELO assente") == ["D'ANGELO"]

    def test_multiple_markers_deduplicated(self) -> None:
        assert extract_professors("PROF. ROSSI sostituisce PROF. ROSSI") == ["ROSSI"]

    def test_marker_inside_word_ignored(self) -> None:
        assert extract_professors("PROFESSIONALE 3B") == []

    def test_marker_without_name(self) -> None:
        assert extract_professors("PROF. 3B") == []

    def test_overlong_name_rejected(self) -> None:
        name = "A" * (MAX_PROFESSOR_NAME_LENGTH + 1)
        assert extract_professors(f"PROF. {name}") == []

    def test_empty_text(self) -> None:
        assert extract_professors("") == []


def test_occurrence_text_joins_summary_and_description() -> None:
    occ = Occurrence(
        id="x",
        summary="CLASSE 3B",
        description="PROF. ROSSI",
        start=datetime(2025, 1, 13, 8, tzinfo=UTC),
        end=datetime(2025, 1, 13, 9, tzinfo=UTC),
    )

    assert occurrence_text(occ) == "CLASSE 3B PROF. ROSSI"
