"""Tests for detection of step output copied from the case documents."""

from __future__ import annotations

from casetrace.services.runs.echo_guard import (
    echo_warning,
    find_echoed_fields,
    overlap_percent,
)

SOURCE = (
    "The board met on Tuesday and agreed to move the billing system to the new vendor "
    "before the end of the quarter, despite concerns from the finance team about cost."
)


class TestFindEchoedFields:
    """Walking nested output for copied text."""

    def test_copied_field_reported(self) -> None:
        data = {
            "business_context": "The board met on Tuesday and agreed to move the billing system.",
            "organizational_factors": ["Budget review happens annually in spring."],
        }

        assert find_echoed_fields(data, SOURCE) == ["business_context"]

    def test_paraphrase_not_reported(self) -> None:
        data = {"narrative": "Leadership approved a vendor migration despite finance objections."}

        assert find_echoed_fields(data, SOURCE) == []

    def test_quote_fields_exempt(self) -> None:
        data = {
            "fragments": [
                {
                    "quote": "agreed to move the billing system to the new vendor",
                    "context": "before the end of the quarter, despite concerns from the finance",
                    "classification": "evidence",
                }
            ]
        }

        assert find_echoed_fields(data, SOURCE) == []

    def test_nested_paths_and_list_items(self) -> None:
        data = {
            "stakeholders": [
                {"name": "Finance", "signal": "concerns from the finance team about cost"},
            ],
            "lessons_learned": [
                "Short one.",
                "move the billing system to the new vendor before the end",
            ],
        }

        assert find_echoed_fields(data, SOURCE) == [
            "stakeholders[0].signal",
            "lessons_learned[1]",
        ]

    def test_short_fields_ignored(self) -> None:
        assert overlap_percent("the new vendor", {("the", "new", "vendor")}) == 0.0

    def test_empty_source(self) -> None:
        assert find_echoed_fields({"narrative": SOURCE}, "") == []


class TestEchoWarning:
    def test_lists_paths(self) -> None:
        warning = echo_warning(["narrative", "lessons_learned[0]"])

        assert "narrative, lessons_learned[0]" in warning
        assert "30%" in warning
