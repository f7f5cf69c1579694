"""Tests for profile projection and input sanitation."""
import pytest

from leadmatch.pipelines.profile import (
    build_profile_text,
    has_meaningful_data,
    parse_limit,
    sanitize_lead_id,
)
from leadmatch.schemas import LeadRecord

from .conftest import FULL_LEAD


class TestBuildProfileText:

    def test_fields_in_fixed_order(self):
        text = build_profile_text(LeadRecord(id="l1", attributes=FULL_LEAD))

        assert text == "\n".join([
            "Bachelor School: National Taiwan University",
            "Bachelor Program: Computer Science",
            "Bachelor GPA: 3.8",
            "Intended Program Level: Master",
            "Intended Programs: MS Computer Science",
            "Intended Direction: Machine Learning",
        ])

    def test_order_does_not_depend_on_attribute_order(self):
        attrs = {"intended_direction": "Robotics", "bachelor_school": "NTHU"}
        text = build_profile_text(LeadRecord(id="l1", attributes=attrs))
        assert text == "Bachelor School: NTHU\nIntended Direction: Robotics"

    def test_sentinel_only_record_is_empty(self):
        record = LeadRecord(id="l1", attributes={"bachelor_school": "-", "intended_programs": "-"})
        assert build_profile_text(record) == ""

    def test_unknown_columns_are_ignored(self):
        record = LeadRecord(id="l1", attributes={"email": "a@b.c", "master_gpa": "4.0"})
        assert build_profile_text(record) == "Master GPA: 4.0"

    def test_numeric_values_are_rendered(self):
        record = LeadRecord(id="l1", attributes={"bachelor_gpa": 3.5})
        assert build_profile_text(record) == "Bachelor GPA: 3.5"


class TestHasMeaningfulData:

    def test_filled_record(self):
        assert has_meaningful_data(LeadRecord(id="l1", attributes=FULL_LEAD))

    def test_no_semantic_fields(self):
        assert not has_meaningful_data(LeadRecord(id="l1", attributes={"email": "a@b.c"}))

    def test_blank_values(self):
        attrs = {"bachelor_school": "   ", "master_school": None, "intended_programs": ""}
        assert not has_meaningful_data(LeadRecord(id="l1", attributes=attrs))

    def test_sentinel_counts_as_filled_in(self):
        attrs = {"bachelor_school": "-"}
        assert has_meaningful_data(LeadRecord(id="l1", attributes=attrs))


class TestSanitizeLeadId:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("iLyQHGSZjztrJ4ipxTocj", "iLyQHGSZjztrJ4ipxTocj"),
            ("  lead-42_a  ", "lead-42_a"),
            ("lead;DROP TABLE", "leadDROPTABLE"),
            ("x" * 100, "x" * 100),
        ],
    )
    def test_valid(self, raw, expected):
        assert sanitize_lead_id(raw) == expected

    @pytest.mark.parametrize("raw", ["", None, "   ", "$$$", "x" * 101, 123, ["id"]])
    def test_invalid(self, raw):
        assert sanitize_lead_id(raw) is None

    def test_non_ascii_word_characters_are_stripped(self):
        assert sanitize_lead_id("lead名字1") == "lead1"


class TestParseLimit:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, 10),
            ("", 10),
            ("abc", 10),
            ("5", 5),
            (" 7", 7),
            ("3.9", 3),
            ("7abc", 7),
            ("0", 1),
            ("-4", 1),
            ("25", 10),
            (4, 4),
            (True, 10),
        ],
    )
    def test_parse_and_clamp(self, raw, expected):
        assert parse_limit(raw) == expected

    def test_custom_bounds(self):
        assert parse_limit(None, default=5, maximum=8) == 5
        assert parse_limit("20", default=5, maximum=8) == 8
