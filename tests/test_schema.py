"""
Tests for schema discovery and the field map.
"""

import pytest

from src.crm_sync.schema import column_letter, discover, field_for_label


class TestDiscover:
    """Binding header cells to canonical fields."""

    def test_short_header_binds_in_order(self):
        field_map = discover(["Name", "Email", "Fund"])
        assert field_map.columns == {"name": 0, "email": 1, "organization": 2}

    def test_lowercase_header_with_compound_name(self):
        field_map = discover(["email", "company", "contact name"])
        assert field_map.columns == {"email": 0, "organization": 1, "name": 2}

    def test_discovery_is_deterministic(self):
        header = ["Investor", "E-mail", "Firm", "Status", "Meeting Date", "Meeting Time", "Notes"]
        assert discover(header).columns == discover(list(header)).columns

    def test_full_sheet_layout(self):
        header = [
            "Name", "Email", "Company", "Location", "About", "Meeting Status",
            "Meeting Date", "Meeting Time", "Last Contact", "With",
            "Calendar Link", "Meet Link", "Needs Response", "Notes",
        ]
        columns = discover(header).columns
        assert columns == {
            "name": 0, "email": 1, "organization": 2, "location": 3, "about": 4,
            "meeting_status": 5, "meeting_date": 6, "meeting_time": 7,
            "last_contact_date": 8, "attributed_member": 9, "calendar_link": 10,
            "meet_link": 11, "needs_response": 12, "notes": 13,
        }

    def test_each_cell_claimed_once(self):
        field_map = discover(["Meeting Date", "Meeting Time"])
        assert field_map.index("meeting_date") == 0
        assert field_map.index("meeting_time") == 1
        assert len(set(field_map.columns.values())) == len(field_map.columns)

    def test_empty_and_unknown_headers_stay_unmapped(self):
        field_map = discover(["Email", "", "Priority", "Name"])
        assert field_map.columns == {"email": 0, "name": 3}
        assert field_map.unmapped_indices == [1, 2]

    def test_missing_email_column_degrades(self):
        field_map = discover(["Name", "Company"])
        assert not field_map.has("email")
        assert field_map.has("name")


class TestFieldMapRows:
    """Reading and writing rows through the field map."""

    @pytest.fixture
    def field_map(self):
        """Field map with one unmapped column in the middle."""
        return discover(["Name", "Email", "Priority", "Notes"])

    def test_to_record_lowercases_email_and_keeps_raw(self, field_map):
        record = field_map.to_record(["Jane Doe", "Jane@X.com", "High"], 5)
        assert record.row_index == 5
        assert record.email == "jane@x.com"
        assert record.notes == ""
        assert record.raw == ["Jane Doe", "Jane@X.com", "High", ""]

    def test_to_row_preserves_unmapped_cells(self, field_map):
        base = ["Jane Doe", "jane@x.com", "High", "- met"]
        row = field_map.to_row({"notes": "- met\n- followed up"}, base)
        assert row == ["Jane Doe", "jane@x.com", "High", "- met\n- followed up"]

    def test_to_row_drops_unbound_fields(self, field_map):
        row = field_map.to_row({"name": "Sam", "meet_link": "https://meet"})
        assert row == ["Sam", "", "", ""]


class TestHelpers:

    @pytest.mark.parametrize("index,expected", [(0, "A"), (13, "N"), (25, "Z"), (26, "AA"), (27, "AB"), (701, "ZZ")])
    def test_column_letter(self, index, expected):
        assert column_letter(index) == expected

    def test_field_for_label(self):
        field_map = discover(["Name", "Email", "Stage", "Notes"])
        assert field_for_label("notes") == "notes"
        assert field_for_label("meeting_status") == "meeting_status"
        assert field_for_label("Stage", field_map) == "meeting_status"
        assert field_for_label("company") == "organization"
        assert field_for_label("") is None
