"""Tests for coercion, payload hygiene and pagination helpers."""

import pytest

from workforge.core.coercion import to_safe_integer, to_safe_user_id
from workforge.core.types import get_field_type, get_storage_type, is_structured
from workforge.errors import BadRequest
from workforge.services.pagination import PageParams, PaginationService
from workforge.services.sanitize import sanitize_data, sanitize_filters


class TestToSafeInteger:
    @pytest.mark.parametrize("value,expected", [(5, 5), ("42", 42), (" 7 ", 7), (3.0, 3)])
    def test_accepts(self, value, expected):
        assert to_safe_integer(value) == expected

    @pytest.mark.parametrize("value", [None, True, False, "", "abc", "1.5", 2.5, [], {}, 0, -1])
    def test_rejects(self, value):
        with pytest.raises(BadRequest):
            to_safe_integer(value)

    def test_bounds(self):
        assert to_safe_integer(0, minimum=None) == 0
        assert to_safe_integer(-3, minimum=None) == -3
        with pytest.raises(BadRequest) as exc_info:
            to_safe_integer(11, "limit", maximum=10)
        assert exc_info.value.message == "limit must be at most 10"

    def test_field_name_in_message(self):
        with pytest.raises(BadRequest) as exc_info:
            to_safe_integer("x", "resourceId")
        assert "resourceId" in exc_info.value.message

    def test_user_id(self):
        assert to_safe_user_id("9") == 9
        assert to_safe_user_id("google-oauth2|123") is None
        assert to_safe_user_id(None) is None


class TestFieldTypes:
    def test_storage_by_dialect(self):
        assert get_storage_type("jsonb") == "TEXT"
        assert get_storage_type("jsonb", "postgresql") == "JSONB"
        assert get_storage_type("timestamp", "postgresql") == "TIMESTAMPTZ"

    def test_unknown_type_is_string(self):
        assert get_field_type("uuid").name == "string"

    def test_structured(self):
        assert is_structured("json") is True
        assert is_structured("text") is False


class TestSanitizeData:
    @pytest.fixture
    def metadata(self, registry):
        return registry.get_metadata("customer")

    def test_strings_are_trimmed(self, metadata):
        assert sanitize_data({"first_name": "  Ann  "}, metadata) == {"first_name": "Ann"}

    def test_email_and_enum_lowercased(self, metadata):
        clean = sanitize_data({"email": " A@B.COM ", "status": "Active"}, metadata)
        assert clean == {"email": "a@b.com", "status": "active"}

    @pytest.mark.parametrize(
        "raw,expected",
        [("true", True), ("Yes", True), ("1", True), ("off", False), ("0", False),
         ("", None), ("maybe", "maybe")],
    )
    def test_boolean_strings(self, metadata, raw, expected):
        assert sanitize_data({"is_active": raw}, metadata) == {"is_active": expected}

    def test_non_string_values_untouched(self, metadata):
        address = {"street": " 1 Main "}
        clean = sanitize_data({"is_active": False, "billing_address": address}, metadata)
        assert clean["is_active"] is False
        assert clean["billing_address"] is address

    def test_json_text_kept(self, metadata):
        clean = sanitize_data({"billing_address": ' {"a": 1} '}, metadata)
        assert clean["billing_address"] == ' {"a": 1} '

    def test_unknown_keys_pass_through(self, metadata):
        assert sanitize_data({"extra": "  x "}, metadata) == {"extra": "  x "}

    def test_integers(self, registry):
        work_order = registry.get_metadata("work_order")
        clean = sanitize_data({"customer_id": " 12 ", "assigned_technician_id": ""}, work_order)
        assert clean == {"customer_id": 12, "assigned_technician_id": None}

    def test_input_not_mutated(self, metadata):
        data = {"email": " X@Y.Z "}
        sanitize_data(data, metadata)
        assert data == {"email": " X@Y.Z "}


class TestSanitizeFilters:
    @pytest.fixture
    def metadata(self, registry):
        return registry.get_metadata("customer")

    def test_plain_values(self, metadata):
        clean = sanitize_filters({"is_active": "false", "status": " Active "}, metadata)
        assert clean == {"is_active": False, "status": "active"}

    def test_in_string_is_split_and_cleaned(self, metadata):
        clean = sanitize_filters({"is_active": {"in": "true, false,"}}, metadata)
        assert clean == {"is_active": {"in": [True, False]}}

    def test_in_list_is_cleaned(self, metadata):
        clean = sanitize_filters({"status": {"in": ["Active", " PENDING "]}}, metadata)
        assert clean == {"status": {"in": ["active", "pending"]}}

    def test_operator_operands(self, registry):
        work_order = registry.get_metadata("work_order")
        clean = sanitize_filters({"customer_id": {"gte": " 3 ", "not": None}}, work_order)
        assert clean == {"customer_id": {"gte": 3, "not": None}}

    def test_unknown_fields_pass_through(self, metadata):
        assert sanitize_filters({"colour": " Red "}, metadata) == {"colour": " Red "}


class TestPagination:
    @pytest.fixture
    def pagination(self):
        return PaginationService(default_limit=50, max_limit=200)

    def test_defaults(self, pagination):
        assert pagination.validate_params({}) == PageParams(page=1, limit=50)
        assert pagination.validate_params(None) == PageParams(page=1, limit=50)

    def test_clamping(self, pagination):
        assert pagination.validate_params({"page": -3, "limit": 0}) == PageParams(1, 1)
        assert pagination.validate_params({"page": "4", "limit": "999"}) == PageParams(4, 200)

    def test_invalid_values_fall_back(self, pagination):
        assert pagination.validate_params({"page": "abc", "limit": "x"}) == PageParams(1, 50)

    def test_offset(self):
        assert PageParams(page=3, limit=20).offset == 40

    def test_metadata(self, pagination):
        assert pagination.generate_metadata(2, 10, 25) == {
            "page": 2, "limit": 10, "total": 25, "totalPages": 3,
            "hasNext": True, "hasPrev": True,
        }

    def test_metadata_empty(self, pagination):
        meta = pagination.generate_metadata(1, 50, 0)
        assert meta["totalPages"] == 0
        assert meta["hasNext"] is False
        assert meta["hasPrev"] is False
