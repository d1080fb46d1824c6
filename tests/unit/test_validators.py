"""
Unit tests for column validators.

Includes property-based testing with hypothesis for validators.
"""

from datetime import date, datetime

import pytest
from hypothesis import given
from hypothesis import strategies as st

from partner_etl.core.validators import (
    AllowedValuesValidator,
    RangeValidator,
    RegexValidator,
    RequiredFieldValidator,
    TypeValidator,
    ValidationError,
    parse_bool,
    parse_date,
)


@pytest.mark.unit
class TestRequiredFieldValidator:
    """Tests for RequiredFieldValidator"""

    def test_present_value_passes(self):
        validator = RequiredFieldValidator("fund_code")
        row = {"fund_code": "F100"}
        validator.validate(row["fund_code"], row)  # Should not raise

    def test_missing_column_fails(self):
        validator = RequiredFieldValidator("fund_code")

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(None, {"fund_name": "Alpha"})

        assert "missing" in exc_info.value.message.lower()
        assert exc_info.value.field_name == "fund_code"
        assert exc_info.value.rule_name == "required_field"

    def test_none_value_fails(self):
        validator = RequiredFieldValidator("fund_code")

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(None, {"fund_code": None})

        assert exc_info.value.message == "Value is required"

    def test_whitespace_fails_by_default(self):
        validator = RequiredFieldValidator("fund_code")

        with pytest.raises(ValidationError) as exc_info:
            validator.validate("   ", {"fund_code": "   "})

        assert "blank" in exc_info.value.message.lower()

    def test_empty_string_allowed_when_configured(self):
        validator = RequiredFieldValidator("fund_code", {"allow_empty_string": True})
        validator.validate("", {"fund_code": ""})  # Should not raise

    @given(st.text(min_size=1).filter(lambda s: s.strip() != ""))
    def test_property_any_nonblank_string_passes(self, value):
        """Property test: any non-blank string should pass"""
        validator = RequiredFieldValidator("field")
        validator.validate(value, {"field": value})


@pytest.mark.unit
class TestTypeValidator:
    """Tests for TypeValidator"""

    @pytest.mark.parametrize(
        "expected_type,value",
        [
            ("integer", 42),
            ("integer", "17"),
            ("integer", 3.0),
            ("decimal", 1.25),
            ("decimal", "0.75"),
            ("boolean", "oui"),
            ("boolean", True),
            ("date", date(2024, 9, 1)),
            ("date", datetime(2024, 9, 1, 0, 0)),
            ("date", "2024-09-01"),
            ("date", "01/09/2024"),
            ("string", "Alpha"),
            ("string", 100200),
        ],
    )
    def test_readable_values_pass(self, expected_type, value):
        TypeValidator("f", {"expected_type": expected_type}).validate(value, {"f": value})

    @pytest.mark.parametrize(
        "expected_type,value",
        [
            ("integer", "seventeen"),
            ("integer", 3.5),
            ("integer", True),
            ("decimal", "n/a"),
            ("boolean", "maybe"),
            ("date", "next tuesday"),
            ("date", 45000),
        ],
    )
    def test_unreadable_values_fail(self, expected_type, value):
        validator = TypeValidator("f", {"expected_type": expected_type})

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(value, {"f": value})

        assert exc_info.value.rule_name == "type_check"

    def test_blank_cell_is_not_a_type_failure(self):
        TypeValidator("f", {"expected_type": "date"}).validate(None, {"f": None})

    def test_aliases_resolve(self):
        assert TypeValidator("f", {"expected_type": "int"}).expected_type == "integer"
        assert TypeValidator("f", {"expected_type": "float"}).expected_type == "decimal"

    def test_strict_mode_rejects_text_numbers(self):
        validator = TypeValidator("f", {"expected_type": "integer", "coerce": False})

        with pytest.raises(ValidationError):
            validator.validate("17", {"f": "17"})

    def test_unsupported_type_is_a_configuration_error(self):
        with pytest.raises(ValueError, match="Unsupported type"):
            TypeValidator("f", {"expected_type": "currency"})

    def test_string_converter_keeps_numeric_codes_whole(self):
        assert TypeValidator("f", {"expected_type": "string"}).convert(100200.0) == "100200"

    @given(st.integers(min_value=-10**9, max_value=10**9))
    def test_property_integer_text_round_trips(self, value):
        """Property test: decimal text of an integer converts back to it"""
        assert TypeValidator("f", {"expected_type": "integer"}).convert(str(value)) == value


@pytest.mark.unit
class TestRangeValidator:
    """Tests for RangeValidator"""

    def test_inclusive_bounds(self):
        validator = RangeValidator("fee", {"min": 0, "max": 5})
        validator.validate(0, {})
        validator.validate(5, {})
        validator.validate("2.5", {})

        with pytest.raises(ValidationError, match="exceeds maximum"):
            validator.validate(5.01, {})
        with pytest.raises(ValidationError, match="less than minimum"):
            validator.validate(-1, {})

    def test_exclusive_bounds(self):
        validator = RangeValidator("fee", {"min_exclusive": 0})
        with pytest.raises(ValidationError):
            validator.validate(0, {})

    def test_date_bounds(self):
        validator = RangeValidator("inception_date", {"min": "2000-01-01"})
        validator.validate(date(2024, 9, 1), {})

        with pytest.raises(ValidationError):
            validator.validate("1999-12-31", {})

    def test_non_numeric_value_fails(self):
        with pytest.raises(ValidationError, match="numeric"):
            RangeValidator("fee", {"max": 5}).validate("lots", {})

    def test_requires_a_bound(self):
        with pytest.raises(ValueError):
            RangeValidator("fee", {})

    @given(st.floats(min_value=0, max_value=5, allow_nan=False))
    def test_property_values_within_bounds_pass(self, value):
        RangeValidator("fee", {"min": 0, "max": 5}).validate(value, {})


@pytest.mark.unit
class TestRegexValidator:
    """Tests for RegexValidator"""

    def test_document_number_pattern(self):
        validator = RegexValidator("document_number", {"pattern": r"^DOC-[0-9]{6}$"})
        validator.validate("DOC-000123", {})

        with pytest.raises(ValidationError, match="does not match"):
            validator.validate("DOC-12", {})

    def test_ignore_case(self):
        validator = RegexValidator("document_number", {"pattern": r"^doc-", "ignore_case": True})
        validator.validate("DOC-000123", {})

    def test_invalid_pattern_is_a_configuration_error(self):
        with pytest.raises(ValueError, match="Invalid regex"):
            RegexValidator("f", {"pattern": "(unclosed"})


@pytest.mark.unit
class TestAllowedValuesValidator:
    """Tests for AllowedValuesValidator"""

    def test_case_insensitive_by_default(self):
        validator = AllowedValuesValidator("active", {"values": ["Y", "N"]})
        validator.validate("y", {})
        validator.validate(" N ", {})

        with pytest.raises(ValidationError, match="is not one of"):
            validator.validate("maybe", {})

    def test_case_sensitive(self):
        validator = AllowedValuesValidator("active", {"values": ["Y"], "case_sensitive": True})
        with pytest.raises(ValidationError):
            validator.validate("y", {})

    def test_requires_values(self):
        with pytest.raises(ValueError):
            AllowedValuesValidator("active", {"values": []})


@pytest.mark.unit
class TestParsers:
    """Tests for the shared value parsers"""

    @pytest.mark.parametrize("text", ["true", "Yes", " y ", "OUI", "1"])
    def test_truthy_strings(self, text):
        assert parse_bool(text) is True

    @pytest.mark.parametrize("text", ["false", "No", "n", "non", "0"])
    def test_falsy_strings(self, text):
        assert parse_bool(text) is False

    def test_parse_date_formats(self):
        assert parse_date("2025-09-01") == date(2025, 9, 1)
        assert parse_date("01/09/2025") == date(2025, 9, 1)
        assert parse_date("2025/09/01") == date(2025, 9, 1)
        assert parse_date("2025-09-01T00:00:00") == date(2025, 9, 1)
        assert parse_date(datetime(2025, 9, 1, 12, 30)) == date(2025, 9, 1)

    @given(st.dates(min_value=date(1900, 1, 1)))
    def test_property_iso_text_parses_back(self, value):
        assert parse_date(value.isoformat()) == value
