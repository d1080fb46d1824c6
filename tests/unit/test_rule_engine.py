"""
Unit tests for RuleEngine and TemplateBuilder
"""

import pytest

from partner_etl.core.rules import RuleEngine, TemplateBuilder, column_rules


@pytest.mark.unit
class TestRuleEngine:
    """Tests for RuleEngine"""

    @pytest.fixture
    def engine(self):
        rules = [
            {"rule_name": "doc_required", "rule_type": "required_field", "field_name": "document_number"},
            {
                "rule_name": "doc_format",
                "rule_type": "regex",
                "field_name": "document_number",
                "parameters": {"pattern": r"^DOC-[0-9]{6}$"},
            },
            {
                "rule_name": "fee_range",
                "rule_type": "range",
                "field_name": "management_fee",
                "parameters": {"min": 0, "max": 5},
                "severity": "warning",
            },
            {
                "rule_name": "disabled_rule",
                "rule_type": "required_field",
                "field_name": "fund_code",
                "enabled": False,
            },
        ]
        return RuleEngine(rules)

    def test_clean_row_has_no_failures(self, engine):
        assert engine.check_row({"document_number": "DOC-000001", "management_fee": 1.5}) == []

    def test_all_failures_are_collected(self, engine):
        failures = engine.check_row({"document_number": "bad", "management_fee": 9})

        assert [(f.rule_name, f.severity) for f in failures] == [
            ("doc_format", "error"),
            ("fee_range", "warning"),
        ]
        assert failures[0].rule_type == "regex"
        assert failures[0].field_name == "document_number"

    def test_disabled_rules_are_skipped(self, engine):
        assert all(name != "disabled_rule" for name, _, _ in engine.validators)

    def test_unknown_rule_type_raises(self):
        with pytest.raises(ValueError, match="Unknown rule type"):
            RuleEngine([{"rule_name": "x", "rule_type": "checksum", "field_name": "f"}])

    def test_bad_parameters_name_the_rule(self):
        with pytest.raises(ValueError, match="doc_format"):
            RuleEngine([{"rule_name": "doc_format", "rule_type": "regex", "field_name": "f", "parameters": {}}])

    def test_rule_summary(self, engine):
        summary = engine.get_rule_summary()

        assert summary["total_rules"] == 3
        assert summary["rules_by_type"] == {"required_field": 1, "regex": 1, "range": 1}
        assert summary["rules_by_severity"] == {"error": 2, "warning": 1}


@pytest.mark.unit
class TestTemplateBuilder:
    """Tests for the fluent TemplateBuilder"""

    def test_builds_template_with_rules(self, fund_template):
        assert fund_template.name == "fund_documents"
        assert fund_template.client_id == "ACME"
        assert fund_template.translated_fields == ["fund_name"]
        assert fund_template.source == "builder"
        assert fund_template.fields == [
            "document_number", "fund_code", "fund_name", "inception_date", "filing_date",
        ]

    def test_column_rules_flatten_with_generated_names(self, fund_template):
        rules = column_rules(fund_template.sheets[0])

        names = [r["rule_name"] for r in rules]
        assert names[:2] == ["document_number_required_field_0", "document_number_regex_1"]
        assert {r["field_name"] for r in rules} == set(fund_template.fields)

    def test_for_sheet_builds_type_converters(self, fund_template):
        converters = RuleEngine.for_sheet(fund_template.sheets[0]).type_converters()
        assert set(converters) == {"fund_code", "inception_date", "filing_date"}

    def test_rule_before_column_is_refused(self):
        with pytest.raises(ValueError):
            TemplateBuilder("t", client_id="ACME").sheet("S").required()

    def test_column_before_sheet_is_refused(self):
        with pytest.raises(ValueError):
            TemplateBuilder("t", client_id="ACME").column("A", "a")
