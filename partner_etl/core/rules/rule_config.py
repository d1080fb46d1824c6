"""
Rule configuration for template columns.

Turns the rule lists declared on template columns into the flat rule
dictionaries the RuleEngine consumes, and offers a fluent builder for
defining templates in code (tests, ad hoc registrations).
"""

from typing import Any

from partner_etl.core.models.template import ColumnSpec, RuleSpec, SheetSpec, Template


def column_rules(sheet: SheetSpec) -> list[dict[str, Any]]:
    """
    Flatten the rules of every column of a sheet.

    Returns:
        List of rule dictionaries suitable for RuleEngine, in column order
    """
    rules = []
    for column in sheet.columns:
        for idx, spec in enumerate(column.rules):
            rules.append({
                "rule_name": spec.name or f"{column.field}_{spec.type}_{idx}",
                "rule_type": spec.type,
                "field_name": column.field,
                "parameters": dict(spec.params),
                "severity": spec.severity,
                "enabled": spec.enabled,
            })
    return rules


class TemplateBuilder:
    """
    Programmatically build a Template.

    Usage:
        template = (
            TemplateBuilder("fund_documents", client_id="ACME")
            .sheet("Funds")
            .column("Document Number", "document_number").required()
            .column("Inception Date", "inception_date").type_check("date")
            .translate("fund_name")
            .build()
        )

    Rule methods apply to the most recently added column.
    """

    def __init__(self, name: str, client_id: str, target_language: str = "fr"):
        self.name = name
        self.client_id = client_id
        self.target_language = target_language
        self.sheets: list[dict[str, Any]] = []
        self.translated_fields: list[str] = []

    def sheet(self, name: str, header_row: int = 1) -> "TemplateBuilder":
        self.sheets.append({"name": name, "header_row": header_row, "columns": []})
        return self

    def column(self, header: str, field: str, required: bool = True) -> "TemplateBuilder":
        if not self.sheets:
            raise ValueError("Add a sheet before adding columns")
        self.sheets[-1]["columns"].append({"header": header, "field": field, "required": required, "rules": []})
        return self

    def _add_rule(self, rule_type: str, params: dict[str, Any], severity: str = "error") -> "TemplateBuilder":
        if not self.sheets or not self.sheets[-1]["columns"]:
            raise ValueError("Add a column before adding rules")
        self.sheets[-1]["columns"][-1]["rules"].append(
            {"type": rule_type, "params": params, "severity": severity}
        )
        return self

    def required(self, allow_empty_string: bool = False) -> "TemplateBuilder":
        return self._add_rule("required_field", {"allow_empty_string": allow_empty_string})

    def type_check(self, expected_type: str, coerce: bool = True) -> "TemplateBuilder":
        return self._add_rule("type_check", {"expected_type": expected_type, "coerce": coerce})

    def range(
        self,
        min_value: Any = None,
        max_value: Any = None,
        severity: str = "error",
    ) -> "TemplateBuilder":
        params = {}
        if min_value is not None:
            params["min"] = min_value
        if max_value is not None:
            params["max"] = max_value
        return self._add_rule("range", params, severity)

    def regex(self, pattern: str, severity: str = "error") -> "TemplateBuilder":
        return self._add_rule("regex", {"pattern": pattern}, severity)

    def allowed_values(self, values: list[Any], severity: str = "error") -> "TemplateBuilder":
        return self._add_rule("allowed_values", {"values": list(values)}, severity)

    def translate(self, field: str) -> "TemplateBuilder":
        self.translated_fields.append(field)
        return self

    def build(self) -> Template:
        return Template(
            name=self.name,
            client_id=self.client_id,
            sheets=[
                SheetSpec(
                    name=s["name"],
                    header_row=s["header_row"],
                    columns=[
                        ColumnSpec(
                            header=c["header"],
                            field=c["field"],
                            required=c["required"],
                            rules=[RuleSpec(**r) for r in c["rules"]],
                        )
                        for c in s["columns"]
                    ],
                )
                for s in self.sheets
            ],
            translated_fields=self.translated_fields,
            target_language=self.target_language,
            source="builder",
        )
