"""
Template validation of partner workbooks.

TemplateValidator checks a workbook against its template in one pass and
collects every failure: missing sheets, missing column headers, sheets with
no data, and column rule failures on each data row. It never touches the
database or blob storage.
"""

from typing import Any

from partner_etl.core.models.file_envelope import FileEnvelope
from partner_etl.core.models.template import SheetSpec, Template
from partner_etl.core.models.validation_result import ValidationMessage, ValidationResult
from partner_etl.core.rules import RuleEngine
from partner_etl.observability import metrics
from partner_etl.observability.logger import get_logger

from .excel_reader import (
    SheetRows,
    cell_location,
    find_sheet,
    is_blank_row,
    normalize_cell,
    read_workbook,
    to_staged_value,
)

logger = get_logger(__name__)


class _SheetLayout:
    """Where each template column sits in a worksheet."""

    def __init__(self, title: str, spec: SheetSpec, rows: SheetRows):
        self.title = title
        self.spec = spec
        self.rows = rows
        self.positions: dict[str, int] = {}
        self.missing_columns: list[str] = []
        self.has_header = len(rows) >= spec.header_row

        header_cells = rows[spec.header_row - 1] if self.has_header else ()
        headers = {
            str(normalize_cell(cell)).lower(): idx
            for idx, cell in enumerate(header_cells)
            if normalize_cell(cell) is not None
        }
        for column in spec.columns:
            idx = headers.get(column.header.strip().lower())
            if idx is None:
                if column.required:
                    self.missing_columns.append(column.header)
            else:
                self.positions[column.field] = idx

    def data_rows(self):
        """Yield (row_number, {field: value}) for every non-blank data row."""
        start = self.spec.header_row
        for offset, cells in enumerate(self.rows[start:], start=start + 1):
            if is_blank_row(cells):
                continue
            yield offset, {
                field: normalize_cell(cells[idx]) if idx < len(cells) else None
                for field, idx in self.positions.items()
            }


class TemplateValidator:
    """Validates file envelopes against templates."""

    def _layouts(self, envelope: FileEnvelope, template: Template) -> tuple[list[_SheetLayout], list[ValidationMessage]]:
        sheets = read_workbook(envelope.content, file_name=envelope.file_name)
        layouts = []
        messages = []
        for spec in template.sheets:
            title = find_sheet(sheets, spec.name)
            if title is None:
                messages.append(ValidationMessage(
                    location=spec.name,
                    message=f"Worksheet '{spec.name}' is missing",
                    rule_name="sheet_present",
                ))
                continue

            layout = _SheetLayout(title, spec, sheets[title])
            if not layout.has_header:
                messages.append(ValidationMessage(
                    location=f"{title}!{spec.header_row}",
                    message=f"Header row {spec.header_row} is missing",
                    rule_name="header_present",
                ))
                continue

            for header in layout.missing_columns:
                messages.append(ValidationMessage(
                    location=f"{title}!{spec.header_row}",
                    message=f"Column '{header}' is missing",
                    rule_name="column_present",
                ))
            layouts.append(layout)
        return layouts, messages

    def validate(self, envelope: FileEnvelope, template: Template) -> ValidationResult:
        """
        Validate a file against its template.

        Args:
            envelope: File to validate
            template: Resolved template

        Returns:
            ValidationResult with every error and warning found

        Raises:
            UnreadableFile: If the content cannot be opened as a workbook
        """
        layouts, errors = self._layouts(envelope, template)
        warnings: list[ValidationMessage] = []
        rows_checked = 0

        for layout in layouts:
            engine = RuleEngine.for_sheet(layout.spec)
            sheet_rows = 0
            for row_number, row in layout.data_rows():
                sheet_rows += 1
                for failure in engine.check_row(row):
                    # Missing columns are already reported once at header level
                    if failure.field_name not in layout.positions:
                        continue
                    message = ValidationMessage(
                        location=cell_location(layout.title, layout.positions[failure.field_name], row_number),
                        message=failure.message,
                        rule_name=failure.rule_name,
                        rule_type=failure.rule_type,
                        severity=failure.severity,
                    )
                    (errors if failure.severity == "error" else warnings).append(message)

            if sheet_rows == 0:
                errors.append(ValidationMessage(
                    location=layout.title,
                    message="Worksheet has no data rows",
                    rule_name="data_present",
                ))
            rows_checked += sheet_rows

        for message in (*errors, *warnings):
            metrics.increment_counter(
                metrics.validation_failures_total, template=template.name, rule_type=message.rule_type
            )

        result = ValidationResult(
            passed=not errors,
            messages=tuple(errors),
            warnings=tuple(warnings),
            rows_checked=rows_checked,
        )
        logger.info(
            "Validation finished",
            extra={
                "file_name": envelope.file_name,
                "template": template.name,
                "passed": result.passed,
                "errors": len(errors),
                "warnings": len(warnings),
                "rows_checked": rows_checked,
            },
        )
        return result

    def extract_rows(self, envelope: FileEnvelope, template: Template) -> list[dict[str, Any]]:
        """
        Data rows of every template sheet as {field: value} maps.

        Values of type-checked columns are converted to their column type;
        dates are returned as ISO strings.
        """
        layouts, _ = self._layouts(envelope, template)
        rows = []
        for layout in layouts:
            converters = RuleEngine.for_sheet(layout.spec).type_converters()
            for _, row in layout.data_rows():
                for field, value in row.items():
                    converter = converters.get(field)
                    if converter is not None and value is not None:
                        try:
                            value = converter.convert(value)
                        except (ValueError, TypeError):
                            # warning-severity type rules let such values through
                            pass
                    row[field] = to_staged_value(value)
                rows.append(row)
        return rows
