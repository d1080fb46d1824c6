"""
Template resolution.

Templates come from a directory of YAML definitions and Excel template
workbooks, or are registered in code. A file resolves to a template by its
declared template name, which defaults to the file name with extension and
trailing numeric segments (dates, sequence numbers) removed.
"""

import re
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from partner_etl.core.errors import TemplateDefinitionError, TemplateNotFound, UnreadableFile
from partner_etl.core.models.file_envelope import FileEnvelope
from partner_etl.core.models.template import Template
from partner_etl.core.rules import RuleEngine
from partner_etl.observability.logger import get_logger

from .excel_reader import normalize_cell, read_workbook

logger = get_logger(__name__)

_TRAILING_NUMBER_RE = re.compile(r"[_\-]\d+$")
_FIELD_RE = re.compile(r"[^a-z0-9]+")

META_SHEET = "_template"


def derive_template_name(file_name: str) -> str:
    """
    Template name declared by a file name.

    Examples:
        >>> derive_template_name("Fund_Documents_20250901_2.xlsx")
        'fund_documents'
        >>> derive_template_name("unknown_report-7.xlsx")
        'unknown_report'
    """
    stem = Path(file_name).stem.strip().lower()
    while True:
        trimmed = _TRAILING_NUMBER_RE.sub("", stem)
        if trimmed == stem or not trimmed:
            break
        stem = trimmed
    return stem


def field_name_for_header(header: str) -> str:
    """Staged field name derived from a column header ("Fund Code" -> "fund_code")."""
    return _FIELD_RE.sub("_", header.strip().lower()).strip("_")


def load_yaml_template(path: str | Path) -> Template:
    """
    Load a template from a YAML definition.

    Expected YAML format:
    ```yaml
    name: fund_documents          # defaults to the file stem
    client_id: ACME
    translated_fields: [fund_name]
    sheets:
      - name: Funds
        header_row: 1
        columns:
          - header: Document Number
            field: document_number
            rules:
              - type: required_field
              - type: regex
                params:
                  pattern: "^DOC-[0-9]{6}$"
    ```

    Raises:
        TemplateDefinitionError: If the YAML is invalid or the definition is malformed
    """
    path = Path(path)
    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise TemplateDefinitionError(f"Invalid YAML in {path.name}: {e}") from e

    if not isinstance(config, dict):
        raise TemplateDefinitionError(f"Template definition {path.name} must be a mapping")

    config.setdefault("name", path.stem)
    config["source"] = str(path)
    return _build_template(config, path.name)


def load_xlsx_template(
    source: str | Path | bytes,
    name: str | None = None,
    client_id: str | None = None,
) -> Template:
    """
    Load a template from an Excel template workbook.

    Each worksheet is a required sheet; its first row lists the required
    column headers. An optional second row gives the column types
    (string, integer, decimal, boolean, date), optionally followed by
    ", required" to require a value in every data row. An optional
    "_template" worksheet holds key/value rows: client_id, translated_fields
    (comma separated), target_language.

    Raises:
        TemplateDefinitionError: If the workbook defines no usable sheet
    """
    if isinstance(source, bytes):
        content, label = source, name or "<bytes>"
    else:
        path = Path(source)
        content, label = path.read_bytes(), path.name
        name = name or derive_template_name(path.name)

    try:
        sheets = read_workbook(content, file_name=label)
    except UnreadableFile as e:
        raise TemplateDefinitionError(f"Template workbook {label} is unreadable: {e.message}") from e

    meta: dict[str, Any] = {}
    for title, rows in sheets.items():
        if title.strip().lower() == META_SHEET:
            for row in rows:
                if len(row) >= 2 and normalize_cell(row[0]) is not None:
                    meta[str(row[0]).strip().lower()] = normalize_cell(row[1])

    sheet_defs = []
    for title, rows in sheets.items():
        if title.strip().lower() == META_SHEET or not rows:
            continue
        headers = [normalize_cell(h) for h in rows[0]]
        types = [normalize_cell(t) for t in rows[1]] if len(rows) > 1 else []
        columns = []
        for idx, header in enumerate(headers):
            if header is None:
                continue
            column: dict[str, Any] = {"header": str(header), "field": field_name_for_header(str(header)), "rules": []}
            type_cell = types[idx] if idx < len(types) else None
            if type_cell:
                parts = [p.strip().lower() for p in str(type_cell).split(",")]
                if "required" in parts[1:]:
                    column["rules"].append({"type": "required_field"})
                column["rules"].append({"type": "type_check", "params": {"expected_type": parts[0]}})
            columns.append(column)
        if columns:
            sheet_defs.append({"name": title, "header_row": 1, "columns": columns})

    translated = meta.get("translated_fields")
    config = {
        "name": name,
        "client_id": meta.get("client_id") or client_id,
        "sheets": sheet_defs,
        "translated_fields": [t.strip() for t in str(translated).split(",")] if translated else [],
        "target_language": meta.get("target_language") or "fr",
        "source": label,
    }
    return _build_template(config, label)


def _build_template(config: dict[str, Any], label: str) -> Template:
    try:
        template = Template.model_validate(config)
    except ValidationError as e:
        raise TemplateDefinitionError(f"Malformed template {label}: {e}") from e

    # Rule parameters are only checked when validators are built
    for sheet in template.sheets:
        try:
            RuleEngine.for_sheet(sheet)
        except ValueError as e:
            raise TemplateDefinitionError(f"Malformed template {label}: {e}") from e
    return template


class TemplateResolver:
    """
    Registry of templates by name.

    Args:
        template_dir: Directory scanned for *.yaml, *.yml and *.xlsx definitions
        default_client_id: Client for Excel templates without a _template sheet
    """

    def __init__(self, template_dir: str | Path | None = None, default_client_id: str | None = None):
        self.template_dir = Path(template_dir) if template_dir else None
        self.default_client_id = default_client_id
        self._templates: dict[str, Template] = {}
        self._lock = threading.Lock()
        if self.template_dir is not None:
            self.load()

    def load(self) -> int:
        """
        (Re)load every definition in the template directory.

        Returns:
            Number of templates loaded
        """
        if self.template_dir is None or not self.template_dir.is_dir():
            raise TemplateDefinitionError(f"Template directory not found: {self.template_dir}")

        loaded = []
        for path in sorted(self.template_dir.iterdir()):
            if path.name.startswith(("~$", ".")):
                continue
            suffix = path.suffix.lower()
            if suffix in (".yaml", ".yml"):
                loaded.append(load_yaml_template(path))
            elif suffix == ".xlsx":
                loaded.append(load_xlsx_template(path, client_id=self.default_client_id))

        for template in loaded:
            self.register(template)

        logger.info(
            "Templates loaded",
            extra={"template_dir": str(self.template_dir), "count": len(loaded)},
        )
        return len(loaded)

    def register(self, template: Template) -> None:
        key = template.name.lower()
        with self._lock:
            existing = self._templates.get(key)
            if existing is not None and existing.source != template.source:
                raise TemplateDefinitionError(
                    f"Template '{template.name}' defined twice ({existing.source}, {template.source})"
                )
            self._templates[key] = template

    def resolve(self, name: str) -> Template:
        """
        Look up a template by name (case-insensitive).

        Raises:
            TemplateNotFound: No template has that name
        """
        with self._lock:
            template = self._templates.get(name.strip().lower())
        if template is None:
            raise TemplateNotFound(name)
        return template

    def resolve_for(self, envelope: FileEnvelope) -> Template:
        """Resolve the envelope's explicit template name, or the one its file name declares."""
        name = envelope.template_name or derive_template_name(envelope.file_name)
        try:
            return self.resolve(name)
        except TemplateNotFound as e:
            e.file_name = envelope.file_name
            e.stage = "Validating"
            raise

    def names(self) -> list[str]:
        with self._lock:
            return sorted(t.name for t in self._templates.values())

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name.strip().lower() in self._templates

    def __len__(self) -> int:
        with self._lock:
            return len(self._templates)
