"""Configuration import/export.

A portable configuration document is
``{name, description, rules, outputFormat}``. Import validates the document
shape, then parses rules into their typed variants so that a malformed
configuration is rejected before it can ever reach the interpreter.
"""

import json
import logging
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from mutate.core.errors import ConfigurationImportError
from mutate.core.id_gen import new_configuration_id
from mutate.core.models import Configuration, OutputFormat
from mutate.core.rules import RULE_TAGS, dump_rules, parse_rules

logger = logging.getLogger(__name__)


def _is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def validate_document(data: Any) -> list[str]:
    """Check the portable document shape. Returns a list of problems (empty if valid)."""
    if not isinstance(data, dict):
        return ["Configuration document must be an object"]

    errors: list[str] = []
    if not _is_non_empty_str(data.get("name")):
        errors.append("'name' must be a non-empty string")

    description = data.get("description")
    if description is not None and not isinstance(description, str):
        errors.append("'description' must be a string")

    rules = data.get("rules")
    if not isinstance(rules, list):
        errors.append("'rules' must be an array")
    else:
        for i, rule in enumerate(rules):
            if not isinstance(rule, dict):
                errors.append(f"rules[{i}] must be an object")
                continue
            if not _is_non_empty_str(rule.get("id")):
                errors.append(f"rules[{i}].id must be a non-empty string")
            if not _is_non_empty_str(rule.get("type")):
                errors.append(f"rules[{i}].type must be a non-empty string")
            elif rule["type"] not in RULE_TAGS:
                errors.append(f"rules[{i}].type '{rule['type']}' is not a known rule type")
            if not isinstance(rule.get("params"), dict):
                errors.append(f"rules[{i}].params must be an object")

    output_format = data.get("outputFormat")
    if not isinstance(output_format, dict) or output_format.get("type") != "CSV":
        errors.append("'outputFormat.type' must be \"CSV\"")

    return errors


def _format_validation_error(prefix: str, exc: ValidationError) -> list[str]:
    problems = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err["loc"])
        problems.append(f"{prefix}{'.' + location if location else ''}: {err['msg']}")
    return problems


def parse_document(
    data: Any,
    organization_id: str,
    configuration_id: Optional[str] = None,
    version: int = 1,
) -> Configuration:
    """Validate a portable document and build a Configuration from it.

    Raises ConfigurationImportError listing every problem found.
    """
    errors = validate_document(data)
    if errors:
        raise ConfigurationImportError(errors)

    try:
        rules = parse_rules(data["rules"])
    except ValidationError as e:
        raise ConfigurationImportError(_format_validation_error("rules", e)) from e

    try:
        output_format = OutputFormat.model_validate(data["outputFormat"])
    except ValidationError as e:
        raise ConfigurationImportError(_format_validation_error("outputFormat", e)) from e

    ids = [r.id for r in rules]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigurationImportError([f"Duplicate rule id(s): {', '.join(duplicates)}"])

    return Configuration(
        id=configuration_id or new_configuration_id(),
        organization_id=organization_id,
        name=data["name"].strip(),
        description=data.get("description"),
        rules=rules,
        output_format=output_format,
        version=version,
        is_active=True,
    )


def loads_document(text: str | bytes, file_name: Optional[str] = None) -> Any:
    """Decode a JSON (default) or YAML (.yaml/.yml file name) document."""
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ConfigurationImportError([f"Document is not valid UTF-8: {e}"]) from e
    is_yaml = bool(file_name) and file_name.lower().endswith((".yaml", ".yml"))
    try:
        if is_yaml:
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        kind = "YAML" if is_yaml else "JSON"
        raise ConfigurationImportError([f"Document is not valid {kind}: {e}"]) from e


def export_document(configuration: Configuration) -> dict[str, Any]:
    """Portable snapshot of a configuration, re-importable with parse_document."""
    document: dict[str, Any] = {
        "name": configuration.name,
        "description": configuration.description,
        "rules": dump_rules(configuration.rules),
        "outputFormat": configuration.output_format.model_dump(by_alias=True),
    }
    if document["description"] is None:
        del document["description"]
    return document
