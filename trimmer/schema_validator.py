#!/usr/bin/env python3
"""JSON Schema validation wrapper using jsonschema library."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from jsonschema import Draft202012Validator, ValidationError


SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"


class SchemaValidator:
    """Validates payloads against JSON schemas with caching for performance."""

    def __init__(self, base_dir: Path = SCHEMA_DIR):
        self.base_dir = base_dir
        self._validators: Dict[str, Draft202012Validator] = {}

    def _validator(self, schema_name: str) -> Draft202012Validator:
        if schema_name not in self._validators:
            schema_path = self.base_dir / schema_name
            with schema_path.open("r", encoding="utf-8") as handle:
                schema = json.load(handle)
            self._validators[schema_name] = Draft202012Validator(
                schema, format_checker=Draft202012Validator.FORMAT_CHECKER
            )
        return self._validators[schema_name]

    def validate(self, payload: Dict[str, Any], schema_name: str) -> None:
        """
        Validate a payload against a named schema.

        Args:
            payload: Data to validate
            schema_name: Name of schema file (e.g., "run-state.schema.json")

        Raises:
            ValueError: If validation fails, with detailed error messages
        """
        try:
            self._validator(schema_name).validate(payload)
        except ValidationError as e:
            error_path = ".".join(str(p) for p in e.path) if e.path else "root"
            raise ValueError(
                f"Schema validation failed ({schema_name}):\n- At '{error_path}': {e.message}"
            ) from e
        except FileNotFoundError as e:
            raise ValueError(f"Schema file not found: {schema_name}") from e
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in schema {schema_name}: {e}") from e
