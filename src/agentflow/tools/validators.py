"""JSON Schema validation of tool arguments."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Type, Union

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


class SchemaValidator:
    """Validates payloads against JSON Schema documents or pydantic models.

    Compiled validators are cached by the canonical JSON of their schema.
    """

    def __init__(self) -> None:
        self.validators_cache: Dict[str, Draft7Validator] = {}

    def validate(
        self,
        data: Dict[str, Any],
        schema: Union[Dict[str, Any], Type[BaseModel], None],
    ) -> List[str]:
        """Return a list of human readable errors, empty when ``data`` is valid."""
        if not schema:
            return []
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            return self._validate_with_pydantic(data, schema)
        if isinstance(schema, dict):
            return self._validate_with_jsonschema(data, schema)
        return [f"Unsupported schema type: {type(schema).__name__}"]

    def check_schema(self, schema: Dict[str, Any]) -> None:
        """Raise ``SchemaError`` if ``schema`` is not a valid Draft 7 schema."""
        Draft7Validator.check_schema(schema)

    def _validate_with_pydantic(self, data: Dict[str, Any], model_class: Type[BaseModel]) -> List[str]:
        try:
            model_class(**data)
        except PydanticValidationError as e:
            return [
                f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ]
        return []

    def _validate_with_jsonschema(self, data: Dict[str, Any], schema: Dict[str, Any]) -> List[str]:
        schema_key = json.dumps(schema, sort_keys=True)
        validator = self.validators_cache.get(schema_key)
        if validator is None:
            try:
                Draft7Validator.check_schema(schema)
            except SchemaError as e:
                logger.error("Invalid tool schema: %s", e.message)
                return [f"Invalid schema: {e.message}"]
            validator = Draft7Validator(schema)
            self.validators_cache[schema_key] = validator

        errors = []
        for error in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]):
            path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
            errors.append(f"{path}: {error.message}")
        return errors
