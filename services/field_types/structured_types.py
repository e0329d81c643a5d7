"""Boolean and JSON field types"""

import json
from typing import Any, Optional

from sqlalchemy import Boolean, JSON

from services.field_types.base import FieldType, FieldError, StorageShape, ValidationContext

TRUE_VALUES = {"1", "true", "yes", "on", "y"}
FALSE_VALUES = {"0", "false", "no", "off", "n"}


def parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_VALUES:
            return True
        if text in FALSE_VALUES:
            return False
    return None


class BooleanFieldType(FieldType):
    handle = "boolean"
    label = "Boolean"
    description = "A true/false flag."
    category = "general"
    format_modes = ("default", "yes_no", "on_off")

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(Boolean())

    def default_settings(self) -> dict:
        return {
            "default_value": None,
            "on_label": "Yes",
            "off_label": "No",
        }

    def supports_multiple(self) -> bool:
        return False

    def is_empty(self, value: Any) -> bool:
        # False is a value, not an absence
        return value is None or value == ""

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        if parse_bool(value) is None:
            return [FieldError(f"'{value}' is not a valid boolean.", code="invalid_type")]
        return []

    def process_item(self, value: Any, settings: dict) -> Any:
        return parse_bool(value)

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        flag = parse_bool(value)
        if mode == "yes_no":
            if flag:
                return settings.get("on_label") or "Yes"
            return settings.get("off_label") or "No"
        if mode == "on_off":
            return "On" if flag else "Off"
        return flag


class JsonFieldType(FieldType):
    """Structured data stored in one JSON column."""
    handle = "json"
    label = "JSON"
    description = "Arbitrary structured data (objects, arrays, scalars)."
    category = "structured"
    format_modes = ("default", "pretty")

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(JSON())

    def default_settings(self) -> dict:
        return {
            "schema_keys": [],
        }

    def supports_multiple(self) -> bool:
        return False

    def is_empty(self, value: Any) -> bool:
        return value is None or value == ""

    def validate(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        # A list is one JSON document here, not a sequence of values
        if self.is_empty(value):
            if settings.get("required") or context.required:
                return [FieldError("This field is required.", code="required")]
            return []
        return self.validate_item(value, settings, context)

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError as e:
                return [FieldError(f"The value is not valid JSON: {e}", code="invalid_json")]
        try:
            json.dumps(value)
        except (TypeError, ValueError) as e:
            return [FieldError(f"The value cannot be serialized to JSON: {e}", code="invalid_json")]

        required_keys = settings.get("schema_keys") or []
        if required_keys:
            if not isinstance(value, dict):
                return [FieldError("The value must be a JSON object.", code="invalid_json")]
            missing = [key for key in required_keys if key not in value]
            if missing:
                return [FieldError(f"Missing required keys: {', '.join(missing)}.", code="missing_keys")]
        return []

    def process(self, value: Any, settings: dict) -> Any:
        if self.is_empty(value):
            return None
        if isinstance(value, str):
            return json.loads(value)
        return value

    def format(self, value: Any, settings: dict, mode: str = "default", context: Optional[ValidationContext] = None) -> Any:
        if mode == "pretty" and value is not None:
            return json.dumps(value, indent=2, sort_keys=True)
        return value
