"""Enumerated field types - list_string and list_integer"""

from typing import Any, Optional

from sqlalchemy import BigInteger, String

from services.field_types.base import FieldType, FieldError, StorageShape, ValidationContext
from services.field_types.numeric_types import INTEGER_MAX, INTEGER_MIN


class ListStringFieldType(FieldType):
    """
    A value picked from ``allowed_values``.

    ``allowed_values`` is either a mapping of key -> label or a plain list of
    keys (key and label are then the same).
    """
    handle = "list_string"
    label = "List (text)"
    description = "One or more values from a predefined list of text keys."
    category = "choice"
    format_modes = ("default", "label", "key")

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(String(255), needs_index=True)

    def default_settings(self) -> dict:
        return {
            "allowed_values": {},
            "multiple": False,
        }

    def validate_settings(self, settings: dict) -> list[str]:
        allowed = settings.get("allowed_values")
        if not isinstance(allowed, (dict, list)) or not allowed:
            return ["allowed_values must be a non-empty mapping or list."]
        if any(self.coerce_key(key) is None for key in allowed):
            return [f"allowed_values contains keys that are not valid for {self.handle}."]
        return []

    def coerce_key(self, value: Any) -> Any:
        return str(value)

    def allowed_options(self, settings: dict) -> dict:
        allowed = settings.get("allowed_values") or {}
        if isinstance(allowed, dict):
            return {self.coerce_key(key): label for key, label in allowed.items()}
        return {self.coerce_key(key): str(key) for key in allowed}

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        if isinstance(value, (dict, list, tuple, bool)):
            return [FieldError(f"The value \"{value}\" is not allowed.", code="not_allowed")]
        if self.coerce_key(value) not in self.allowed_options(settings):
            return [FieldError(f"The value \"{value}\" is not allowed.", code="not_allowed")]
        return []

    def process_item(self, value: Any, settings: dict) -> Any:
        return self.coerce_key(value)

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        if mode == "key":
            return value
        return self.allowed_options(settings).get(self.coerce_key(value), value)


class ListIntegerFieldType(ListStringFieldType):
    handle = "list_integer"
    label = "List (integer)"
    description = "One or more values from a predefined list of integer keys."

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(BigInteger(), needs_index=True)

    def coerce_key(self, value: Any) -> Any:
        if isinstance(value, bool):
            return None
        try:
            key = value if isinstance(value, int) else int(str(value).strip())
        except ValueError:
            return None
        return key if INTEGER_MIN <= key <= INTEGER_MAX else None

    def allowed_options(self, settings: dict) -> dict:
        options = super().allowed_options(settings)
        return {key: label for key, label in options.items() if key is not None}

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        if isinstance(value, float):
            if not value.is_integer():
                return [FieldError(f"The value \"{value}\" is not an integer.", code="invalid_type")]
            value = int(value)
        if self.coerce_key(value) is None:
            return [FieldError(f"The value \"{value}\" is not an integer.", code="invalid_type")]
        return super().validate_item(value, settings, context)

    def process_item(self, value: Any, settings: dict) -> Any:
        if isinstance(value, float):
            value = int(value)
        return self.coerce_key(value)
