"""Temporal field types - date and datetime"""

from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import Date, DateTime

from services.field_types.base import FieldType, FieldError, StorageShape, ValidationContext


def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DateFieldType(FieldType):
    handle = "date"
    label = "Date"
    description = "A calendar date (YYYY-MM-DD)."
    category = "date"
    format_modes = ("default", "iso", "custom")

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(Date(), needs_index=bool(settings.get("indexed")))

    def default_settings(self) -> dict:
        return {
            "min_date": None,
            "max_date": None,
            "format_pattern": "%Y-%m-%d",
        }

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        parsed = parse_date(value)
        if parsed is None:
            return [FieldError(f"'{value}' is not a valid date (expected YYYY-MM-DD).", code="invalid_date")]

        errors = []
        min_date = parse_date(settings.get("min_date"))
        max_date = parse_date(settings.get("max_date"))
        if min_date and parsed < min_date:
            errors.append(FieldError(f"The date cannot be earlier than {min_date.isoformat()}.", code="min_date"))
        if max_date and parsed > max_date:
            errors.append(FieldError(f"The date cannot be later than {max_date.isoformat()}.", code="max_date"))
        return errors

    def process_item(self, value: Any, settings: dict) -> Any:
        return parse_date(value)

    def from_storage(self, value: Any, settings: dict) -> Any:
        return parse_date(value) if value is not None else None

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        parsed = parse_date(value)
        if parsed is None:
            return value
        if mode == "custom":
            return parsed.strftime(settings.get("format_pattern") or "%Y-%m-%d")
        return parsed.isoformat()


class DateTimeFieldType(FieldType):
    handle = "datetime"
    label = "Date and time"
    description = "A timezone-aware timestamp (ISO 8601)."
    category = "date"
    format_modes = ("default", "iso", "timestamp", "custom")

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(DateTime(timezone=True), needs_index=bool(settings.get("indexed")))

    def default_settings(self) -> dict:
        return {
            "format_pattern": "%Y-%m-%d %H:%M:%S",
        }

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        if parse_datetime(value) is None:
            return [FieldError(f"'{value}' is not a valid ISO 8601 date and time.", code="invalid_datetime")]
        return []

    def process_item(self, value: Any, settings: dict) -> Any:
        parsed = parse_datetime(value)
        return parsed.astimezone(timezone.utc) if parsed is not None else None

    def from_storage(self, value: Any, settings: dict) -> Any:
        # SQLite hands back naive datetimes; values are always written as UTC
        return parse_datetime(value) if value is not None else None

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        parsed = parse_datetime(value)
        if parsed is None:
            return value
        if mode == "timestamp":
            return int(parsed.timestamp())
        if mode == "custom":
            return parsed.strftime(settings.get("format_pattern") or "%Y-%m-%d %H:%M:%S")
        return parsed.isoformat()
