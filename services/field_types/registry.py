"""Field Type Registry - explicit catalogue of field types keyed by handle"""

from typing import Optional

from core.exceptions import InvalidFieldType
from core.logging_config import get_logger
from services.field_types.base import FieldType
from services.field_types.list_types import ListStringFieldType, ListIntegerFieldType
from services.field_types.media_types import FileFieldType, ImageFieldType
from services.field_types.numeric_types import IntegerFieldType, DecimalFieldType
from services.field_types.reference_type import ReferenceFieldType
from services.field_types.structured_types import BooleanFieldType, JsonFieldType
from services.field_types.temporal_types import DateFieldType, DateTimeFieldType
from services.field_types.text_types import (
    StringFieldType,
    TextFieldType,
    EmailFieldType,
    UrlFieldType,
    PasswordFieldType,
)

logger = get_logger(__name__)


class FieldTypeRegistry:
    """
    Registry of field type instances.

    Populated once at startup and handed to whoever needs it; there is no
    module level instance and no package scanning.
    """

    def __init__(self):
        self._field_types: dict[str, FieldType] = {}

    def register(self, field_type: FieldType) -> None:
        handle = field_type.handle
        if handle in self._field_types:
            raise ValueError(f"Field type '{handle}' is already registered")
        self._field_types[handle] = field_type
        logger.debug(f"Registered field type: {handle} ({field_type.label})")

    def get(self, handle: str) -> FieldType:
        field_type = self._field_types.get(handle)
        if field_type is None:
            raise InvalidFieldType(f"Unknown field type '{handle}'", type=handle)
        return field_type

    def exists(self, handle: str) -> bool:
        return handle in self._field_types

    def all(self) -> list[FieldType]:
        """All field types, lowest weight first"""
        return sorted(self._field_types.values(), key=lambda ft: (ft.weight(), ft.handle))

    def describe(self) -> list[dict]:
        return [field_type.describe() for field_type in self.all()]

    def __contains__(self, handle: str) -> bool:
        return self.exists(handle)

    def __len__(self) -> int:
        return len(self._field_types)


def build_default_registry(password_schemes: Optional[list[str]] = None) -> FieldTypeRegistry:
    """Registry holding every built-in field type"""
    registry = FieldTypeRegistry()
    for field_type in (
        StringFieldType(),
        TextFieldType(),
        EmailFieldType(),
        UrlFieldType(),
        PasswordFieldType(schemes=password_schemes),
        IntegerFieldType(),
        DecimalFieldType(),
        BooleanFieldType(),
        DateFieldType(),
        DateTimeFieldType(),
        ListStringFieldType(),
        ListIntegerFieldType(),
        JsonFieldType(),
        ReferenceFieldType(),
        FileFieldType(),
        ImageFieldType(),
    ):
        registry.register(field_type)

    logger.info(f"Field type registry ready with {len(registry)} field types")
    return registry
