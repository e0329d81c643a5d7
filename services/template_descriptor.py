"""Runtime type descriptor for entity templates.

A descriptor is the in-memory view of a template that the record store works
against: which fields exist, which field type handles each of them, the
effective settings, and where the value lives physically (a column of the
primary table or a child table).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Optional

from core.logging_config import get_logger
from schemas.scope import Scope
from services.field_types.base import FieldType

logger = get_logger(__name__)

# Keys every record carries, in output order
SYSTEM_KEYS = ("id", "uuid", "tenant_id", "project_id", "created", "updated", "status")


@dataclass(frozen=True)
class FieldBinding:
    name: str
    label: str
    type: str
    field_type: FieldType
    settings: dict
    required: bool
    cardinality: str
    weight: int
    column: Optional[str] = None
    child_table: Optional[str] = None

    @property
    def multiple(self) -> bool:
        return self.cardinality == "multi"

    @property
    def is_reference(self) -> bool:
        return self.type == "reference"

    @property
    def is_hidden(self) -> bool:
        return bool(self.settings.get("hide_in_api"))

    @property
    def is_system(self) -> bool:
        """Field stored in a system column (only `status` can be claimed)"""
        return self.name in SYSTEM_KEYS


@dataclass(frozen=True)
class TemplateDescriptor:
    template_id: uuid.UUID
    scope: Scope
    name: str
    label: str
    table_name: str
    status: str
    settings: dict
    bindings: tuple[FieldBinding, ...] = field(default_factory=tuple)

    def binding(self, name: str) -> Optional[FieldBinding]:
        for binding in self.bindings:
            if binding.name == name:
                return binding
        return None

    @property
    def field_names(self) -> list[str]:
        return [binding.name for binding in self.bindings]

    @property
    def single_bindings(self) -> list[FieldBinding]:
        return [binding for binding in self.bindings if not binding.multiple]

    @property
    def column_bindings(self) -> list[FieldBinding]:
        """Single-valued fields that own a column of the primary table"""
        return [binding for binding in self.bindings if not binding.multiple and not binding.is_system]

    @property
    def multi_bindings(self) -> list[FieldBinding]:
        return [binding for binding in self.bindings if binding.multiple]

    @property
    def reference_bindings(self) -> list[FieldBinding]:
        return [binding for binding in self.bindings if binding.is_reference]

    def record_from_row(self, row: dict, include_hidden: bool = False) -> dict:
        """Storage row -> record dict (system keys first, then fields by weight)"""
        record = {}
        for key in SYSTEM_KEYS:
            value = row.get(key)
            if key in ("created", "updated") and isinstance(value, datetime) and value.tzinfo is None:
                # SQLite drops the offset; timestamps are always written as UTC
                value = value.replace(tzinfo=timezone.utc)
            record[key] = value

        for binding in self.bindings:
            if binding.is_hidden and not include_hidden:
                continue
            raw = row.get(binding.name)
            if binding.multiple:
                record[binding.name] = [binding.field_type.from_storage(item, binding.settings) for item in raw or []]
            else:
                record[binding.name] = None if raw is None else binding.field_type.from_storage(raw, binding.settings)
        return record

    @property
    def label_field(self) -> Optional[str]:
        """Field used as the display label of records (e.g. in reference pickers)"""
        configured = self.settings.get("label_field")
        if configured and self.binding(configured) is not None:
            return configured
        for binding in self.single_bindings:
            if binding.type in ("string", "email"):
                return binding.name
        return None


def effective_settings(field_type: FieldType, settings: Optional[dict], cardinality: str, required: bool) -> dict:
    """Type defaults, overlaid with the stored settings and the structural flags"""
    return {
        **field_type.default_settings(),
        **(settings or {}),
        "multiple": cardinality == "multi",
        "required": required,
    }


class DescriptorCache:
    """Descriptors keyed by template id; mutations must evict before returning."""

    def __init__(self):
        self._descriptors: dict[uuid.UUID, TemplateDescriptor] = {}
        self._lock = RLock()

    def get_or_build(
        self,
        template_id: uuid.UUID,
        builder: Callable[[uuid.UUID], TemplateDescriptor],
    ) -> TemplateDescriptor:
        with self._lock:
            descriptor = self._descriptors.get(template_id)
        if descriptor is not None:
            return descriptor

        descriptor = builder(template_id)
        with self._lock:
            self._descriptors[template_id] = descriptor
        return descriptor

    def peek(self, template_id: uuid.UUID) -> Optional[TemplateDescriptor]:
        with self._lock:
            return self._descriptors.get(template_id)

    def invalidate(self, template_id: Any) -> None:
        with self._lock:
            if self._descriptors.pop(template_id, None) is not None:
                logger.debug(f"Evicted descriptor for template {template_id}")

    def clear(self) -> None:
        with self._lock:
            self._descriptors.clear()

    def __contains__(self, template_id: Any) -> bool:
        with self._lock:
            return template_id in self._descriptors

    def __len__(self) -> int:
        with self._lock:
            return len(self._descriptors)
