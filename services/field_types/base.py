"""Base field type - the contract every registered field type implements"""

from dataclasses import dataclass
from typing import Any, Optional, TYPE_CHECKING

from sqlalchemy import Text
from sqlalchemy.types import TypeEngine

from core.exceptions import EntityEngineError
from core.logging_config import get_logger
from schemas.scope import Scope
from services.collaborators import AccessChecker, ObjectStore

if TYPE_CHECKING:
    from services.reference_resolver import ReferenceResolver

logger = get_logger(__name__)


@dataclass(frozen=True)
class StorageShape:
    """Physical shape of one field value: column type and index need"""
    column_type: TypeEngine
    needs_index: bool = False


@dataclass
class ValidationContext:
    """Everything a field type may consult while validating one value"""
    scope: Scope
    field_name: str
    required: bool = False
    record_id: Any = None
    references: Optional["ReferenceResolver"] = None
    objects: Optional[ObjectStore] = None
    access: Optional[AccessChecker] = None


class FieldError(str):
    """A validation message that also carries a machine readable code"""

    def __new__(cls, message: str, code: str = "invalid_value"):
        obj = super().__new__(cls, message)
        obj.code = code
        return obj

    @classmethod
    def from_exception(cls, exc: EntityEngineError) -> "FieldError":
        return cls(exc.message, code=exc.code)


class FieldType:
    """
    Base class for field types.

    Field types are stateless: every call receives the effective settings of
    the field (type defaults merged with the stored field settings, plus the
    ``multiple`` and ``required`` flags derived from the field definition).

    Subclasses usually override the ``*_item`` hooks only; the base class
    handles empty values, cardinality and error aggregation.
    """
    handle: str = "base"
    label: str = "Base Field Type"
    description: str = ""
    category: str = "general"

    # Settings that shape the physical column and so cannot change later
    structural_settings: tuple[str, ...] = ()

    # Rendering modes understood by format()
    format_modes: tuple[str, ...] = ("default",)

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(Text())

    def default_settings(self) -> dict:
        return {}

    def supports_multiple(self) -> bool:
        return True

    def validate_settings(self, settings: dict) -> list[str]:
        """Check the settings of a field definition; returns messages, never raises."""
        return []

    def weight(self) -> int:
        return 0

    def is_empty(self, value: Any) -> bool:
        return value is None or value == "" or value == [] or value == ()

    def validate(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        """Validate a value; returns every violation found, never raises."""
        errors: list[str] = []

        if self.is_empty(value):
            if settings.get("required") or context.required:
                errors.append(FieldError("This field is required.", code="required"))
            return errors

        multiple = bool(settings.get("multiple"))
        if isinstance(value, (list, tuple)):
            if not multiple and len(value) > 1:
                errors.append(FieldError("This field accepts a single value only.", code="single_value"))
                return errors
            items = [item for item in value if not self.is_empty(item)]
            if not items:
                if settings.get("required") or context.required:
                    errors.append(FieldError("This field is required.", code="required"))
                return errors
        else:
            items = [value]

        for item in items:
            try:
                errors.extend(self.validate_item(item, settings, context))
            except Exception as e:
                logger.exception(f"Field type '{self.handle}' failed validating '{context.field_name}'")
                errors.append(FieldError(f"The value could not be validated: {e}", code="validation_error"))

        try:
            errors.extend(self.validate_collection(items, settings, context))
        except Exception as e:
            logger.exception(f"Field type '{self.handle}' failed validating '{context.field_name}'")
            errors.append(FieldError(f"The value could not be validated: {e}", code="validation_error"))

        return errors

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        return []

    def validate_collection(self, values: list, settings: dict, context: ValidationContext) -> list[str]:
        return []

    def process(self, value: Any, settings: dict) -> Any:
        """Normalize a (validated) value; single vs. sequence follows cardinality."""
        multiple = bool(settings.get("multiple"))

        if self.is_empty(value):
            return [] if multiple else None

        if multiple:
            items = value if isinstance(value, (list, tuple)) else [value]
            return [self.process_item(item, settings) for item in items if not self.is_empty(item)]

        if isinstance(value, (list, tuple)):
            value = value[0]
        return self.process_item(value, settings)

    def process_item(self, value: Any, settings: dict) -> Any:
        return value

    def format(
        self,
        value: Any,
        settings: dict,
        mode: str = "default",
        context: Optional[ValidationContext] = None,
    ) -> Any:
        """Render a stored value for output in the requested mode."""
        if isinstance(value, (list, tuple)):
            return [self.format_item(item, settings, mode, context) for item in value]
        if value is None:
            return None
        return self.format_item(value, settings, mode, context)

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        return value

    # Column representation hooks, applied per item
    def to_storage(self, value: Any, settings: dict) -> Any:
        return value

    def from_storage(self, value: Any, settings: dict) -> Any:
        return value

    def describe(self) -> dict:
        return {
            "handle": self.handle,
            "label": self.label,
            "description": self.description,
            "category": self.category,
            "default_settings": self.default_settings(),
            "structural_settings": list(self.structural_settings),
            "format_modes": list(self.format_modes),
            "supports_multiple": self.supports_multiple(),
            "weight": self.weight(),
        }

    def __repr__(self):
        return f"<FieldType(handle='{self.handle}')>"
