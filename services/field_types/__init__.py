from services.field_types.base import FieldType, FieldError, StorageShape, ValidationContext
from services.field_types.registry import FieldTypeRegistry, build_default_registry
