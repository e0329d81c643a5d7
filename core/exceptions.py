"""Typed errors raised by the entity engine.

Every error carries a stable ``code`` so the API layer can map it to a
response without knowing about the storage engine underneath.
"""

from typing import Any, Optional


class EntityEngineError(Exception):
    code = "entity_engine_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class DuplicateName(EntityEngineError):
    code = "duplicate_name"


class NotFound(EntityEngineError):
    code = "not_found"


class InvalidFieldType(EntityEngineError):
    code = "invalid_field_type"


class ImmutableFieldChange(EntityEngineError):
    code = "immutable_field_change"


class ValidationFailed(EntityEngineError):
    """Aggregated validation failure: field name -> list of messages."""
    code = "validation_failed"

    def __init__(self, errors: dict[str, list[str]], message: str = "Validation failed"):
        super().__init__(message)
        self.errors = {key: list(messages) for key, messages in errors.items() if messages}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "errors": self.errors}


class ReferenceNotFound(EntityEngineError):
    code = "reference_not_found"

    def __init__(self, target_type: str, target_id: Any):
        super().__init__(
            f"The referenced {target_type} '{target_id}' does not exist.",
            target_type=target_type,
            target_id=target_id,
        )


class ReferenceBundleMismatch(EntityEngineError):
    code = "reference_bundle_mismatch"

    def __init__(self, target_type: str, target_id: Any, bundle: Optional[str], allowed: list[str]):
        super().__init__(
            f"The referenced {target_type} '{target_id}' has bundle '{bundle}', "
            f"expected one of: {', '.join(allowed)}.",
            target_type=target_type,
            target_id=target_id,
            bundle=bundle,
            allowed=list(allowed),
        )


class SchemaMigrationFailed(EntityEngineError):
    code = "schema_migration_failed"


class StorageOperationFailed(EntityEngineError):
    code = "storage_operation_failed"
