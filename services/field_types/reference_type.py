"""Reference field type - points at a platform record or a template record"""

from typing import Any, Optional

from sqlalchemy import BigInteger, String

from core.exceptions import ReferenceNotFound, ReferenceBundleMismatch
from services.field_types.base import FieldType, FieldError, StorageShape, ValidationContext
from services.field_types.numeric_types import INTEGER_MAX, INTEGER_MIN
from services.reference_targets import ReferenceCheck


class ReferenceFieldType(FieldType):
    """
    Stores the identifier of another record.

    ``target_type`` is either a platform type served by a registered target
    provider (e.g. ``user``) or the name of a template in the same scope.
    Existence and bundle checks go through the Reference Resolver carried by
    the validation context.
    """
    handle = "reference"
    label = "Reference"
    description = "A reference to another record."
    category = "relation"
    structural_settings = ("target_id_type",)
    format_modes = ("default", "label", "entity")

    def storage_shape(self, settings: dict) -> StorageShape:
        if settings.get("target_id_type") == "string":
            return StorageShape(String(64), needs_index=True)
        return StorageShape(BigInteger(), needs_index=True)

    def default_settings(self) -> dict:
        return {
            "target_type": None,
            "target_bundles": [],
            "target_id_type": "integer",
            "sort": {"field": None, "direction": "ASC"},
            "auto_create": False,
        }

    def validate_settings(self, settings: dict) -> list[str]:
        errors = []
        if not settings.get("target_type"):
            errors.append("target_type is required.")
        if settings.get("target_id_type") not in ("integer", "string"):
            errors.append("target_id_type must be 'integer' or 'string'.")
        if not isinstance(settings.get("target_bundles") or [], list):
            errors.append("target_bundles must be a list.")
        return errors

    def weight(self) -> int:
        return 5

    def coerce_id(self, value: Any, settings: dict) -> Any:
        if isinstance(value, dict):
            value = value.get("id", value.get("target_id"))
        if settings.get("target_id_type") == "string":
            return None if value is None else str(value)
        if isinstance(value, bool):
            return None
        try:
            target_id = int(str(value).strip())
        except (TypeError, ValueError):
            return None
        return target_id if INTEGER_MIN <= target_id <= INTEGER_MAX else None

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        target_type = settings.get("target_type")
        if not target_type:
            return [FieldError("The reference field has no target type configured.", code="misconfigured")]

        target_id = self.coerce_id(value, settings)
        if target_id is None:
            return [FieldError(f"'{value}' is not a valid {target_type} identifier.", code="invalid_type")]

        errors = []
        if context.references is not None:
            bundles = settings.get("target_bundles") or []
            check = context.references.validate_reference(context.scope, target_type, bundles, target_id)
            if check is ReferenceCheck.NOT_FOUND:
                return [FieldError.from_exception(ReferenceNotFound(target_type, target_id))]
            if check is ReferenceCheck.BUNDLE_MISMATCH:
                bundle = context.references.bundle_of(context.scope, target_type, target_id)
                errors.append(FieldError.from_exception(
                    ReferenceBundleMismatch(target_type, target_id, bundle, bundles)
                ))

        if context.access is not None and not context.access.may_access(context.scope, target_type, target_id):
            errors.append(FieldError(
                f"You do not have access to the referenced {target_type} '{target_id}'.",
                code="access_denied",
            ))
        return errors

    def process_item(self, value: Any, settings: dict) -> Any:
        return self.coerce_id(value, settings)

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        if mode in ("label", "entity") and context is not None and context.references is not None:
            target = context.references.lookup(context.scope, settings.get("target_type"), [value]).get(value)
            if target is None:
                return None
            return target.get("label") if mode == "label" else target
        return value
