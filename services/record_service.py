"""Record Service - CRUD on template records through the field type contract"""

import uuid
from typing import Any, Optional, Union

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import NotFound, StorageOperationFailed, ValidationFailed
from core.logging_config import get_logger
from models.base import utcnow
from repositories.record_repository import RecordRepository
from repositories.template_repository import TemplateRepository
from schemas.record import RecordPage, RecordQuery
from services.collaborators import AccessChecker, ObjectStore
from services.field_types import ValidationContext
from services.field_types.numeric_types import INTEGER_MAX, INTEGER_MIN
from services.reference_resolver import ReferenceResolver
from services.schema_synthesizer import SchemaSynthesizer
from services.table_builder import DEFAULT_RECORD_STATUS, STATUS_MAX_LENGTH, SYSTEM_COLUMNS
from services.template_descriptor import FieldBinding, TemplateDescriptor

logger = get_logger(__name__)

# System keys a caller may supply on write
WRITABLE_SYSTEM_KEYS = ("uuid", "status")

FormatMode = Union[str, dict[str, str], None]


def pydantic_errors(exc: ValidationError) -> dict[str, list[str]]:
    """Pydantic errors -> field name -> messages"""
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        key = ".".join(str(part) for part in error["loc"]) or "__root__"
        errors.setdefault(key, []).append(error["msg"])
    return errors


class RecordService:
    """
    Creates, reads, updates, deletes and lists records of one template at a time.

    Writes validate every supplied field through its field type, aggregate all
    messages and refuse the whole write on any error. Reads hydrate references
    and optionally format values for a rendering mode. Every statement is
    limited to the template's tenant/project.
    """

    def __init__(
        self,
        session: Session,
        synthesizer: SchemaSynthesizer,
        resolver: ReferenceResolver,
        objects: Optional[ObjectStore] = None,
        access: Optional[AccessChecker] = None,
        default_page_size: int = 50,
        max_page_size: int = 1000,
    ):
        self.session = session
        self.synthesizer = synthesizer
        self.resolver = resolver
        self.objects = objects
        self.access = access
        self.templates = TemplateRepository(session)
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    # Helpers

    def _descriptor(self, template_id: Any) -> TemplateDescriptor:
        return self.synthesizer.descriptor(as_uuid(template_id, "template"))

    def _repository(self, descriptor: TemplateDescriptor) -> Optional[RecordRepository]:
        """Repository of the template table; None while the table does not exist"""
        if not self.synthesizer.table_exists(descriptor.table_name):
            return None
        return RecordRepository(self.session, descriptor, self.synthesizer.tables)

    def _context(self, descriptor: TemplateDescriptor, binding: FieldBinding, record_id: Any = None) -> ValidationContext:
        return ValidationContext(
            scope=descriptor.scope,
            field_name=binding.name,
            required=binding.required,
            record_id=record_id,
            references=self.resolver,
            objects=self.objects,
            access=self.access,
        )

    def _check(
        self,
        descriptor: TemplateDescriptor,
        values: dict,
        partial: bool,
        record_id: Any = None,
    ) -> tuple[dict[str, list[str]], dict, dict[str, list]]:
        """
        Validate and process submitted values.

        Returns:
            (errors, primary row values, child values by field)
        """
        errors: dict[str, list[str]] = {}
        row: dict = {}
        multi_values: dict[str, list] = {}

        for key in values:
            if descriptor.binding(key) is not None or key in WRITABLE_SYSTEM_KEYS:
                continue
            if key in SYSTEM_COLUMNS:
                errors[key] = ["This value is managed by the engine and cannot be set."]
            else:
                errors[key] = [f"Unknown field '{key}' for template '{descriptor.name}'."]

        for binding in descriptor.bindings:
            if binding.name in values:
                value = values[binding.name]
            elif partial:
                continue
            else:
                value = binding.settings.get("default_value")

            field_type = binding.field_type
            field_errors = field_type.validate(value, binding.settings, self._context(descriptor, binding, record_id))
            if field_errors:
                errors[binding.name] = list(field_errors)
                continue

            processed = field_type.process(value, binding.settings)
            if binding.multiple:
                multi_values[binding.name] = [field_type.to_storage(item, binding.settings) for item in processed]
            else:
                row[binding.name] = None if processed is None else field_type.to_storage(processed, binding.settings)

        if descriptor.binding("status") is not None:
            # A status field validated the value; an empty one falls back to the default
            if "status" in row and row["status"] is None:
                row["status"] = DEFAULT_RECORD_STATUS
            if "status" not in errors and len(str(row.get("status", ""))) > STATUS_MAX_LENGTH:
                errors["status"] = [f"Status cannot be longer than {STATUS_MAX_LENGTH} characters."]
        elif "status" in values:
            status = values["status"]
            if not isinstance(status, str) or not status or len(status) > STATUS_MAX_LENGTH:
                errors["status"] = [f"Status must be a non-empty string of at most {STATUS_MAX_LENGTH} characters."]
            else:
                row["status"] = status

        return errors, row, multi_values

    def _present(self, descriptor: TemplateDescriptor, rows: list[dict], mode: FormatMode) -> list[dict]:
        records = [descriptor.record_from_row(row) for row in rows]
        self.resolver.resolve(records, descriptor)
        if mode:
            for record in records:
                self._format(descriptor, record, mode)
        return records

    def _format(self, descriptor: TemplateDescriptor, record: dict, mode: FormatMode) -> None:
        for binding in descriptor.bindings:
            if binding.name not in record:
                continue
            field_mode = mode.get(binding.name) if isinstance(mode, dict) else mode
            if not field_mode:
                continue
            if field_mode not in binding.field_type.format_modes:
                field_mode = "default"
            record[binding.name] = binding.field_type.format(
                record[binding.name],
                binding.settings,
                field_mode,
                self._context(descriptor, binding, record.get("id")),
            )

    def _wrap(self, action: str, descriptor: TemplateDescriptor, exc: SQLAlchemyError) -> StorageOperationFailed:
        logger.error(f"Failed to {action} record of '{descriptor.name}': {exc}")
        return StorageOperationFailed(
            f"Failed to {action} record of template '{descriptor.name}'",
            template=descriptor.name,
            error=str(exc),
        )

    # Operations

    def validate(self, template_id: Any, values: dict, partial: bool = False) -> dict[str, list[str]]:
        """Dry run of the write path: the error map, empty when the values would be accepted"""
        descriptor = self._descriptor(template_id)
        errors, _, _ = self._check(descriptor, values, partial)
        return {key: [str(message) for message in messages] for key, messages in errors.items()}

    def create(self, template_id: Any, values: dict) -> dict:
        descriptor = self._descriptor(template_id)
        errors, row, multi_values = self._check(descriptor, values, partial=False)

        record_uuid = values.get("uuid")
        if record_uuid is None:
            record_uuid = str(uuid.uuid4())
        else:
            try:
                record_uuid = str(uuid.UUID(str(record_uuid)))
            except ValueError:
                errors["uuid"] = [f"'{record_uuid}' is not a valid UUID."]

        if errors:
            raise ValidationFailed(errors)

        now = utcnow()
        row.update(
            uuid=record_uuid,
            tenant_id=descriptor.scope.tenant_id,
            project_id=descriptor.scope.project_id,
            created=now,
            updated=now,
        )
        row.setdefault("status", DEFAULT_RECORD_STATUS)

        try:
            template = self.templates.get_or_raise(descriptor.template_id)
            if template.migration_status != "migrated":
                # A template without fields has no table yet
                self.synthesizer.ensure_table(template)
            record_id = RecordRepository(self.session, descriptor, self.synthesizer.tables).insert(row, multi_values)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            if "uuid" in str(e.orig).lower():
                raise ValidationFailed({"uuid": [f"A record with uuid '{record_uuid}' already exists."]}) from e
            raise self._wrap("create", descriptor, e) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            raise self._wrap("create", descriptor, e) from e
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Created record {record_id} in '{descriptor.name}' ({descriptor.scope})")
        return self.read(descriptor.template_id, record_id)

    def read(self, template_id: Any, record_id: Any, mode: FormatMode = None) -> dict:
        descriptor = self._descriptor(template_id)
        try:
            repository = self._repository(descriptor)
            row = repository.get_by_id(record_id) if repository else None
        except SQLAlchemyError as e:
            raise self._wrap("read", descriptor, e) from e

        if row is None:
            raise NotFound(f"Record {record_id} not found in '{descriptor.name}'", record_id=record_id)
        return self._present(descriptor, [row], mode)[0]

    def read_by_uuid(self, template_id: Any, record_uuid: Any, mode: FormatMode = None) -> dict:
        descriptor = self._descriptor(template_id)
        try:
            repository = self._repository(descriptor)
            row = repository.get_by_uuid(str(record_uuid)) if repository else None
        except SQLAlchemyError as e:
            raise self._wrap("read", descriptor, e) from e

        if row is None:
            raise NotFound(f"Record {record_uuid} not found in '{descriptor.name}'", uuid=str(record_uuid))
        return self._present(descriptor, [row], mode)[0]

    def update(self, template_id: Any, record_id: Any, values: dict) -> dict:
        """Partial update: only the supplied fields are validated and written"""
        descriptor = self._descriptor(template_id)
        repository = self._repository(descriptor)
        if repository is None or not repository.exists(record_id):
            raise NotFound(f"Record {record_id} not found in '{descriptor.name}'", record_id=record_id)

        errors, row, multi_values = self._check(descriptor, values, partial=True, record_id=record_id)
        if "uuid" in values:
            errors["uuid"] = ["The uuid of a record cannot change."]
        if errors:
            raise ValidationFailed(errors)

        row["updated"] = utcnow()
        try:
            repository.update(record_id, row, multi_values)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise self._wrap("update", descriptor, e) from e

        logger.info(f"Updated record {record_id} in '{descriptor.name}' ({', '.join(values) or 'no fields'})")
        return self.read(descriptor.template_id, record_id)

    def delete(self, template_id: Any, record_id: Any) -> bool:
        descriptor = self._descriptor(template_id)
        repository = self._repository(descriptor)
        if repository is None:
            raise NotFound(f"Record {record_id} not found in '{descriptor.name}'", record_id=record_id)

        try:
            deleted = repository.delete(record_id)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise self._wrap("delete", descriptor, e) from e

        if not deleted:
            raise NotFound(f"Record {record_id} not found in '{descriptor.name}'", record_id=record_id)
        logger.info(f"Deleted record {record_id} from '{descriptor.name}'")
        return True

    def _filters(self, descriptor: TemplateDescriptor, filters: dict[str, Any]) -> dict[str, Any]:
        """Filter values converted to their column representation"""
        errors: dict[str, list[str]] = {}
        converted: dict[str, Any] = {}

        for name, value in filters.items():
            if name in SYSTEM_COLUMNS:
                items = value if isinstance(value, (list, tuple, set)) else [value]
                if any(out_of_range(item) for item in items):
                    errors[name] = [f"Invalid filter value {value!r}: integer out of range"]
                else:
                    converted[name] = value
                continue

            binding = descriptor.binding(name)
            if binding is None or binding.is_hidden:
                errors[name] = [f"Cannot filter on '{name}'."]
                continue

            items = value if isinstance(value, (list, tuple, set)) else [value]
            try:
                stored = [self._filter_value(binding, item) for item in items]
            except (TypeError, ValueError, ArithmeticError, OSError) as e:
                errors[name] = [f"Invalid filter value {value!r}: {e}"]
                continue
            converted[name] = stored if isinstance(value, (list, tuple, set)) else stored[0]

        if errors:
            raise ValidationFailed(errors, message="Invalid filters")
        return converted

    def _filter_value(self, binding: FieldBinding, item: Any) -> Any:
        """An empty item filters on NULL; anything else must convert to a storable value"""
        field_type = binding.field_type
        if field_type.is_empty(item):
            return None

        processed = field_type.process_item(item, binding.settings)
        if processed is None:
            raise ValueError(f"not a valid {binding.type} value")
        if out_of_range(processed):
            raise ValueError("integer out of range")
        return field_type.to_storage(processed, binding.settings)

    def _sort(self, descriptor: TemplateDescriptor, sort: Optional[str]) -> tuple[Optional[str], bool]:
        if not sort:
            return None, False

        descending = sort.startswith("-")
        name = sort.lstrip("-")
        binding = descriptor.binding(name)
        if name not in SYSTEM_COLUMNS and (binding is None or binding.multiple or binding.is_hidden):
            raise ValidationFailed({"sort": [f"Cannot sort on '{name}'."]}, message="Invalid sort")
        return name, descending

    def list(
        self,
        template_id: Any,
        filters: Optional[dict[str, Any]] = None,
        sort: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        mode: FormatMode = None,
    ) -> dict:
        """
        One page of records.

        Args:
            filters: system column or field name -> value; a list means IN
            sort: column to order by, '-' prefix for descending
            page: 1-based page number
            page_size: defaults to DEFAULT_PAGE_SIZE, capped at MAX_PAGE_SIZE
            mode: optional rendering mode (one for all fields, or per field)

        Returns:
            {"items", "total", "page", "page_size"}
        """
        try:
            query = RecordQuery(filters=filters or {}, sort=sort, page=page, page_size=page_size)
        except ValidationError as e:
            raise ValidationFailed(pydantic_errors(e)) from e

        descriptor = self._descriptor(template_id)
        size = min(query.page_size or self.default_page_size, self.max_page_size)
        column_filters = self._filters(descriptor, query.filters)
        order_by, descending = self._sort(descriptor, query.sort)

        repository = self._repository(descriptor)
        if repository is None:
            return RecordPage(items=[], total=0, page=query.page, page_size=size).model_dump()

        try:
            rows, total = repository.query(
                filters=column_filters,
                order_by=order_by,
                descending=descending,
                limit=size,
                offset=(query.page - 1) * size,
            )
        except SQLAlchemyError as e:
            raise self._wrap("list", descriptor, e) from e

        items = self._present(descriptor, rows, mode)
        return RecordPage(items=items, total=total, page=query.page, page_size=size).model_dump()


def out_of_range(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and not INTEGER_MIN <= value <= INTEGER_MAX


def as_uuid(value: Any, kind: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise NotFound(f"{kind.capitalize()} {value} not found", **{f"{kind}_id": str(value)}) from e
