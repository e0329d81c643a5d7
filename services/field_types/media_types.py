"""Media field types - file and image references into the object store"""

import io
import re
from typing import Any, Optional

from PIL import Image, UnidentifiedImageError
from sqlalchemy import String

from core.logging_config import get_logger
from services.collaborators import StoredObject
from services.field_types.base import FieldType, FieldError, StorageShape, ValidationContext

logger = get_logger(__name__)

SIZE_UNITS = {"": 1, "B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}
SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMG]?B?)\s*$", re.IGNORECASE)
RESOLUTION_PATTERN = re.compile(r"^(\d+)x(\d+)$")


def parse_size(size: Any) -> Optional[int]:
    """'10MB' -> 10485760; plain numbers are bytes"""
    if size is None or size == "":
        return None
    if isinstance(size, (int, float)):
        return int(size)
    match = SIZE_PATTERN.match(str(size))
    if not match:
        return None
    number, unit = match.groups()
    return int(float(number) * SIZE_UNITS[unit.upper()])


def format_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size = size / 1024
    return f"{size} GB"


def parse_resolution(resolution: Any) -> Optional[tuple[int, int]]:
    if not resolution:
        return None
    match = RESOLUTION_PATTERN.match(str(resolution).strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


class FileFieldType(FieldType):
    """
    A reference to an object held by the binary object store.

    The engine never touches file bytes for plain files; it checks existence,
    access, extension and size through the collaborators in the context.
    """
    handle = "file"
    label = "File"
    description = "A file held by the object store."
    category = "media"
    format_modes = ("default", "url", "filename", "size", "full")

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(String(255))

    def default_settings(self) -> dict:
        return {
            "file_extensions": "txt pdf doc docx xls xlsx ppt pptx zip rar",
            "max_filesize": "10MB",
            "max_files": 1,
            "multiple": False,
        }

    def weight(self) -> int:
        return 4

    def allowed_extensions(self, settings: dict) -> list[str]:
        extensions = settings.get("file_extensions") or ""
        if isinstance(extensions, (list, tuple)):
            return [str(ext).lower().lstrip(".") for ext in extensions]
        return [ext.lower().lstrip(".") for ext in extensions.split()]

    def load(self, value: Any, context: Optional[ValidationContext]) -> Optional[StoredObject]:
        if context is None or context.objects is None:
            return None
        return context.objects.get(str(value))

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        if context.objects is None:
            logger.warning(f"No object store configured; skipping checks for '{context.field_name}'")
            return []

        stored = context.objects.get(str(value))
        if stored is None:
            return [FieldError(f"File {value} does not exist.", code="file_not_found")]

        errors = []
        if stored.tenant_id is not None and (
            stored.tenant_id != context.scope.tenant_id
            or (stored.project_id is not None and stored.project_id != context.scope.project_id)
        ):
            errors.append(FieldError(f"You do not have access to file {stored.filename}.", code="access_denied"))
        elif context.access is not None and not context.access.may_access(context.scope, self.handle, stored.id):
            errors.append(FieldError(f"You do not have access to file {stored.filename}.", code="access_denied"))

        extensions = self.allowed_extensions(settings)
        extension = stored.filename.rsplit(".", 1)[-1].lower() if "." in stored.filename else ""
        if extensions and extension not in extensions:
            errors.append(FieldError(
                f"The file type of {stored.filename} is not allowed (allowed: {', '.join(extensions)}).",
                code="file_extension",
            ))

        max_size = parse_size(settings.get("max_filesize"))
        if max_size is not None and stored.size > max_size:
            errors.append(FieldError(
                f"The file {stored.filename} exceeds the maximum size of {settings.get('max_filesize')}.",
                code="file_size",
            ))

        errors.extend(self.validate_object(stored, settings, context))
        return errors

    def validate_object(self, stored: StoredObject, settings: dict, context: ValidationContext) -> list[str]:
        return []

    def validate_collection(self, values: list, settings: dict, context: ValidationContext) -> list[str]:
        max_files = settings.get("max_files")
        if settings.get("multiple") and max_files and len(values) > int(max_files):
            return [FieldError(f"No more than {max_files} files are allowed.", code="max_files")]
        return []

    def process_item(self, value: Any, settings: dict) -> Any:
        if isinstance(value, dict):
            value = value.get("id")
        return str(value)

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        stored = self.load(value, context)
        if stored is None:
            return value if mode == "default" else None
        return self.render(stored, settings, mode, context)

    def render(self, stored: StoredObject, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        if mode == "filename":
            return stored.filename
        if mode == "size":
            return format_size(stored.size)
        if mode == "full":
            return {
                "id": stored.id,
                "filename": stored.filename,
                "url": stored.url,
                "size": format_size(stored.size),
                "mime_type": stored.mime_type,
            }
        return stored.url


class ImageFieldType(FileFieldType):
    """File field whose objects must decode as images within resolution limits."""
    handle = "image"
    label = "Image"
    description = "An image held by the object store."
    format_modes = ("default", "url", "filename", "size", "full", "thumbnail", "dimensions")

    def default_settings(self) -> dict:
        return {
            **super().default_settings(),
            "file_extensions": "png gif jpg jpeg webp",
            "max_filesize": "5MB",
            "max_resolution": "3840x2160",
            "min_resolution": "100x100",
            "image_style_preview": "thumbnail",
        }

    def weight(self) -> int:
        return 5

    def image_size(self, stored: StoredObject, context: Optional[ValidationContext]) -> Optional[tuple[int, int]]:
        """Decode the stored bytes; None when they are not a readable image."""
        if context is None or context.objects is None:
            return None
        data = context.objects.read(stored.id)
        if not data:
            return None
        try:
            with Image.open(io.BytesIO(data)) as image:
                size = image.size
                image.verify()
            return size
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            logger.info(f"Image {stored.id} failed integrity check: {e}")
            return None

    def validate_object(self, stored: StoredObject, settings: dict, context: ValidationContext) -> list[str]:
        if not stored.mime_type.startswith("image/"):
            return [FieldError(f"The file {stored.filename} is not an image.", code="not_an_image")]

        size = self.image_size(stored, context)
        if size is None:
            return [FieldError(f"The image {stored.filename} is damaged or not a valid image.", code="image_integrity")]

        errors = []
        width, height = size
        max_resolution = parse_resolution(settings.get("max_resolution"))
        if max_resolution and (width > max_resolution[0] or height > max_resolution[1]):
            errors.append(FieldError(
                f"The image {stored.filename} is {width}x{height}, larger than the maximum of "
                f"{settings.get('max_resolution')}.",
                code="max_resolution",
            ))
        min_resolution = parse_resolution(settings.get("min_resolution"))
        if min_resolution and (width < min_resolution[0] or height < min_resolution[1]):
            errors.append(FieldError(
                f"The image {stored.filename} is {width}x{height}, smaller than the minimum of "
                f"{settings.get('min_resolution')}.",
                code="min_resolution",
            ))
        return errors

    def render(self, stored: StoredObject, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        if mode == "thumbnail":
            style = settings.get("image_style_preview") or "thumbnail"
            return stored.variants.get(style, stored.url)
        if mode == "dimensions":
            size = self.image_size(stored, context)
            return f"{size[0]}x{size[1]}" if size else None
        if mode == "full":
            data = super().render(stored, settings, mode, context)
            size = self.image_size(stored, context)
            if size:
                data["width"], data["height"] = size
            return data
        return super().render(stored, settings, mode, context)
