"""Text field types - string, text, email, url and password"""

import re
from typing import Any, Optional
from urllib.parse import urlparse

from passlib.context import CryptContext
from sqlalchemy import String, Text

from services.field_types.base import FieldType, FieldError, StorageShape, ValidationContext

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$")


class StringFieldType(FieldType):
    handle = "string"
    label = "Text (single line)"
    description = "A single line of text with a maximum length."
    category = "text"
    structural_settings = ("max_length",)

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(String(int(settings.get("max_length") or 255)))

    def default_settings(self) -> dict:
        return {
            "max_length": 255,
            "min_length": 0,
            "pattern": None,
        }

    def validate_settings(self, settings: dict) -> list[str]:
        max_length = settings.get("max_length")
        if isinstance(max_length, bool) or not isinstance(max_length, int) or max_length < 1:
            return ["max_length must be a positive integer."]
        pattern = settings.get("pattern")
        if pattern:
            try:
                re.compile(pattern)
            except re.error as e:
                return [f"pattern is not a valid regular expression: {e}"]
        return []

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        errors = []
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            return [FieldError("The value must be a string.", code="invalid_type")]

        text = str(value)
        max_length = settings.get("max_length")
        if max_length and len(text) > int(max_length):
            errors.append(FieldError(
                f"The value cannot be longer than {max_length} characters (got {len(text)}).",
                code="max_length",
            ))

        min_length = settings.get("min_length")
        if min_length and len(text) < int(min_length):
            errors.append(FieldError(
                f"The value must be at least {min_length} characters long.",
                code="min_length",
            ))

        pattern = settings.get("pattern")
        if pattern and not re.fullmatch(pattern, text):
            errors.append(FieldError("The value does not match the required format.", code="pattern"))

        return errors

    def process_item(self, value: Any, settings: dict) -> Any:
        text = str(value)
        return text.strip() if settings.get("trim", True) else text

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        return str(value)


class TextFieldType(FieldType):
    """Long text; length is never enforced, only an optional row count."""
    handle = "text"
    label = "Text (long)"
    description = "Long, multi-line text without a length limit."
    category = "text"

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(Text())

    def default_settings(self) -> dict:
        return {
            "max_rows": None,
        }

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        if not isinstance(value, str):
            return [FieldError("The value must be a string.", code="invalid_type")]

        max_rows = settings.get("max_rows")
        if max_rows:
            rows = value.count("\n") + 1
            if rows > int(max_rows):
                return [FieldError(
                    f"The value cannot have more than {max_rows} lines (got {rows}).",
                    code="max_rows",
                )]
        return []

    def process_item(self, value: Any, settings: dict) -> Any:
        return str(value).replace("\r\n", "\n")


class EmailFieldType(StringFieldType):
    handle = "email"
    label = "Email"
    description = "An email address."

    def default_settings(self) -> dict:
        return {
            "max_length": 254,
        }

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        errors = super().validate_item(value, settings, context)
        if errors:
            return errors
        if not EMAIL_PATTERN.match(str(value).strip()):
            errors.append(FieldError(f"'{value}' is not a valid email address.", code="invalid_email"))
        return errors

    def process_item(self, value: Any, settings: dict) -> Any:
        local, _, domain = str(value).strip().rpartition("@")
        return f"{local}@{domain.lower()}"

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        if mode == "link":
            return f"mailto:{value}"
        return str(value)


class UrlFieldType(StringFieldType):
    handle = "url"
    label = "URL"
    description = "An absolute http(s) link."
    format_modes = ("default", "link", "domain")

    def default_settings(self) -> dict:
        return {
            "max_length": 2048,
            "allowed_schemes": ["http", "https"],
            "link_target": "_blank",
        }

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        errors = super().validate_item(value, settings, context)
        if errors:
            return errors

        parsed = urlparse(str(value).strip())
        allowed_schemes = settings.get("allowed_schemes") or ["http", "https"]
        if parsed.scheme not in allowed_schemes or not parsed.netloc:
            errors.append(FieldError(
                f"'{value}' is not a valid URL (allowed schemes: {', '.join(allowed_schemes)}).",
                code="invalid_url",
            ))
        return errors

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        if mode == "domain":
            return urlparse(value).netloc
        if mode == "link":
            target = settings.get("link_target") or "_blank"
            return {"href": value, "target": target}
        return value


class PasswordFieldType(FieldType):
    """
    Password field; values are hashed on process() and never rendered.

    Values that the configured CryptContext already recognises as a hash are
    kept as they are, so re-saving a record does not double-hash.
    """
    handle = "password"
    label = "Password"
    description = "A password, stored as a one-way hash."
    category = "security"
    format_modes = ("default", "masked")

    def __init__(self, schemes: Optional[list[str]] = None):
        self.crypt_context = CryptContext(schemes=schemes or ["pbkdf2_sha256"], deprecated="auto")

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(String(255))

    def default_settings(self) -> dict:
        return {
            "min_length": 6,
            "max_length": 128,
            "hide_in_api": True,
            "password_policy": {
                "require_uppercase": False,
                "require_lowercase": False,
                "require_numbers": False,
                "require_special_chars": False,
            },
        }

    def supports_multiple(self) -> bool:
        return False

    def weight(self) -> int:
        return 10

    def is_hash(self, value: Any) -> bool:
        return isinstance(value, str) and self.crypt_context.identify(value) is not None

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        if not isinstance(value, str):
            return [FieldError("The password must be a string.", code="invalid_type")]
        if self.is_hash(value):
            return []

        errors = []
        min_length = int(settings.get("min_length") or 0)
        max_length = int(settings.get("max_length") or 128)
        if len(value) < min_length:
            errors.append(FieldError(f"Password must be at least {min_length} characters long.", code="min_length"))
        if len(value) > max_length:
            errors.append(FieldError(f"Password cannot be longer than {max_length} characters.", code="max_length"))

        policy = settings.get("password_policy") or {}
        if policy.get("require_uppercase") and not re.search(r"[A-Z]", value):
            errors.append(FieldError("Password must contain at least one uppercase letter.", code="password_policy"))
        if policy.get("require_lowercase") and not re.search(r"[a-z]", value):
            errors.append(FieldError("Password must contain at least one lowercase letter.", code="password_policy"))
        if policy.get("require_numbers") and not re.search(r"[0-9]", value):
            errors.append(FieldError("Password must contain at least one number.", code="password_policy"))
        if policy.get("require_special_chars") and not re.search(r"[^A-Za-z0-9]", value):
            errors.append(FieldError("Password must contain at least one special character.", code="password_policy"))

        return errors

    def process_item(self, value: Any, settings: dict) -> Any:
        if self.is_hash(value):
            return value
        return self.crypt_context.hash(value)

    def verify(self, plain_password: str, hashed_password: str) -> bool:
        return self.crypt_context.verify(plain_password, hashed_password)

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        if mode == "masked":
            return "********"
        return None
