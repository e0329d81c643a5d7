"""Numeric field types - integer and decimal"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from sqlalchemy import BigInteger, Numeric

from services.field_types.base import FieldType, FieldError, StorageShape, ValidationContext


# Signed 64-bit, the range of a BIGINT column
INTEGER_MIN = -(2 ** 63)
INTEGER_MAX = 2 ** 63 - 1


def to_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


class IntegerFieldType(FieldType):
    handle = "integer"
    label = "Integer"
    description = "A whole number with optional bounds."
    category = "number"
    format_modes = ("default", "thousands")

    def storage_shape(self, settings: dict) -> StorageShape:
        return StorageShape(BigInteger())

    def default_settings(self) -> dict:
        return {
            "min": None,
            "max": None,
        }

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        number = to_decimal(value)
        if number is None or number != number.to_integral_value():
            return [FieldError(f"'{value}' is not a valid integer.", code="invalid_type")]
        if not INTEGER_MIN <= number <= INTEGER_MAX:
            return [FieldError(
                f"The value must be between {INTEGER_MIN} and {INTEGER_MAX}.",
                code="out_of_range",
            )]

        errors = []
        minimum = settings.get("min")
        maximum = settings.get("max")
        if minimum is not None and number < Decimal(str(minimum)):
            errors.append(FieldError(f"The value must be at least {minimum}.", code="min"))
        if maximum is not None and number > Decimal(str(maximum)):
            errors.append(FieldError(f"The value cannot be greater than {maximum}.", code="max"))
        return errors

    def process_item(self, value: Any, settings: dict) -> Any:
        return int(Decimal(str(value).strip()))

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        if mode == "thousands":
            return f"{int(value):,}"
        return int(value)


class DecimalFieldType(FieldType):
    """
    Fixed-point decimal.

    The raw value is stored as given; rounding to ``scale`` (half-up) only
    happens in format(), so ``12.345`` at scale 2 renders as ``12.35`` while
    the column still holds ``12.345``.
    """
    handle = "decimal"
    label = "Decimal"
    description = "A decimal number with precision and scale."
    category = "number"
    format_modes = ("default", "raw")

    def storage_shape(self, settings: dict) -> StorageShape:
        # Unconstrained NUMERIC so the database never rounds at write time
        return StorageShape(Numeric(asdecimal=True))

    def default_settings(self) -> dict:
        return {
            "precision": 10,
            "scale": 2,
            "min": None,
            "max": None,
        }

    def validate_settings(self, settings: dict) -> list[str]:
        precision = settings.get("precision")
        scale = settings.get("scale")
        if not isinstance(precision, int) or not isinstance(scale, int) or not 0 <= scale <= precision:
            return ["precision and scale must be integers with 0 <= scale <= precision."]
        return []

    def validate_item(self, value: Any, settings: dict, context: ValidationContext) -> list[str]:
        number = to_decimal(value)
        if number is None:
            return [FieldError(f"'{value}' is not a valid decimal number.", code="invalid_type")]

        errors = []
        precision = int(settings.get("precision") or 10)
        scale = int(settings.get("scale") or 0)
        integer_digits = len(str(abs(int(number)))) if abs(number) >= 1 else 0
        if integer_digits > precision - scale:
            errors.append(FieldError(
                f"The value has too many digits before the decimal point "
                f"(at most {precision - scale} allowed).",
                code="precision",
            ))

        minimum = settings.get("min")
        maximum = settings.get("max")
        if minimum is not None and number < Decimal(str(minimum)):
            errors.append(FieldError(f"The value must be at least {minimum}.", code="min"))
        if maximum is not None and number > Decimal(str(maximum)):
            errors.append(FieldError(f"The value cannot be greater than {maximum}.", code="max"))
        return errors

    def process_item(self, value: Any, settings: dict) -> Any:
        return Decimal(str(value).strip())

    def from_storage(self, value: Any, settings: dict) -> Any:
        # Drivers without native decimals pad the scale (12.345 -> 12.3450000000)
        number = to_decimal(value) if value is not None else None
        if number is None:
            return value
        if number == number.to_integral_value():
            return number.quantize(Decimal(1))
        return number.normalize()

    def format_item(self, value: Any, settings: dict, mode: str, context: Optional[ValidationContext]) -> Any:
        number = to_decimal(value)
        if number is None:
            return str(value)
        if mode == "raw":
            return format(number.normalize(), "f")
        scale = int(settings.get("scale") or 0)
        quantum = Decimal(1).scaleb(-scale)
        return str(number.quantize(quantum, rounding=ROUND_HALF_UP))
