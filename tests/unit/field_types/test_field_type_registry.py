import pytest

from core.exceptions import InvalidFieldType
from services.field_types import FieldType, FieldTypeRegistry, build_default_registry


class RatingFieldType(FieldType):
    handle = "rating"
    label = "Rating"


@pytest.mark.unit
class TestFieldTypeRegistry:

    def setup_method(self):
        self.registry = build_default_registry(["pbkdf2_sha256"])

    def test_builtin_types_are_registered(self):
        expected = {
            "string", "text", "email", "url", "password", "integer", "decimal", "boolean",
            "date", "datetime", "list_string", "list_integer", "json", "reference", "file", "image",
        }

        assert {field_type.handle for field_type in self.registry.all()} == expected
        assert len(self.registry) == len(expected)

    def test_unknown_type(self):
        with pytest.raises(InvalidFieldType) as exc_info:
            self.registry.get("hologram")

        assert exc_info.value.code == "invalid_field_type"
        assert "hologram" not in self.registry

    def test_register_custom_type(self):
        registry = FieldTypeRegistry()
        registry.register(RatingFieldType())

        assert registry.exists("rating")
        assert registry.get("rating").label == "Rating"

    def test_duplicate_registration(self):
        registry = FieldTypeRegistry()
        registry.register(RatingFieldType())

        with pytest.raises(ValueError):
            registry.register(RatingFieldType())

    def test_all_is_ordered_by_weight(self):
        weights = [field_type.weight() for field_type in self.registry.all()]

        assert weights == sorted(weights)
        assert self.registry.all()[-1].handle == "password"

    def test_describe(self):
        described = {entry["handle"]: entry for entry in self.registry.describe()}

        assert described["string"]["structural_settings"] == ["max_length"]
        assert described["password"]["supports_multiple"] is False
        assert "thumbnail" in described["image"]["format_modes"]
