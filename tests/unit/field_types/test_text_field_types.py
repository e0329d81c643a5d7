import pytest
from uuid import uuid4

from schemas.scope import Scope
from services.field_types import ValidationContext
from services.field_types.text_types import (
    EmailFieldType,
    PasswordFieldType,
    StringFieldType,
    TextFieldType,
    UrlFieldType,
)


def settings_for(field_type, **overrides) -> dict:
    return {**field_type.default_settings(), "multiple": False, "required": False, **overrides}


@pytest.mark.unit
class TestStringFieldType:

    def setup_method(self):
        self.field_type = StringFieldType()
        self.context = ValidationContext(scope=Scope(tenant_id=str(uuid4()), project_id=str(uuid4())), field_name="title")

    def test_accepts_value_within_max_length(self):
        settings = settings_for(self.field_type, max_length=50)

        assert self.field_type.validate("Customer A", settings, self.context) == []

    def test_rejects_value_over_max_length(self):
        settings = settings_for(self.field_type, max_length=5)

        errors = self.field_type.validate("Customer A", settings, self.context)

        assert len(errors) == 1
        assert errors[0].code == "max_length"

    def test_required_empty_value(self):
        settings = settings_for(self.field_type, required=True)

        errors = self.field_type.validate("", settings, self.context)

        assert [error.code for error in errors] == ["required"]

    @pytest.mark.parametrize("value", [[""], [None], [None, ""]])
    def test_required_multi_value_with_only_empty_items(self, value):
        settings = settings_for(self.field_type, required=True, multiple=True)

        errors = self.field_type.validate(value, settings, self.context)

        assert [error.code for error in errors] == ["required"]

    def test_optional_multi_value_with_only_empty_items(self):
        settings = settings_for(self.field_type, multiple=True)

        assert self.field_type.validate([""], settings, self.context) == []
        assert self.field_type.process([""], settings) == []

    def test_collects_every_violation(self):
        settings = settings_for(self.field_type, max_length=3, pattern=r"[0-9]+")

        errors = self.field_type.validate("abcd", settings, self.context)

        assert {error.code for error in errors} == {"max_length", "pattern"}

    def test_single_field_rejects_several_values(self):
        errors = self.field_type.validate(["a", "b"], settings_for(self.field_type), self.context)

        assert errors[0].code == "single_value"

    def test_process_trims_and_handles_multiple(self):
        settings = settings_for(self.field_type, multiple=True)

        assert self.field_type.process([" a ", "", "b"], settings) == ["a", "b"]
        assert self.field_type.process(" a ", settings_for(self.field_type)) == "a"

    def test_process_is_idempotent(self):
        settings = settings_for(self.field_type)
        once = self.field_type.process("  Customer A ", settings)

        assert self.field_type.process(once, settings) == once

    def test_validate_settings(self):
        assert self.field_type.validate_settings(settings_for(self.field_type)) == []
        assert self.field_type.validate_settings(settings_for(self.field_type, max_length=0))
        assert self.field_type.validate_settings(settings_for(self.field_type, pattern="(unclosed"))

    def test_storage_shape_uses_max_length(self):
        shape = self.field_type.storage_shape(settings_for(self.field_type, max_length=80))

        assert shape.column_type.length == 80


@pytest.mark.unit
class TestTextFieldType:

    def setup_method(self):
        self.field_type = TextFieldType()
        self.context = ValidationContext(scope=Scope(tenant_id="t1", project_id="p1"), field_name="content")

    def test_long_text_is_accepted(self):
        assert self.field_type.validate("x" * 10000, settings_for(self.field_type), self.context) == []

    def test_max_rows(self):
        settings = settings_for(self.field_type, max_rows=2)

        errors = self.field_type.validate("one\ntwo\nthree", settings, self.context)

        assert errors[0].code == "max_rows"

    def test_process_normalizes_line_endings(self):
        assert self.field_type.process("a\r\nb", settings_for(self.field_type)) == "a\nb"


@pytest.mark.unit
class TestEmailAndUrlFieldTypes:

    def setup_method(self):
        self.context = ValidationContext(scope=Scope(tenant_id="t1", project_id="p1"), field_name="contact")

    def test_email_validation(self):
        field_type = EmailFieldType()
        settings = settings_for(field_type)

        assert field_type.validate("someone@example.com", settings, self.context) == []
        assert field_type.validate("not-an-email", settings, self.context)[0].code == "invalid_email"

    def test_email_domain_is_lowercased(self):
        field_type = EmailFieldType()

        assert field_type.process("Someone@Example.COM", settings_for(field_type)) == "Someone@example.com"

    def test_url_validation(self):
        field_type = UrlFieldType()
        settings = settings_for(field_type)

        assert field_type.validate("https://example.com/page", settings, self.context) == []
        assert field_type.validate("ftp://example.com", settings, self.context)[0].code == "invalid_url"
        assert field_type.validate("example.com", settings, self.context)[0].code == "invalid_url"

    def test_url_format_modes(self):
        field_type = UrlFieldType()
        settings = settings_for(field_type)

        assert field_type.format("https://example.com/a", settings, "domain") == "example.com"
        assert field_type.format("https://example.com/a", settings, "link") == {
            "href": "https://example.com/a",
            "target": "_blank",
        }


@pytest.mark.unit
class TestPasswordFieldType:

    def setup_method(self):
        self.field_type = PasswordFieldType(schemes=["pbkdf2_sha256"])
        self.settings = settings_for(self.field_type)
        self.context = ValidationContext(scope=Scope(tenant_id="t1", project_id="p1"), field_name="password")

    def test_process_hashes(self):
        hashed = self.field_type.process("correct horse", self.settings)

        assert hashed != "correct horse"
        assert hashed.startswith("$pbkdf2-sha256$")
        assert self.field_type.verify("correct horse", hashed)

    def test_existing_hash_is_not_hashed_again(self):
        hashed = self.field_type.process("correct horse", self.settings)

        assert self.field_type.process(hashed, self.settings) == hashed
        assert self.field_type.validate(hashed, self.settings, self.context) == []

    def test_policy(self):
        settings = settings_for(
            self.field_type,
            password_policy={"require_uppercase": True, "require_numbers": True},
        )

        errors = self.field_type.validate("lowercase", settings, self.context)

        assert len(errors) == 2
        assert {error.code for error in errors} == {"password_policy"}

    def test_too_short(self):
        assert self.field_type.validate("abc", self.settings, self.context)[0].code == "min_length"

    def test_never_rendered(self):
        hashed = self.field_type.process("correct horse", self.settings)

        assert self.field_type.format(hashed, self.settings) is None
        assert self.field_type.format(hashed, self.settings, "masked") == "********"

    def test_hidden_by_default_and_single_valued(self):
        assert self.settings["hide_in_api"] is True
        assert self.field_type.supports_multiple() is False
