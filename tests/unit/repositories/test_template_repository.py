import pytest
from datetime import datetime, timezone
from unittest.mock import Mock
from uuid import uuid4
from sqlalchemy.exc import IntegrityError

from core.exceptions import DuplicateName, NotFound
from models import EntityTemplate
from repositories.template_repository import TemplateRepository
from schemas.entity_template import TemplateCreate
from schemas.scope import Scope


@pytest.mark.unit
class TestTemplateRepository:

    def setup_method(self):
        """Set up test data for each test."""
        self.mock_db = Mock()
        self.repository = TemplateRepository(self.mock_db)

        self.scope = Scope(tenant_id=str(uuid4()), project_id=str(uuid4()))
        self.template_id = uuid4()

        # Mock template
        self.mock_template = Mock()
        self.mock_template.id = self.template_id
        self.mock_template.name = "client"
        self.mock_template.label = "Client"
        self.mock_template.updated_at = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_get_or_raise_found(self):
        """Test successful retrieval of template by ID."""
        self.mock_db.scalar.return_value = self.mock_template

        result = self.repository.get_or_raise(self.template_id)

        assert result == self.mock_template
        self.mock_db.scalar.assert_called_once()

    def test_get_or_raise_not_found(self):
        """Test missing template raises NotFound."""
        self.mock_db.scalar.return_value = None

        with pytest.raises(NotFound) as exc_info:
            self.repository.get_or_raise(self.template_id)

        assert exc_info.value.details == {"template_id": str(self.template_id)}

    def test_get_all_by_scope(self):
        """Test listing templates of a scope."""
        self.mock_db.scalars.return_value.all.return_value = [self.mock_template]

        result = self.repository.get_all_by_scope(self.scope, active_only=True)

        assert result == [self.mock_template]
        statement = str(self.mock_db.scalars.call_args.args[0])
        assert "entity_templates.status" in statement
        assert "ORDER BY entity_templates.name" in statement

    def test_create_success(self):
        """Test successful template creation."""
        self.mock_db.scalar.return_value = None
        template_data = TemplateCreate(name="client", label="Client", description="Clients")

        result = self.repository.create(template_data, self.scope, table_name="baas_abc123_client")

        assert isinstance(result, EntityTemplate)
        assert result.name == "client"
        assert result.tenant_id == self.scope.tenant_id
        assert result.project_id == self.scope.project_id
        assert result.table_name == "baas_abc123_client"
        self.mock_db.add.assert_called_once_with(result)
        self.mock_db.flush.assert_called_once()

    def test_create_duplicate_name(self):
        """Test creating a template with an existing name."""
        self.mock_db.scalar.return_value = self.mock_template
        template_data = TemplateCreate(name="client", label="Client")

        with pytest.raises(DuplicateName):
            self.repository.create(template_data, self.scope, table_name="baas_abc123_client")

        self.mock_db.add.assert_not_called()

    def test_create_unique_violation(self):
        """Test a unique constraint violation from a concurrent creator."""
        self.mock_db.scalar.return_value = None
        self.mock_db.flush.side_effect = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        template_data = TemplateCreate(name="client", label="Client")

        with pytest.raises(DuplicateName) as exc_info:
            self.repository.create(template_data, self.scope, table_name="baas_abc123_client")

        assert exc_info.value.details == {"name": "client"}

    def test_update(self):
        """Test updating a template."""
        result = self.repository.update(self.mock_template, {"label": "Customer", "description": "All"})

        assert result.label == "Customer"
        assert result.description == "All"
        assert result.updated_at > datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.mock_db.flush.assert_called_once()

    def test_delete(self):
        """Test deleting a template."""
        self.repository.delete(self.mock_template)

        self.mock_db.delete.assert_called_once_with(self.mock_template)
        self.mock_db.flush.assert_called_once()
