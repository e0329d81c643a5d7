import pytest
from unittest.mock import Mock
from uuid import uuid4

from core.exceptions import DuplicateName, NotFound
from models import EntityField
from repositories.field_repository import FieldRepository


@pytest.mark.unit
class TestFieldRepository:

    def setup_method(self):
        """Set up test data for each test."""
        self.mock_db = Mock()
        self.repository = FieldRepository(self.mock_db)

        self.template_id = uuid4()
        self.field_id = uuid4()

        # Mock template
        self.mock_template = Mock()
        self.mock_template.id = self.template_id
        self.mock_template.name = "client"

        self.field_data = {
            "name": "title",
            "label": "Title",
            "type": "string",
            "description": None,
            "required": True,
            "cardinality": "single",
            "weight": 0,
            "settings": {"max_length": 50},
        }

    def test_get_or_raise_not_found(self):
        """Test missing field raises NotFound."""
        self.mock_db.get.return_value = None

        with pytest.raises(NotFound):
            self.repository.get_or_raise(self.field_id)

        self.mock_db.get.assert_called_once_with(EntityField, self.field_id)

    def test_next_weight_first_field(self):
        """Test the first field of a template gets weight 0."""
        self.mock_db.scalar.return_value = None

        assert self.repository.next_weight(self.template_id) == 0

    def test_next_weight_after_existing_fields(self):
        """Test a new field goes after the heaviest one."""
        self.mock_db.scalar.return_value = 4

        assert self.repository.next_weight(self.template_id) == 5

    def test_create_duplicate_name(self):
        """Test adding a field whose name is taken."""
        self.mock_db.scalar.return_value = Mock()

        with pytest.raises(DuplicateName):
            self.repository.create(self.mock_template, self.field_data)

        self.mock_db.add.assert_not_called()

    def test_update(self):
        """Test updating a field ignores unknown keys."""
        mock_field = Mock(spec=["label", "weight"])

        self.repository.update(mock_field, {"label": "Heading", "weight": 3, "colour": "red"})

        assert mock_field.label == "Heading"
        assert mock_field.weight == 3
        assert not hasattr(mock_field, "colour")
        self.mock_db.flush.assert_called_once()

    def test_delete_detaches_from_template(self):
        """Test deleting a field removes it from its template."""
        mock_field = Mock()
        mock_field.template = self.mock_template
        self.mock_template.fields = [mock_field]

        self.repository.delete(mock_field)

        assert self.mock_template.fields == []
        self.mock_db.delete.assert_called_once_with(mock_field)
