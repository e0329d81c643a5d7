from models.base import Base

# Entity Engine metadata
from models.entity_template import EntityTemplate
from models.entity_field import EntityField
from models.template_migration import TemplateMigration
