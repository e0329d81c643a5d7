"""Create entity engine metadata tables

Revision ID: 3f1c9a7e2b40
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7e2b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create entity_templates, entity_fields and entity_template_migrations."""
    op.create_table(
        'entity_templates',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('project_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('label', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('table_name', sa.String(length=63), nullable=False),
        sa.Column('migration_status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'project_id', 'name', name='uq_entity_template_name_per_scope'),
    )
    op.create_index('ix_entity_templates_tenant_id', 'entity_templates', ['tenant_id'])
    op.create_index('ix_entity_templates_project_id', 'entity_templates', ['project_id'])

    op.create_table(
        'entity_fields',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('template_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('label', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('required', sa.Boolean(), nullable=False),
        sa.Column('cardinality', sa.String(length=10), nullable=False),
        sa.Column('weight', sa.Integer(), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['template_id'], ['entity_templates.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('template_id', 'name', name='uq_entity_field_name_per_template'),
    )
    op.create_index('ix_entity_fields_template_id', 'entity_fields', ['template_id'])

    op.create_table(
        'entity_template_migrations',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('template_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('migration_type', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('statements', sa.Text(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['template_id'], ['entity_templates.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_entity_template_migrations_template_id', 'entity_template_migrations', ['template_id'])


def downgrade() -> None:
    """Drop the entity engine metadata tables (template tables are left alone)."""
    op.drop_index('ix_entity_template_migrations_template_id', table_name='entity_template_migrations')
    op.drop_table('entity_template_migrations')
    op.drop_index('ix_entity_fields_template_id', table_name='entity_fields')
    op.drop_table('entity_fields')
    op.drop_index('ix_entity_templates_project_id', table_name='entity_templates')
    op.drop_index('ix_entity_templates_tenant_id', table_name='entity_templates')
    op.drop_table('entity_templates')
