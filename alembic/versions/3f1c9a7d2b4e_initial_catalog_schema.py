"""initial_catalog_schema

Revision ID: 3f1c9a7d2b4e
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2b4e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # ── Tenancy / Users ──
    op.create_table(
        'organizations',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('email', sa.String, nullable=False),
        sa.Column('role', sa.String, nullable=False, server_default='viewer'),
        sa.Column('organization_id', sa.Uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_organization_id', 'users', ['organization_id'])

    # ── Data sources ──
    op.create_table(
        'data_sources',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('type', sa.String, nullable=False),
        sa.Column('env', sa.String, nullable=False, server_default='dev'),
        sa.Column('secret_id', sa.String, nullable=False),
        sa.Column('organization_id', sa.Uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_data_sources_organization_id', 'data_sources', ['organization_id'])

    # ── Catalog ──
    op.create_table(
        'datasets',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('database_name', sa.String, nullable=False),
        sa.Column('schema', sa.String, nullable=False),
        sa.Column('data_source_id', sa.Uuid, sa.ForeignKey('data_sources.id', ondelete='CASCADE'), nullable=False),
        sa.Column('organization_id', sa.Uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String, nullable=False, server_default='view'),
        sa.Column('definition', sa.Text, nullable=False, server_default=''),
        sa.Column('when_to_use', sa.Text),
        sa.Column('when_not_to_use', sa.Text),
        sa.Column('enabled', sa.Boolean, nullable=False),
        sa.Column('imported', sa.Boolean, nullable=False),
        sa.Column('model', sa.String),
        sa.Column('yml_file', sa.Text),
        sa.Column('database_identifier', sa.String),
        sa.Column('entity_relationships', sa.JSON, nullable=True),
        sa.Column('created_by', sa.Uuid, nullable=False),
        sa.Column('updated_by', sa.Uuid, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('database_name', 'data_source_id', name='uq_datasets_database_name_source'),
    )
    op.create_index('ix_datasets_data_source_id', 'datasets', ['data_source_id'])
    op.create_index('ix_datasets_organization_id', 'datasets', ['organization_id'])

    op.create_table(
        'dataset_columns',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('dataset_id', sa.Uuid, sa.ForeignKey('datasets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('type', sa.String, nullable=False, server_default='text'),
        sa.Column('dim_type', sa.String),
        sa.Column('description', sa.Text),
        sa.Column('semantic_type', sa.String),
        sa.Column('expr', sa.Text),
        sa.Column('nullable', sa.Boolean, nullable=False),
        sa.Column('stored_values', sa.Boolean, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('dataset_id', 'name', name='uq_dataset_columns_dataset_name'),
    )
    op.create_index('ix_dataset_columns_dataset_id', 'dataset_columns', ['dataset_id'])

    # ── Permissions ──
    op.create_table(
        'dataset_permissions',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('dataset_id', sa.Uuid, sa.ForeignKey('datasets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('permission_id', sa.Uuid, nullable=False),
        sa.Column('permission_type', sa.String, nullable=False, server_default='user'),
        sa.Column('organization_id', sa.Uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('dataset_id', 'permission_id', 'permission_type', name='uq_dataset_permissions_target'),
    )
    op.create_index('ix_dataset_permissions_dataset_id', 'dataset_permissions', ['dataset_id'])
    op.create_index('ix_dataset_permissions_permission_id', 'dataset_permissions', ['permission_id'])


def downgrade() -> None:
    op.drop_table('dataset_permissions')
    op.drop_table('dataset_columns')
    op.drop_table('datasets')
    op.drop_table('data_sources')
    op.drop_table('users')
    op.drop_table('organizations')
