"""Create Documents table

Creates the Documents table holding every user's document forest, with the
owner and (owner, parent) indexes used by the sidebar, trash and search
listings and by the archive/restore cascades.

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the Documents table and its indexes."""
    op.create_table(
        'Documents',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('cover_image', sa.String(length=2048), nullable=True),
        sa.Column('icon', sa.String(length=64), nullable=True),
        sa.Column('parent_document', sa.UUID(), nullable=True),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['parent_document'], ['Documents.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_documents_user', 'Documents', ['user_id'])
    op.create_index('ix_documents_user_parent', 'Documents', ['user_id', 'parent_document'])


def downgrade() -> None:
    """Drop the Documents table."""
    op.drop_index('ix_documents_user_parent', table_name='Documents')
    op.drop_index('ix_documents_user', table_name='Documents')
    op.drop_table('Documents')
