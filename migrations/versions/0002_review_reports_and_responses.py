"""review reports, moderation audit and admin responses

Revision ID: 0002_review_moderation
Revises: 0001_initial
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0002_review_moderation'
down_revision: Union[str, Sequence[str], None] = '0001_initial'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column('reviews', sa.Column('report_count', sa.Integer(), nullable=False, server_default='0'))
    op.add_column('reviews', sa.Column('report_reasons', sa.JSON(), nullable=True))
    op.add_column('reviews', sa.Column('moderation_note', sa.String(length=500), nullable=True))
    op.add_column('reviews', sa.Column('moderated_by', sa.Uuid(), nullable=True))
    op.add_column('reviews', sa.Column('moderated_at', sa.DateTime(timezone=True), nullable=True))
    op.add_column('reviews', sa.Column('responded_by', sa.Uuid(), nullable=True))
    op.add_column('reviews', sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True))
    op.create_foreign_key(
        'fk_reviews_moderated_by_users', 'reviews', 'users', ['moderated_by'], ['id'], ondelete='SET NULL'
    )
    op.create_foreign_key(
        'fk_reviews_responded_by_users', 'reviews', 'users', ['responded_by'], ['id'], ondelete='SET NULL'
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_constraint('fk_reviews_responded_by_users', 'reviews', type_='foreignkey')
    op.drop_constraint('fk_reviews_moderated_by_users', 'reviews', type_='foreignkey')
    for column in (
        'responded_at',
        'responded_by',
        'moderated_at',
        'moderated_by',
        'moderation_note',
        'report_reasons',
        'report_count',
    ):
        op.drop_column('reviews', column)
