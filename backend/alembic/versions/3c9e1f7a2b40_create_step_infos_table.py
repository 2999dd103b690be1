"""create step infos table

Revision ID: 3c9e1f7a2b40
Revises:
Create Date: 2026-10-19 10:12:41.204117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3c9e1f7a2b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'step_infos',
        sa.Column('step_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('room_id', sa.String(length=64), nullable=False),
        sa.Column('step_phase', sa.String(length=32), nullable=False),
        sa.Column('active_username', sa.String(length=100), nullable=True),
        sa.Column('other_username', sa.String(length=100), nullable=True),
        sa.Column('card_action', sa.String(length=64), nullable=True),
        sa.Column('skip_showing', sa.Boolean(), nullable=True),
        sa.Column('show_all', sa.Boolean(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('step_id')
    )
    op.create_index('ix_step_infos_room_id', 'step_infos', ['room_id'])
    op.create_index('ix_step_infos_room_processed', 'step_infos', ['room_id', 'processed_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_step_infos_room_processed', table_name='step_infos')
    op.drop_index('ix_step_infos_room_id', table_name='step_infos')
    op.drop_table('step_infos')
