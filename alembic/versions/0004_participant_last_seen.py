"""add last_seen_message_id to participants

Revision ID: 0004_participant_last_seen
Revises: 0003_messages_and_files
Create Date: 2026-10-16 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0004_participant_last_seen'
down_revision: Union[str, None] = '0003_messages_and_files'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('participants', sa.Column('last_seen_message_id', sa.Uuid(), nullable=True))
    op.create_foreign_key(
        'participants_last_seen_message_id_fkey',
        'participants', 'messages',
        ['last_seen_message_id'], ['id'],
    )


def downgrade() -> None:
    op.drop_constraint('participants_last_seen_message_id_fkey', 'participants', type_='foreignkey')
    op.drop_column('participants', 'last_seen_message_id')
