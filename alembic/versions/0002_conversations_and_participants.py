"""create conversations, group_conversations and participants

Revision ID: 0002_conversations
Revises: 0001_users_and_friends
Create Date: 2026-10-16 09:10:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0002_conversations'
down_revision: Union[str, None] = '0001_users_and_friends'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

conversation_type = postgresql.ENUM('direct', 'group', name='conversation_type', create_type=False)


def upgrade() -> None:
    conversation_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'conversations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('type', conversation_type, server_default='direct', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'group_conversations',
        sa.Column('conversation_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        sa.Column('avatar_url', sa.String(500), nullable=True),
        sa.Column('avatar_id', sa.String(500), nullable=True),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('conversation_id'),
    )

    # last_seen_message_id is added once messages exist (0004)
    op.create_table(
        'participants',
        sa.Column('conversation_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('unread_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('conversation_id', 'user_id', name='participants_conversation_id_user_id_pk'),
        sa.CheckConstraint('unread_count >= 0', name='unread_count_non_negative'),
    )
    op.create_index(
        'idx_participants_user_conv_active', 'participants', ['user_id', 'conversation_id'],
        postgresql_where=sa.text('deleted_at IS NULL'),
    )
    op.create_index(
        'idx_participants_conversation', 'participants', ['conversation_id'],
        postgresql_where=sa.text('deleted_at IS NULL'),
    )


def downgrade() -> None:
    op.drop_index('idx_participants_conversation', table_name='participants')
    op.drop_index('idx_participants_user_conv_active', table_name='participants')
    op.drop_table('participants')
    op.drop_table('group_conversations')
    op.drop_table('conversations')

    conversation_type.drop(op.get_bind(), checkfirst=True)
