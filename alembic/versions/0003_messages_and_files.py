"""create messages, last_messages and files

Revision ID: 0003_messages_and_files
Revises: 0002_conversations
Create Date: 2026-10-16 09:20:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0003_messages_and_files'
down_revision: Union[str, None] = '0002_conversations'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Shared by messages and last_messages, so created once up front
message_type = postgresql.ENUM(
    'text', 'image', 'video', 'file', 'system',
    name='message_type',
    create_type=False,
)


def upgrade() -> None:
    message_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('conversation_id', sa.Uuid(), nullable=False),
        sa.Column('sender_id', sa.Uuid(), nullable=False),
        sa.Column('reply_to_id', sa.Uuid(), nullable=True),
        sa.Column('type', message_type, server_default='text', nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('is_edited', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['reply_to_id'], ['messages.id'], ondelete='SET NULL', name='fk_message_reply'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_messages_sender_id', 'messages', ['sender_id'])
    # Serves history paging: newest first within a conversation
    op.create_index(
        'idx_message_conversation', 'messages',
        ['conversation_id', sa.text('created_at DESC'), sa.text('id DESC')],
        postgresql_where=sa.text('deleted_at IS NULL'),
    )

    op.create_table(
        'last_messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('conversation_id', sa.Uuid(), nullable=False),
        sa.Column('message_id', sa.Uuid(), nullable=False),
        sa.Column('sender_id', sa.Uuid(), nullable=False),
        sa.Column('type', message_type, server_default='text', nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('conversation_id', name='last_messages_conversation_id_unique'),
    )
    op.create_index(
        'idx_last_message_conversation', 'last_messages',
        ['conversation_id', sa.text('created_at DESC')],
    )

    op.create_table(
        'files',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('filename', sa.Text(), nullable=False),
        sa.Column('original_filename', sa.Text(), nullable=False),
        sa.Column('mime_type', sa.Text(), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('storage_path', sa.Text(), nullable=False),
        sa.Column('uploaded_by', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['uploaded_by'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_files_uploaded_by', 'files', ['uploaded_by'])
    op.create_index('ix_files_created_at', 'files', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_files_created_at', table_name='files')
    op.drop_index('ix_files_uploaded_by', table_name='files')
    op.drop_table('files')

    op.drop_index('idx_last_message_conversation', table_name='last_messages')
    op.drop_table('last_messages')

    op.drop_index('idx_message_conversation', table_name='messages')
    op.drop_index('ix_messages_sender_id', table_name='messages')
    op.drop_table('messages')

    message_type.drop(op.get_bind(), checkfirst=True)
