"""create users, friend_requests and friends

Revision ID: 0001_users_and_friends
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_users_and_friends'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = postgresql.ENUM('USER', 'ADMIN', name='user_role', create_type=False)


def upgrade() -> None:
    user_role.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('username', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.Text(), nullable=True),
        sa.Column('role', user_role, server_default='USER', nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('avatar_id', sa.Text(), nullable=True),
        sa.Column('bio', sa.String(300), nullable=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    # Handles are unique among live users only
    op.create_index(
        'idx_user_username', 'users', [sa.text('lower(username)')],
        unique=True, postgresql_where=sa.text('deleted_at IS NULL'),
    )
    op.create_index(
        'idx_user_email', 'users', [sa.text('lower(email)')],
        unique=True, postgresql_where=sa.text('deleted_at IS NULL'),
    )
    op.create_index(
        'idx_user_phone', 'users', ['phone'],
        unique=True, postgresql_where=sa.text('phone IS NOT NULL AND deleted_at IS NULL'),
    )
    op.create_index('idx_user_created_desc', 'users', [sa.text('created_at DESC')])

    op.create_table(
        'friend_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('from_user_id', sa.Uuid(), nullable=False),
        sa.Column('to_user_id', sa.Uuid(), nullable=False),
        sa.Column('message', sa.String(300), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['from_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('from_user_id', 'to_user_id', name='idx_friend_requests_from_user_to_user'),
        sa.CheckConstraint('from_user_id <> to_user_id', name='friend_request_not_self'),
    )
    op.create_index('ix_friend_requests_from_user_id', 'friend_requests', ['from_user_id'])
    op.create_index('ix_friend_requests_to_user_id', 'friend_requests', ['to_user_id'])

    op.create_table(
        'friends',
        sa.Column('user_a', sa.Uuid(), nullable=False),
        sa.Column('user_b', sa.Uuid(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_a'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_b'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_a', 'user_b', name='friends_user_a_user_b_pk'),
        sa.CheckConstraint('user_a < user_b', name='friends_user_order'),
        sa.CheckConstraint('user_a <> user_b', name='friends_not_self'),
    )
    op.create_index(
        'idx_friends_user_a_active', 'friends', ['user_a'],
        postgresql_where=sa.text('deleted_at IS NULL'),
    )
    op.create_index(
        'idx_friends_user_b_active', 'friends', ['user_b'],
        postgresql_where=sa.text('deleted_at IS NULL'),
    )


def downgrade() -> None:
    op.drop_index('idx_friends_user_b_active', table_name='friends')
    op.drop_index('idx_friends_user_a_active', table_name='friends')
    op.drop_table('friends')

    op.drop_index('ix_friend_requests_to_user_id', table_name='friend_requests')
    op.drop_index('ix_friend_requests_from_user_id', table_name='friend_requests')
    op.drop_table('friend_requests')

    op.drop_index('idx_user_created_desc', table_name='users')
    op.drop_index('idx_user_phone', table_name='users')
    op.drop_index('idx_user_email', table_name='users')
    op.drop_index('idx_user_username', table_name='users')
    op.drop_table('users')

    user_role.drop(op.get_bind(), checkfirst=True)
