"""Initial guestbook schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('provider_sub', sa.String(255), nullable=False),
        sa.Column('session_token', sa.String(64), nullable=True),
        sa.Column('session_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'provider_sub', name='uq_user_provider_sub'),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_session_token', 'users', ['session_token'], unique=True)
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('user_image', sa.Text(), nullable=False),
        sa.Column('user_name', sa.String(50), nullable=False),
        sa.Column('user_email', sa.String(255), nullable=False),
        sa.Column('msg', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_messages_user_id', 'messages', ['user_id'])
    op.create_index('ix_messages_created_at', 'messages', ['created_at'])

    op.create_table(
        'message_likes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('message_id', sa.Integer(), nullable=False),
        sa.Column('user_identifier', sa.String(320), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('message_id', 'user_identifier', name='uq_message_like_identifier'),
    )
    op.create_index('ix_message_likes_message_id', 'message_likes', ['message_id'])
    op.create_index('ix_message_likes_created_at', 'message_likes', ['created_at'])

    op.create_table(
        'message_comments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('message_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('user_image', sa.Text(), nullable=False),
        sa.Column('user_name', sa.String(50), nullable=False),
        sa.Column('user_email', sa.String(255), nullable=False),
        sa.Column('comment', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_message_comments_message_id', 'message_comments', ['message_id'])
    op.create_index('ix_message_comments_created_at', 'message_comments', ['created_at'])


def downgrade():
    op.drop_index('ix_message_comments_created_at', 'message_comments')
    op.drop_index('ix_message_comments_message_id', 'message_comments')
    op.drop_table('message_comments')

    op.drop_index('ix_message_likes_created_at', 'message_likes')
    op.drop_index('ix_message_likes_message_id', 'message_likes')
    op.drop_table('message_likes')

    op.drop_index('ix_messages_created_at', 'messages')
    op.drop_index('ix_messages_user_id', 'messages')
    op.drop_table('messages')

    op.drop_index('ix_users_created_at', 'users')
    op.drop_index('ix_users_session_token', 'users')
    op.drop_index('ix_users_email', 'users')
    op.drop_table('users')
