"""initial chat schema: users, chat rooms, room ratings, messages, corrections

Revision ID: 5c2a9e71d0b4
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2a9e71d0b4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('email', sa.String(length=120), nullable=False),
            sa.Column('password_hash', sa.String(length=128), nullable=False),
            sa.Column('native_languages', sa.JSON(), nullable=False),
            sa.Column('learning_languages', sa.JSON(), nullable=False),
            sa.Column('about', sa.Text(), nullable=True),
            sa.Column('rating', sa.Float(), nullable=False, server_default='0'),
            sa.Column('points', sa.Integer(), nullable=False, server_default='50'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index('ix_user_email', 'user', ['email'], unique=True)

    if 'user_report' not in existing_tables:
        op.create_table(
            'user_report',
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), primary_key=True),
            sa.Column('reporter_id', sa.Integer(), sa.ForeignKey('user.id'), primary_key=True),
        )

    if 'chat_room' not in existing_tables:
        op.create_table(
            'chat_room',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('first_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('second_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.UniqueConstraint('first_user_id', 'second_user_id', name='uq_chat_room_pair'),
            sa.CheckConstraint('first_user_id < second_user_id', name='ck_chat_room_distinct_users'),
        )
        op.create_index('ix_chat_room_first_user_id', 'chat_room', ['first_user_id'])
        op.create_index('ix_chat_room_second_user_id', 'chat_room', ['second_user_id'])

    if 'chat_room_rating' not in existing_tables:
        op.create_table(
            'chat_room_rating',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('chat_room_id', sa.Integer(), sa.ForeignKey('chat_room.id'), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('ratingFromRoom', sa.Float(), nullable=False, server_default='3'),
            sa.UniqueConstraint('chat_room_id', 'user_id', name='uq_chat_room_rating_user'),
        )
        op.create_index('ix_chat_room_rating_chat_room_id', 'chat_room_rating', ['chat_room_id'])

    if 'message' not in existing_tables:
        op.create_table(
            'message',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('author_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('text', sa.Text(), nullable=False),
            sa.Column('date', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index('ix_message_author_id', 'message', ['author_id'])
        op.create_index('ix_message_date', 'message', ['date'])

    if 'chat_room_message' not in existing_tables:
        op.create_table(
            'chat_room_message',
            sa.Column('chat_room_id', sa.Integer(), sa.ForeignKey('chat_room.id'), primary_key=True),
            sa.Column('message_id', sa.Integer(), sa.ForeignKey('message.id'), primary_key=True),
        )

    if 'correction' not in existing_tables:
        op.create_table(
            'correction',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('creator_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('message_id', sa.Integer(), sa.ForeignKey('message.id'), nullable=False),
            sa.Column('errorPhrase', sa.Text(), nullable=False),
            sa.Column('correctPhrase', sa.Text(), nullable=False),
            sa.Column('comments', sa.Text(), nullable=False, server_default=''),
            sa.Column('date', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index('ix_correction_creator_id', 'correction', ['creator_id'])
        op.create_index('ix_correction_message_id', 'correction', ['message_id'])


def downgrade():
    op.drop_table('correction')
    op.drop_table('chat_room_message')
    op.drop_table('message')
    op.drop_table('chat_room_rating')
    op.drop_table('chat_room')
    op.drop_table('user_report')
    op.drop_table('user')
