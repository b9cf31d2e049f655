"""initial pictophone schema: players, games, turns, flags, parties, notifications, scheduled jobs

Revision ID: 3b7c9d2e1f04
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3b7c9d2e1f04'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False),
        sa.Column('hide_mature_content', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_player_username', 'player', ['username'], unique=True)

    op.create_table(
        'game_config',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=32), nullable=True),
        sa.Column('min_turns', sa.Integer(), nullable=False),
        sa.Column('max_turns', sa.Integer(), nullable=True),
        sa.Column('writing_timeout', sa.String(length=32), nullable=False),
        sa.Column('drawing_timeout', sa.String(length=32), nullable=False),
        sa.Column('game_timeout', sa.String(length=32), nullable=False),
        sa.Column('content_rating', sa.String(length=16), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'season',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('min_players', sa.Integer(), nullable=False),
        sa.Column('max_players', sa.Integer(), nullable=False),
        sa.Column('start_deadline', sa.DateTime(), nullable=True),
        sa.Column('turn_passing_algorithm', sa.String(length=16), nullable=False),
        sa.Column('allow_player_invites', sa.Boolean(), nullable=False),
        sa.Column('game_config_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['created_by'], ['player.id']),
        sa.ForeignKeyConstraint(['game_config_id'], ['game_config.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_season_status', 'season', ['status'])

    op.create_table(
        'player_in_season',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('season_id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.Integer(), nullable=False),
        sa.Column('invited_at', sa.DateTime(), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['season_id'], ['season.id']),
        sa.ForeignKeyConstraint(['player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('season_id', 'player_id', name='uq_player_in_season'),
    )
    op.create_index('ix_player_in_season_season_id', 'player_in_season', ['season_id'])
    op.create_index('ix_player_in_season_player_id', 'player_in_season', ['player_id'])

    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('config_id', sa.Integer(), nullable=False),
        sa.Column('season_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['config_id'], ['game_config.id']),
        sa.ForeignKeyConstraint(['season_id'], ['season.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_game_completed_at', 'game', ['completed_at'])
    op.create_index('ix_game_deleted_at', 'game', ['deleted_at'])
    op.create_index('ix_game_expires_at', 'game', ['expires_at'])
    op.create_index('ix_game_season_id', 'game', ['season_id'])

    op.create_table(
        'turn',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.Integer(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_drawing', sa.Boolean(), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.ForeignKeyConstraint(['player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_turn_game_id', 'turn', ['game_id'])
    op.create_index('ix_turn_player_id', 'turn', ['player_id'])
    op.create_index('ix_turn_completed_at', 'turn', ['completed_at'])
    op.create_index('ix_turn_expires_at', 'turn', ['expires_at'])

    op.create_table(
        'turn_flag',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('turn_id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['turn_id'], ['turn.id']),
        sa.ForeignKeyConstraint(['player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_turn_flag_turn_id', 'turn_flag', ['turn_id'])
    op.create_index('ix_turn_flag_player_id', 'turn_flag', ['player_id'])

    op.create_table(
        'notification',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('data', sa.Text(), nullable=True),
        sa.Column('dedupe_key', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notification_user_id', 'notification', ['user_id'])
    op.create_index('ix_notification_dedupe_key', 'notification', ['dedupe_key'])

    op.create_table(
        'scheduled_job',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('fire_at', sa.DateTime(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scheduled_job_key', 'scheduled_job', ['key'], unique=True)
    op.create_index('ix_scheduled_job_fire_at', 'scheduled_job', ['fire_at'])


def downgrade():
    op.drop_table('scheduled_job')
    op.drop_table('notification')
    op.drop_table('turn_flag')
    op.drop_table('turn')
    op.drop_table('game')
    op.drop_table('player_in_season')
    op.drop_table('season')
    op.drop_table('game_config')
    op.drop_table('player')
