"""Initial schema: games, players, pipeline ledger and week snapshots.

Revision ID: 001
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

game_status = sa.Enum('WAITING', 'ACTIVE', 'COMPLETED', name='gamestatus')
player_role = sa.Enum('RETAILER', 'WHOLESALER', 'DISTRIBUTOR', 'MANUFACTURER', name='playerrole')
entry_kind = sa.Enum('ORDER', 'SHIPMENT', 'PRODUCTION', name='entrykind')


def upgrade():
    op.create_table(
        'games',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('game_code', sa.String(6), nullable=True),
        sa.Column('status', game_status, nullable=True),
        sa.Column('current_week', sa.Integer(), nullable=True),
        sa.Column('total_weeks', sa.Integer(), nullable=True),
        sa.Column('initial_inventory', sa.Integer(), nullable=True),
        sa.Column('initial_backlog', sa.Integer(), nullable=True),
        sa.Column('retailer_lead_time', sa.Integer(), nullable=True),
        sa.Column('wholesaler_lead_time', sa.Integer(), nullable=True),
        sa.Column('distributor_lead_time', sa.Integer(), nullable=True),
        sa.Column('manufacturer_lead_time', sa.Integer(), nullable=True),
        sa.Column('demand_pattern', sa.JSON(), nullable=True),
        sa.Column('fixed_demand', sa.Integer(), nullable=True),
        sa.Column('current_demand', sa.Integer(), nullable=True),
        sa.Column('holding_cost', sa.Float(), nullable=True),
        sa.Column('backorder_cost', sa.Float(), nullable=True),
        sa.Column('total_team_cost', sa.Float(), nullable=True),
        sa.Column('is_advancing_week', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_games_id', 'games', ['id'])
    op.create_index('ix_games_game_code', 'games', ['game_code'], unique=True)

    op.create_table(
        'players',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('game_id', sa.Integer(), sa.ForeignKey('games.id', ondelete='CASCADE'), nullable=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('role', player_role, nullable=False),
        sa.Column('is_ai', sa.Boolean(), nullable=True),
        sa.Column('ai_strategy', sa.String(50), nullable=True),
        sa.Column('inventory', sa.Integer(), nullable=True),
        sa.Column('backlog', sa.Integer(), nullable=True),
        sa.Column('pipeline_inventory', sa.Integer(), nullable=True),
        sa.Column('incoming_order', sa.Integer(), nullable=True),
        sa.Column('outgoing_order', sa.Integer(), nullable=True),
        sa.Column('incoming_shipment', sa.Integer(), nullable=True),
        sa.Column('outgoing_shipment', sa.Integer(), nullable=True),
        sa.Column('next_week_incoming_shipment', sa.Integer(), nullable=True),
        sa.Column('weekly_holding_cost', sa.Float(), nullable=True),
        sa.Column('weekly_backorder_cost', sa.Float(), nullable=True),
        sa.Column('total_holding_cost', sa.Float(), nullable=True),
        sa.Column('total_backorder_cost', sa.Float(), nullable=True),
        sa.Column('total_cost', sa.Float(), nullable=True),
        sa.Column('total_orders', sa.Integer(), nullable=True),
        sa.Column('total_backorders', sa.Integer(), nullable=True),
        sa.Column('total_inventory', sa.Integer(), nullable=True),
        sa.Column('total_outgoing_orders', sa.Integer(), nullable=True),
        sa.Column('total_outgoing_shipments', sa.Integer(), nullable=True),
        sa.Column('total_incoming_shipments', sa.Integer(), nullable=True),
        sa.Column('order_count', sa.Integer(), nullable=True),
        sa.Column('order_mean', sa.Float(), nullable=True),
        sa.Column('order_m2', sa.Float(), nullable=True),
        sa.Column('order_variability', sa.Float(), nullable=True),
        sa.Column('min_order', sa.Integer(), nullable=True),
        sa.Column('max_order', sa.Integer(), nullable=True),
        sa.Column('inventory_history', sa.JSON(), nullable=True),
        sa.Column('backlog_history', sa.JSON(), nullable=True),
        sa.Column('order_history', sa.JSON(), nullable=True),
        sa.Column('incoming_shipment_history', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('game_id', 'role', name='uq_players_game_role'),
    )
    op.create_index('ix_players_id', 'players', ['id'])
    op.create_index('ix_players_game_id', 'players', ['game_id'])

    op.create_table(
        'pipeline_entries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('game_id', sa.Integer(), sa.ForeignKey('games.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', entry_kind, nullable=False),
        sa.Column('from_role', sa.String(20), nullable=False),
        sa.Column('to_role', sa.String(20), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('week_placed', sa.Integer(), nullable=False),
        sa.Column('week_delivered', sa.Integer(), nullable=False),
        sa.Column('is_delivered', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_pipeline_entries_id', 'pipeline_entries', ['id'])
    op.create_index(
        'ix_pipeline_due', 'pipeline_entries', ['game_id', 'to_role', 'week_delivered', 'is_delivered']
    )
    op.create_index('ix_pipeline_outbound', 'pipeline_entries', ['game_id', 'from_role', 'is_delivered'])

    op.create_table(
        'game_weeks',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('game_id', sa.Integer(), sa.ForeignKey('games.id', ondelete='CASCADE'), nullable=False),
        sa.Column('week_number', sa.Integer(), nullable=False),
        sa.Column('customer_demand', sa.Integer(), nullable=False),
        sa.Column('total_team_cost', sa.Float(), nullable=False),
        sa.Column('roles', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('game_id', 'week_number', name='uq_game_weeks_game_week'),
    )
    op.create_index('ix_game_weeks_id', 'game_weeks', ['id'])
    op.create_index('ix_game_weeks_game_id', 'game_weeks', ['game_id'])


def downgrade():
    op.drop_table('game_weeks')
    op.drop_table('pipeline_entries')
    op.drop_table('players')
    op.drop_table('games')
    entry_kind.drop(op.get_bind(), checkfirst=True)
    player_role.drop(op.get_bind(), checkfirst=True)
    game_status.drop(op.get_bind(), checkfirst=True)
