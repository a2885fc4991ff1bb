"""Initial checkout tables: games, checkout sessions, rentals, purchases.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'games',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('slug', sa.String(255), nullable=False, unique=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('status', sa.String(50), nullable=True, server_default='available'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('lifetime_price_cents', sa.Integer(), nullable=True),
        sa.Column('rental_duration_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('is_lifetime_available', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_game_status', 'games', ['status'])

    op.create_table(
        'checkout_sessions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('mode', sa.String(20), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('correlation_id', sa.String(255), nullable=False, unique=True),
        sa.Column('payment_ref', sa.String(255), nullable=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('game_id', sa.String(36), sa.ForeignKey('games.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_checkout_session_user_id', 'checkout_sessions', ['user_id'])
    op.create_index('idx_checkout_session_status', 'checkout_sessions', ['status'])

    op.create_table(
        'rentals',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('mode', sa.String(20), nullable=False, server_default='rental'),
        sa.Column('payment_ref', sa.String(255), nullable=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('game_id', sa.String(36), sa.ForeignKey('games.id'), nullable=False),
        sa.Column('starts_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_rental_user_game', 'rentals', ['user_id', 'game_id'])
    op.create_index('idx_rental_status', 'rentals', ['status'])

    op.create_table(
        'purchases',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('payment_ref', sa.String(255), nullable=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('game_id', sa.String(36), sa.ForeignKey('games.id'), nullable=False),
        sa.Column('purchased_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('user_id', 'game_id', name='uq_purchase_user_game'),
    )


def downgrade():
    op.drop_table('purchases')
    op.drop_index('idx_rental_status', table_name='rentals')
    op.drop_index('idx_rental_user_game', table_name='rentals')
    op.drop_table('rentals')
    op.drop_index('idx_checkout_session_status', table_name='checkout_sessions')
    op.drop_index('idx_checkout_session_user_id', table_name='checkout_sessions')
    op.drop_table('checkout_sessions')
    op.drop_index('idx_game_status', table_name='games')
    op.drop_table('games')
