from alembic import op
import sqlalchemy as sa

revision = '0001'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'neos',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('neo_id', sa.String, unique=True, index=True),
        sa.Column('name', sa.String),
        sa.Column('close_approach_date', sa.Date),
        sa.Column('diameter_max_meters', sa.Float),
        sa.Column('velocity_kps', sa.Float),
        sa.Column('miss_distance_astronomical', sa.Float),
        sa.Column('hazardous', sa.Boolean),
    )
    op.create_index('idx_close_date', 'neos', ['close_approach_date'])
    op.create_table(
        'subscribers',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('url', sa.String, unique=True),
    )
    op.create_table(
        'watchlist_entries',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('owner_id', sa.String, nullable=False, index=True),
        sa.Column('asteroid_id', sa.String, nullable=False),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('notes', sa.Text),
        sa.Column('saved_at', sa.DateTime, nullable=False),
        sa.Column('diameter_max_meters', sa.Float, nullable=True),
        sa.Column('miss_distance_astronomical', sa.Float, nullable=True),
        sa.Column('velocity_kps', sa.Float, nullable=True),
        sa.Column('hazardous', sa.Boolean),
        sa.UniqueConstraint('owner_id', 'asteroid_id', name='uq_watchlist_owner_asteroid'),
    )

def downgrade():
    op.drop_table('watchlist_entries')
    op.drop_table('subscribers')
    op.drop_index('idx_close_date', table_name='neos')
    op.drop_table('neos')
