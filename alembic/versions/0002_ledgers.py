from alembic import op
import sqlalchemy as sa

revision = '0002_ledgers'
down_revision = '0001_init'
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'inventory_transactions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('product_id', sa.String(64), nullable=False, index=True),
        sa.Column('transaction_type', sa.String(30), nullable=False),
        sa.Column('quantity_change', sa.Integer, nullable=False),
        sa.Column('balance_after', sa.Integer, nullable=False),
        sa.Column('order_number', sa.String(32), nullable=True),
        sa.Column('details', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        'payment_events',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('event_id', sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('charge_code', sa.String(64), nullable=True, index=True),
        sa.Column('order_number', sa.String(32), nullable=True, index=True),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('processed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

def downgrade():
    op.drop_table('payment_events')
    op.drop_table('inventory_transactions')
