"""attendance events, milestones, claims and coin ledger

Revision ID: 001_attendance_ledger
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_attendance_ledger'
down_revision = None
branch_labels = None
depends_on = None

attendance_status = sa.Enum('ATTENDED', 'PURCHASED', name='attendance_status')
milestone_scope = sa.Enum('MONTHLY', 'LIFETIME', name='milestone_scope')
reward_type = sa.Enum('COIN', 'PERMISSION', name='reward_type')
ledger_reason = sa.Enum(
    'DAILY_CHECKIN',
    'MILESTONE_REWARD',
    'BACKFILL_PURCHASE',
    'BACKFILL_REWARD',
    'ADMIN_ADJUST',
    name='ledger_reason',
)


def upgrade() -> None:
    """Create the attendance and ledger tables."""
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('nickname', sa.String(50), nullable=False),
        sa.Column('coin_balance', sa.BigInteger, nullable=False, server_default='0', comment='Cached coin balance (sum of ledger_entries)'),
        sa.Column('ledger_frozen', sa.Boolean, nullable=False, server_default=sa.false(), comment='Balance mutation halted pending manual resolution'),
        sa.Column('total_days', sa.Integer, nullable=False, server_default='0'),
        sa.Column('current_streak', sa.Integer, nullable=False, server_default='0'),
        sa.Column('longest_streak', sa.Integer, nullable=False, server_default='0'),
        sa.Column('monthly_days', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_attendance_date', sa.Date, nullable=True),
        sa.Column('summary_computed_on', sa.Date, nullable=True, comment='Reference day the cached summary was projected for'),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_nickname', 'users', ['nickname'], unique=True)

    op.create_table(
        'attendance_events',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('date', sa.Date, nullable=False, comment='Attendance day (reference timezone)'),
        sa.Column('status', attendance_status, nullable=False, index=True),
        sa.Column('coins_earned', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    # One event per user per day
    op.create_unique_constraint('uq_attendance_user_date', 'attendance_events', ['user_id', 'date'])
    op.create_index('ix_attendance_user_date', 'attendance_events', ['user_id', 'date'])

    op.create_table(
        'milestone_definitions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('scope', milestone_scope, nullable=False, index=True),
        sa.Column('required_days', sa.Integer, nullable=False),
        sa.Column('reward_type', reward_type, nullable=False),
        sa.Column('reward_value', sa.BigInteger, nullable=False, server_default='0', comment='Coins granted (coin rewards)'),
        sa.Column('permission_code', sa.String(100), nullable=True, comment='Permission granted (permission rewards)'),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true(), index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    # No two active definitions share (scope, required_days)
    op.create_index(
        'uq_milestone_active_scope_days',
        'milestone_definitions',
        ['scope', 'required_days'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'claim_records',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('milestone_id', sa.String(36), sa.ForeignKey('milestone_definitions.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('period_key', sa.String(16), nullable=False),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('streak_snapshot', sa.Integer, nullable=False, comment='current_streak (monthly) or total_days (lifetime) at claim time'),
        sa.Column('reward_type', reward_type, nullable=False),
        sa.Column('reward_value', sa.BigInteger, nullable=False, server_default='0'),
        sa.Column('permission_code', sa.String(100), nullable=True),
        sa.Column('reward_granted', sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column('reward_granted_at', sa.DateTime(timezone=True), nullable=True),
    )
    # The only double-claim guard
    op.create_unique_constraint(
        'uq_claim_user_milestone_period',
        'claim_records',
        ['user_id', 'milestone_id', 'period_key'],
    )
    op.create_index('ix_claim_user_claimed_at', 'claim_records', ['user_id', 'claimed_at'])

    op.create_table(
        'permission_grants',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('permission_code', sa.String(100), nullable=False),
        sa.Column('source_claim_id', sa.String(36), sa.ForeignKey('claim_records.id', ondelete='SET NULL'), nullable=True),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_unique_constraint('uq_permission_user_code', 'permission_grants', ['user_id', 'permission_code'])

    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('amount', sa.BigInteger, nullable=False, comment='Coin amount (+credit/-debit)'),
        sa.Column('balance_before', sa.BigInteger, nullable=False),
        sa.Column('balance_after', sa.BigInteger, nullable=False),
        sa.Column('reason', ledger_reason, nullable=False, index=True),
        sa.Column('reference_id', sa.String(64), nullable=True, comment='Business object this entry settles'),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('integrity_hash', sa.String(64), nullable=False, comment='SHA-256 hash for tamper detection'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_unique_constraint('uq_ledger_user_sequence', 'ledger_entries', ['user_id', 'sequence'])
    op.create_unique_constraint('uq_ledger_user_reason_ref', 'ledger_entries', ['user_id', 'reason', 'reference_id'])


def downgrade() -> None:
    """Drop the attendance and ledger tables."""
    op.drop_table('ledger_entries')
    op.drop_table('permission_grants')
    op.drop_table('claim_records')
    op.drop_index('uq_milestone_active_scope_days', table_name='milestone_definitions')
    op.drop_table('milestone_definitions')
    op.drop_table('attendance_events')
    op.drop_index('ix_users_nickname', table_name='users')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in (ledger_reason, reward_type, milestone_scope, attendance_status):
        enum.drop(bind, checkfirst=True)
