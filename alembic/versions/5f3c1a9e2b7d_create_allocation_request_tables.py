"""create allocation request tables

Revision ID: 5f3c1a9e2b7d
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5f3c1a9e2b7d'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _actor_columns(prefix: str, nullable: bool = True) -> list:
    return [
        sa.Column(f'{prefix}_by', sa.String(), nullable=nullable),
        sa.Column(f'{prefix}_at', sa.TIMESTAMP(timezone=True), nullable=nullable),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('eft_transactions',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('date', sa.String(), nullable=False, comment='Transaction date as imported'),
    sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=False),
    sa.Column('source', sa.String(), nullable=False),
    sa.Column('description', sa.String(), nullable=False),
    sa.Column('additional_information', sa.String(), nullable=False),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('easypay_transactions',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('date', sa.String(), nullable=False, comment='Transaction date as imported'),
    sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=False),
    sa.Column('easypay_number', sa.String(), nullable=False),
    sa.Column('policy_number', sa.String(), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('assit_policies',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('membership_id', sa.String(), nullable=False),
    sa.Column('full_name', sa.String(), nullable=True),
    sa.Column('category', sa.String(), nullable=True),
    sa.Column('pay_at_number', sa.String(), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_assit_policies_membership_id'), 'assit_policies', ['membership_id'], unique=True)

    op.create_table('allocation_requests',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('transaction_id', sa.UUID(), nullable=False),
    sa.Column('transaction_model', sa.String(), nullable=False, comment='EftTransaction | EasypayTransaction'),
    sa.Column('type', sa.String(), nullable=False, comment='EFT | Easypay'),
    sa.Column('policy_number', sa.String(), nullable=False),
    sa.Column('easypay_number', sa.String(), nullable=True),
    sa.Column('notes', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('evidence', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('status', sa.String(), nullable=False),
    *_actor_columns('requested', nullable=False),
    *_actor_columns('approved'),
    *_actor_columns('rejected'),
    sa.Column('rejection_reason', sa.Text(), nullable=True),
    *_actor_columns('cancelled'),
    *_actor_columns('submitted'),
    *_actor_columns('allocated'),
    *_actor_columns('marked_as_duplicate'),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    sa.CheckConstraint(
        "(transaction_model = 'EftTransaction' AND type = 'EFT') "
        "OR (transaction_model = 'EasypayTransaction' AND type = 'Easypay')",
        name='ck_allocation_requests_model_matches_type',
    ),
    sa.CheckConstraint(
        "status <> 'REJECTED' OR length(trim(coalesce(rejection_reason, ''))) > 0",
        name='ck_allocation_requests_rejection_reason',
    ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_allocation_requests_transaction_id'), 'allocation_requests', ['transaction_id'], unique=False)
    op.create_index('ix_allocation_requests_type_status', 'allocation_requests', ['type', 'status'], unique=False)
    op.create_index('ix_allocation_requests_created_at', 'allocation_requests', ['created_at'], unique=False)
    op.create_index(
        'uq_allocation_requests_active_transaction',
        'allocation_requests',
        ['transaction_id'],
        unique=True,
        postgresql_where=sa.text("status NOT IN ('REJECTED', 'CANCELLED')"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('uq_allocation_requests_active_transaction', table_name='allocation_requests')
    op.drop_index('ix_allocation_requests_created_at', table_name='allocation_requests')
    op.drop_index('ix_allocation_requests_type_status', table_name='allocation_requests')
    op.drop_index(op.f('ix_allocation_requests_transaction_id'), table_name='allocation_requests')
    op.drop_table('allocation_requests')
    op.drop_index(op.f('ix_assit_policies_membership_id'), table_name='assit_policies')
    op.drop_table('assit_policies')
    op.drop_table('easypay_transactions')
    op.drop_table('eft_transactions')
