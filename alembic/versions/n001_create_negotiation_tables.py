"""Create proposal versioning and negotiation tables

Revision ID: n001_create_negotiation
Revises:
Create Date: 2026-10-19

This migration creates tables for Proposal Negotiation:
- proposals / proposal_versions / proposal_line_items / milestone_payments
- negotiation_sessions with its line-item, milestone and comment children
- negotiation_audit_log
- rfp_invites
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = 'n001_create_negotiation'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'proposals',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('respondent_id', sa.String(), nullable=False),
        sa.Column('respondent_name', sa.String(), nullable=True),
        sa.Column('rfp_invite_id', sa.String(), nullable=True),

        # Current terms
        sa.Column('price', sa.Numeric(14, 2), nullable=False),
        sa.Column('timeline_days', sa.Integer(), nullable=True),
        sa.Column('scope_text', sa.Text(), nullable=True),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('current_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(), nullable=False, server_default='submitted'),

        # Declaration
        sa.Column('declaration_text', sa.Text(), nullable=True),
        sa.Column('signed_by', sa.String(), nullable=True),
        sa.Column('signed_at', sa.DateTime(timezone=True), nullable=True),

        # Timestamps
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_proposals_project_id', 'proposals', ['project_id'])
    op.create_index('ix_proposals_organization_id', 'proposals', ['organization_id'])
    op.create_index('ix_proposals_respondent_id', 'proposals', ['respondent_id'])
    op.create_index('ix_proposals_project_respondent', 'proposals', ['project_id', 'respondent_id'])

    op.create_table(
        'proposal_versions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('proposal_id', sa.String(), sa.ForeignKey('proposals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(14, 2), nullable=False),
        sa.Column('timeline_days', sa.Integer(), nullable=True),
        sa.Column('scope_text', sa.Text(), nullable=True),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('change_reason', sa.String(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Two writers racing for the same number: the loser gets an IntegrityError
        sa.UniqueConstraint('proposal_id', 'version_number', name='uq_proposal_version_number'),
    )
    op.create_index('ix_proposal_versions_proposal_id', 'proposal_versions', ['proposal_id'])

    op.create_table(
        'proposal_line_items',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('item_id', sa.String(), nullable=False),
        sa.Column('proposal_id', sa.String(), sa.ForeignKey('proposals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('proposal_version_id', sa.String(), sa.ForeignKey('proposal_versions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False, server_default='1'),
        sa.Column('unit', sa.String(), nullable=True),
        sa.Column('unit_price', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(14, 2), nullable=True),
        sa.Column('is_optional', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('charge_type', sa.String(), nullable=False, server_default='one_time'),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_proposal_line_items_proposal_id', 'proposal_line_items', ['proposal_id'])
    op.create_index('ix_proposal_line_items_proposal_version_id', 'proposal_line_items', ['proposal_version_id'])

    op.create_table(
        'milestone_payments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('proposal_id', sa.String(), sa.ForeignKey('proposals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('percentage', sa.Float(), nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_milestone_payments_proposal_id', 'milestone_payments', ['proposal_id'])

    op.create_table(
        'negotiation_sessions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('proposal_id', sa.String(), sa.ForeignKey('proposals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('initiator_id', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='open'),
        sa.Column('outcome', sa.String(), nullable=True),
        sa.Column('target_basis', sa.String(), nullable=True),
        sa.Column('target_total', sa.Numeric(14, 2), nullable=True),
        sa.Column('target_reduction_percent', sa.Float(), nullable=True),
        sa.Column('global_comment', sa.Text(), nullable=True),
        sa.Column('respondent_message', sa.Text(), nullable=True),
        sa.Column('negotiated_version_id', sa.String(), sa.ForeignKey('proposal_versions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('responded_version_id', sa.String(), sa.ForeignKey('proposal_versions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_check_constraint(
        'check_negotiation_status',
        'negotiation_sessions',
        "status IN ('open', 'awaiting_response', 'responded', 'resolved', 'cancelled')"
    )
    op.create_index('ix_negotiation_sessions_proposal_id', 'negotiation_sessions', ['proposal_id'])
    op.create_index('ix_negotiation_sessions_project_id', 'negotiation_sessions', ['project_id'])
    op.create_index('ix_negotiation_sessions_status_created', 'negotiation_sessions', ['status', 'created_at'])
    # One non-terminal session per proposal
    op.create_index(
        'uq_negotiation_sessions_active_proposal',
        'negotiation_sessions',
        ['proposal_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('open', 'awaiting_response')")
    )

    op.create_table(
        'line_item_negotiations',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), sa.ForeignKey('negotiation_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_item_id', sa.String(), nullable=False),
        sa.Column('adjustment_type', sa.String(), nullable=False),
        sa.Column('adjustment_value', sa.Numeric(14, 2), nullable=False),
        sa.Column('original_price', sa.Numeric(14, 2), nullable=False),
        sa.Column('initiator_target_price', sa.Numeric(14, 2), nullable=False),
        sa.Column('initiator_note', sa.Text(), nullable=True),
        sa.Column('respondent_response_price', sa.Numeric(14, 2), nullable=True),
        sa.Column('respondent_note', sa.Text(), nullable=True),
    )
    op.create_index('ix_line_item_negotiations_session_id', 'line_item_negotiations', ['session_id'])

    op.create_table(
        'milestone_adjustments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), sa.ForeignKey('negotiation_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('milestone_id', sa.String(), nullable=False),
        sa.Column('original_percentage', sa.Float(), nullable=False),
        sa.Column('target_percentage', sa.Float(), nullable=False),
        sa.Column('initiator_note', sa.Text(), nullable=True),
    )
    op.create_index('ix_milestone_adjustments_session_id', 'milestone_adjustments', ['session_id'])

    op.create_table(
        'negotiation_comments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), sa.ForeignKey('negotiation_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('author_id', sa.String(), nullable=True),
        sa.Column('author_type', sa.String(), nullable=False),
        sa.Column('comment_type', sa.String(), nullable=False, server_default='general'),
        sa.Column('entity_reference', sa.String(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_negotiation_comments_session_id', 'negotiation_comments', ['session_id'])

    # No FKs: entries outlive the sessions they describe
    op.create_table(
        'negotiation_audit_log',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), nullable=True),
        sa.Column('proposal_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('old_state', sa.String(50), nullable=True),
        sa.Column('new_state', sa.String(50), nullable=True),
        sa.Column('action_metadata', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_negotiation_audit_log_session_id', 'negotiation_audit_log', ['session_id'])
    op.create_index('ix_negotiation_audit_log_proposal_id', 'negotiation_audit_log', ['proposal_id'])
    op.create_index('ix_negotiation_audit_log_user_id', 'negotiation_audit_log', ['user_id'])
    op.create_index('ix_negotiation_audit_log_action', 'negotiation_audit_log', ['action'])
    op.create_index(
        'idx_negotiation_audit_proposal_created_desc',
        'negotiation_audit_log',
        ['proposal_id', sa.text('created_at DESC')]
    )

    op.create_table(
        'rfp_invites',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('rfp_id', sa.String(), nullable=False),
        sa.Column('advisor_id', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_rfp_invites_rfp_id', 'rfp_invites', ['rfp_id'])
    op.create_index('ix_rfp_invites_advisor_id', 'rfp_invites', ['advisor_id'])
    op.create_index('ix_rfp_invites_rfp_advisor', 'rfp_invites', ['rfp_id', 'advisor_id'])


def downgrade() -> None:
    op.drop_table('rfp_invites')
    op.drop_table('negotiation_audit_log')
    op.drop_table('negotiation_comments')
    op.drop_table('milestone_adjustments')
    op.drop_table('line_item_negotiations')
    op.drop_index('uq_negotiation_sessions_active_proposal', table_name='negotiation_sessions')
    op.drop_table('negotiation_sessions')
    op.drop_table('milestone_payments')
    op.drop_table('proposal_line_items')
    op.drop_table('proposal_versions')
    op.drop_table('proposals')
