"""initial migration

Revision ID: 001_initial_migration
Revises: 
Create Date: 2026-10-18 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '001_initial_migration'
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade():
    op.create_table(
        'websites',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('account_id', sa.String(64), nullable=True),
        sa.Column('url', sa.String(2048), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('health_score', sa.Integer, nullable=True),
        sa.Column('last_audit_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_websites_account_id', 'websites', ['account_id'])

    op.create_table(
        'audits',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('website_id', sa.String(36), sa.ForeignKey('websites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='queued'),
        sa.Column('progress', sa.Integer, nullable=False, server_default='0'),
        sa.Column('current_step', sa.String(255), nullable=True),
        sa.Column('optimization_mode', sa.String(32), nullable=False, server_default='balanced'),
        sa.Column('total_issues', sa.Integer, nullable=False, server_default='0'),
        sa.Column('critical_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('high_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('medium_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('low_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('score', sa.Integer, nullable=True),
        sa.Column('previous_score', sa.Integer, nullable=True),
        sa.Column('score_before', sa.Integer, nullable=True),
        sa.Column('score_after', sa.Integer, nullable=True),
        sa.Column('pages_scanned', sa.Integer, nullable=False, server_default='0'),
        sa.Column('crawl_data', JSONType, nullable=True),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_audits_website_id', 'audits', ['website_id'])
    op.create_index('idx_audits_status', 'audits', ['status'])

    op.create_table(
        'issues',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('audit_id', sa.String(36), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('website_id', sa.String(36), sa.ForeignKey('websites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('page_url', sa.String(2048), nullable=False),
        sa.Column('issue_type', sa.String(64), nullable=False),
        sa.Column('category', sa.String(32), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('severity', sa.String(16), nullable=False, server_default='medium'),
        sa.Column('risk_level', sa.String(16), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('current_value', sa.Text, nullable=True),
        sa.Column('suggested_value', sa.Text, nullable=True),
        sa.Column('proposal_safe', sa.Text, nullable=True),
        sa.Column('proposal_balanced', sa.Text, nullable=True),
        sa.Column('proposal_aggressive', sa.Text, nullable=True),
        sa.Column('chosen_fix_variant', sa.String(16), nullable=True),
        sa.Column('reasoning', sa.Text, nullable=True),
        sa.Column('suggestion_source', sa.String(32), nullable=True),
        sa.Column('confidence', sa.Float, nullable=False, server_default='0'),
        sa.Column('auto_fixable', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('fixed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_issues_audit_id', 'issues', ['audit_id'])
    op.create_index('idx_issues_audit_status', 'issues', ['audit_id', 'status'])

    op.create_table(
        'drafts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('audit_id', sa.String(36), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('website_id', sa.String(36), sa.ForeignKey('websites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('issue_id', sa.String(36), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=True),
        sa.Column('page_url', sa.String(2048), nullable=False),
        sa.Column('draft_type', sa.String(32), nullable=False),
        sa.Column('optimization_mode', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('current_value', sa.Text, nullable=True),
        sa.Column('proposed_value_safe', sa.Text, nullable=False, server_default=''),
        sa.Column('proposed_value_balanced', sa.Text, nullable=False, server_default=''),
        sa.Column('proposed_value_aggressive', sa.Text, nullable=False, server_default=''),
        sa.Column('selected_proposal', sa.String(16), nullable=False),
        sa.Column('html_diff', sa.Text, nullable=True),
        sa.Column('reasoning', sa.Text, nullable=True),
        sa.Column('impact_estimate', sa.String(32), nullable=True),
        sa.Column('confidence', sa.Float, nullable=False, server_default='0'),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_drafts_audit_id', 'drafts', ['audit_id'])
    op.create_index('idx_drafts_website_status', 'drafts', ['website_id', 'status'])

    op.create_table(
        'changes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('issue_id', sa.String(36), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=True),
        sa.Column('draft_id', sa.String(36), sa.ForeignKey('drafts.id', ondelete='CASCADE'), nullable=True),
        sa.Column('website_id', sa.String(36), sa.ForeignKey('websites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('change_type', sa.String(64), nullable=False),
        sa.Column('page_url', sa.String(2048), nullable=False),
        sa.Column('before_value', sa.Text, nullable=True),
        sa.Column('after_value', sa.Text, nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='applied'),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rolled_back_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_changes_website_id', 'changes', ['website_id'])
    op.create_index('idx_changes_issue_id', 'changes', ['issue_id'])

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('website_id', sa.String(36), sa.ForeignKey('websites.id', ondelete='CASCADE'), nullable=True),
        sa.Column('audit_id', sa.String(36), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=True),
        sa.Column('agent_type', sa.String(32), nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('reasoning', sa.Text, nullable=True),
        sa.Column('action', sa.String(64), nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_activity_logs_audit_id', 'activity_logs', ['audit_id'])


def downgrade():
    op.drop_table('activity_logs')
    op.drop_table('changes')
    op.drop_table('drafts')
    op.drop_table('issues')
    op.drop_table('audits')
    op.drop_table('websites')
