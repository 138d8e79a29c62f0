"""Initial migration - create all tables

Revision ID: 001_initial
Revises: None
Create Date: 2024-01-15

Creates all database tables for the exam session engine:
- test_templates: Published test definitions (generated plan or custom bank)
- applications: Scholarship applications checked by the eligibility gate
- session_snapshots: Resumable state of in-progress sessions
- test_results: Final scores, one per application and test

Also creates indexes for common query patterns.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Test Templates Table ──────────────────────────────────
    op.create_table(
        'test_templates',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('time_limit_minutes', sa.Integer(), nullable=False),
        sa.Column('total_questions', sa.Integer(), nullable=False),
        sa.Column('audience_level', sa.Text(), nullable=False, server_default=''),
        sa.Column('language', sa.Text(), nullable=False, server_default='English'),
        sa.Column('subjects', sa.Text(), nullable=True),
        sa.Column('questions', sa.Text(), nullable=True),
        sa.Column('sections', sa.Text(), nullable=True),
        sa.Column('window_start', sa.DateTime(), nullable=True),
        sa.Column('window_end', sa.DateTime(), nullable=True),
        sa.Column('required_modality', sa.Text(), nullable=False, server_default='online'),
        sa.Column('pass_threshold', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(),
                  server_default=sa.func.now(), nullable=False),
    )

    # ── Applications Table ────────────────────────────────────
    op.create_table(
        'applications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('application_number', sa.String(64), nullable=False, unique=True),
        sa.Column('unique_id', sa.Text(), nullable=True),
        sa.Column('full_name', sa.Text(), nullable=False),
        sa.Column('test_mode', sa.Text(), nullable=False, server_default='online'),
        sa.Column('payment_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(),
                  server_default=sa.func.now(), nullable=False),
    )

    op.create_index('ix_applications_application_number', 'applications', ['application_number'])

    # ── Session Snapshots Table ───────────────────────────────
    op.create_table(
        'session_snapshots',
        sa.Column('context_id', sa.String(100), primary_key=True),
        sa.Column('test_id', sa.String(100), primary_key=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(),
                  server_default=sa.func.now(), nullable=False),
    )

    # ── Test Results Table ────────────────────────────────────
    op.create_table(
        'test_results',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('application_id', sa.String(64), nullable=False),
        sa.Column('applicant_name', sa.Text(), nullable=False),
        sa.Column('test_id', sa.String(100), nullable=False),
        sa.Column('test_name', sa.Text(), nullable=False),
        sa.Column('total_questions', sa.Integer(), nullable=False),
        sa.Column('correct_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('wrong_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unanswered_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('time_taken_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('trigger', sa.Text(), nullable=False),
        sa.Column('result_json', sa.Text(), nullable=False),
        sa.Column('questions_json', sa.Text(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(),
                  server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('application_id', 'test_id', name='uq_test_results_application_test'),
    )

    # Indexes for the leaderboard and per-test lookups
    op.create_index('ix_test_results_test_id', 'test_results', ['test_id'])
    op.create_index('ix_test_results_percentage', 'test_results', ['percentage'])


def downgrade() -> None:
    """Drop all tables in reverse creation order."""
    op.drop_index('ix_test_results_percentage', table_name='test_results')
    op.drop_index('ix_test_results_test_id', table_name='test_results')
    op.drop_table('test_results')
    op.drop_table('session_snapshots')
    op.drop_index('ix_applications_application_number', table_name='applications')
    op.drop_table('applications')
    op.drop_table('test_templates')
