"""Add report_jobs table

Revision ID: 001_report_jobs
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_report_jobs'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One row per report generation request
    op.create_table(
        'report_jobs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.String(255), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('platform', sa.String(50), nullable=False),  # jira, monday, trofos
        sa.Column('template', sa.String(50), nullable=False),  # standard, executive, detailed
        sa.Column('status', sa.String(20), nullable=False, server_default='queued'),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('configuration', sa.JSON(), nullable=False),
        sa.Column('file_path', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('project_info', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_report_jobs_owner_created', 'report_jobs', ['owner_id', 'created_at'])
    op.create_index('ix_report_jobs_status', 'report_jobs', ['status'])


def downgrade() -> None:
    op.drop_index('ix_report_jobs_status', table_name='report_jobs')
    op.drop_index('ix_report_jobs_owner_created', table_name='report_jobs')
    op.drop_table('report_jobs')
