"""Pipeline queue, budget ledger and person graph

Revision ID: 3b9c1e52d7a0
Revises:
Create Date: 2026-10-18 09:12:44.502113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3b9c1e52d7a0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Create documents table
    op.create_table('documents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('data_set', sa.Text(), nullable=True),
        sa.Column('file_name', sa.Text(), nullable=True),
        sa.Column('source_url', sa.Text(), nullable=True),
        sa.Column('ai_analysis_status', sa.Text(), server_default='pending', nullable=False),
        sa.Column('ai_cost_cents', sa.Float(), server_default='0', nullable=False),
        sa.Column('extracted_text_length', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Create pipeline_jobs table (never deleted; audit trail)
    op.create_table('pipeline_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=True),
        sa.Column('job_type', sa.Text(), server_default='ai_analysis', nullable=False),
        sa.Column('status', sa.Text(), server_default='pending', nullable=False),
        sa.Column('priority', sa.Integer(), server_default='0', nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('max_attempts', sa.Integer(), server_default='3', nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], ),
        sa.PrimaryKeyConstraint('id')
    )

    # Create budget_tracking table
    op.create_table('budget_tracking',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('model', sa.Text(), nullable=False),
        sa.Column('input_tokens', sa.Integer(), server_default='0', nullable=False),
        sa.Column('output_tokens', sa.Integer(), server_default='0', nullable=False),
        sa.Column('cost_cents', sa.Float(), server_default='0', nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=True),
        sa.Column('job_type', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], ),
        sa.PrimaryKeyConstraint('id')
    )

    # Create persons table
    op.create_table('persons',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('aliases', postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column('category', sa.Text(), server_default='associate', nullable=False),
        sa.Column('role', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('document_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('connection_count', sa.Integer(), server_default='0', nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Create connections table
    op.create_table('connections',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('person_id_1', sa.Integer(), nullable=False),
        sa.Column('person_id_2', sa.Integer(), nullable=False),
        sa.Column('connection_type', sa.Text(), server_default='associated', nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('strength', sa.Integer(), server_default='1', nullable=False),
        sa.ForeignKeyConstraint(['person_id_1'], ['persons.id'], ),
        sa.ForeignKeyConstraint(['person_id_2'], ['persons.id'], ),
        sa.PrimaryKeyConstraint('id')
    )

    # Create person_documents table
    op.create_table('person_documents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('person_id', sa.Integer(), nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('context', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['person_id'], ['persons.id'], ),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], ),
        sa.PrimaryKeyConstraint('id')
    )

    # Create timeline_events table
    op.create_table('timeline_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('date', sa.Text(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.Text(), server_default='other', nullable=False),
        sa.Column('significance', sa.Integer(), server_default='1', nullable=False),
        sa.Column('person_ids', postgresql.ARRAY(sa.Integer()), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Create indexes
    op.create_index('idx_documents_ai_status', 'documents', ['ai_analysis_status'])
    op.create_index('idx_pipeline_jobs_status_priority', 'pipeline_jobs', ['status', 'priority'])
    op.create_index(
        'uq_pipeline_jobs_active_document', 'pipeline_jobs', ['document_id', 'job_type'],
        unique=True, postgresql_where=sa.text("status IN ('pending', 'processing')")
    )
    op.create_index('idx_budget_tracking_date', 'budget_tracking', ['date'])
    op.create_index('uq_persons_lower_name', 'persons', [sa.text('lower(name)')], unique=True)
    op.create_index('idx_connections_person_id_1', 'connections', ['person_id_1'])
    op.create_index('idx_connections_person_id_2', 'connections', ['person_id_2'])
    op.create_index('idx_person_documents_person_id', 'person_documents', ['person_id'])
    op.create_index('idx_person_documents_document_id', 'person_documents', ['document_id'])
    op.create_index('idx_timeline_events_date', 'timeline_events', ['date'])


def downgrade() -> None:
    """Downgrade schema."""
    # Drop indexes
    op.drop_index('idx_timeline_events_date', table_name='timeline_events')
    op.drop_index('idx_person_documents_document_id', table_name='person_documents')
    op.drop_index('idx_person_documents_person_id', table_name='person_documents')
    op.drop_index('idx_connections_person_id_2', table_name='connections')
    op.drop_index('idx_connections_person_id_1', table_name='connections')
    op.drop_index('uq_persons_lower_name', table_name='persons')
    op.drop_index('idx_budget_tracking_date', table_name='budget_tracking')
    op.drop_index('uq_pipeline_jobs_active_document', table_name='pipeline_jobs')
    op.drop_index('idx_pipeline_jobs_status_priority', table_name='pipeline_jobs')
    op.drop_index('idx_documents_ai_status', table_name='documents')

    # Drop tables
    op.drop_table('timeline_events')
    op.drop_table('person_documents')
    op.drop_table('connections')
    op.drop_table('persons')
    op.drop_table('budget_tracking')
    op.drop_table('pipeline_jobs')
    op.drop_table('documents')
