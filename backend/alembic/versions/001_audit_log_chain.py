"""create hash-chained audit_log table

Revision ID: 001_audit_log_chain
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_audit_log_chain'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'audit_log',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column('log_id', sa.String(length=64), nullable=False),
        sa.Column('event_type', sa.String(length=40), nullable=False),
        sa.Column('event_category', sa.String(length=40), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('username', sa.String(length=255), nullable=True),
        sa.Column('user_role', sa.String(length=50), nullable=True),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('resource', sa.String(length=255), nullable=True),
        sa.Column('resource_id', sa.String(length=255), nullable=True),
        sa.Column('method', sa.String(length=10), nullable=True),
        sa.Column('endpoint', sa.String(length=500), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('status_code', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('changes_before', postgresql.JSONB(), nullable=True),
        sa.Column('changes_after', postgresql.JSONB(), nullable=True),
        sa.Column('changed_fields', postgresql.JSONB(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=False),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('device_info', sa.String(length=255), nullable=True),
        sa.Column('geo_country', sa.String(length=100), nullable=True),
        sa.Column('geo_region', sa.String(length=100), nullable=True),
        sa.Column('geo_city', sa.String(length=100), nullable=True),
        sa.Column('session_id', sa.String(length=255), nullable=True),
        sa.Column('severity', sa.String(length=20), nullable=False, server_default='Low'),
        sa.Column('risk_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('risk_factors', postgresql.JSONB(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('checksum', sa.String(length=64), nullable=False),
        sa.Column('previous_checksum', sa.String(length=64), nullable=False),
        sa.Column('retention_policy', sa.String(length=32), nullable=False),
        sa.Column('retention_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint('log_id', name='uq_audit_log_log_id'),
        sa.UniqueConstraint('previous_checksum', name='uq_audit_log_previous_checksum'),
    )

    op.create_index('ix_audit_log_event_type', 'audit_log', ['event_type'])
    op.create_index('ix_audit_log_event_category', 'audit_log', ['event_category'])
    op.create_index('ix_audit_log_user_id', 'audit_log', ['user_id'])
    op.create_index('ix_audit_log_username', 'audit_log', ['username'])
    op.create_index('ix_audit_log_ip_address', 'audit_log', ['ip_address'])
    op.create_index('ix_audit_log_severity', 'audit_log', ['severity'])
    op.create_index('ix_audit_log_risk_score', 'audit_log', ['risk_score'])
    op.create_index('ix_audit_log_timestamp', 'audit_log', ['timestamp'])
    op.create_index('ix_audit_log_timestamp_id', 'audit_log', ['timestamp', 'id'])
    op.create_index('ix_audit_log_event_type_timestamp', 'audit_log', ['event_type', 'timestamp'])
    op.create_index('ix_audit_log_user_id_timestamp', 'audit_log', ['user_id', 'timestamp'])
    op.create_index('ix_audit_log_resource', 'audit_log', ['resource', 'resource_id', 'timestamp'])
    op.create_index('ix_audit_log_retention_date', 'audit_log', ['retention_date'])

    # Storage-level guard: rows can never be deleted, and the only permitted
    # update is the archival job flipping archived from false to true.
    op.execute("""
        CREATE OR REPLACE FUNCTION audit_log_reject_mutation() RETURNS trigger AS $$
        BEGIN
            IF TG_OP = 'UPDATE'
               AND NOT OLD.archived AND NEW.archived
               AND (to_jsonb(NEW) - 'archived') = (to_jsonb(OLD) - 'archived') THEN
                RETURN NEW;
            END IF;
            RAISE EXCEPTION 'audit_log entries are immutable (log_id=%)', OLD.log_id;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER audit_log_immutable
        BEFORE UPDATE OR DELETE ON audit_log
        FOR EACH ROW EXECUTE FUNCTION audit_log_reject_mutation();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS audit_log_immutable ON audit_log")
    op.execute("DROP FUNCTION IF EXISTS audit_log_reject_mutation()")
    op.drop_index('ix_audit_log_retention_date', table_name='audit_log')
    op.drop_index('ix_audit_log_resource', table_name='audit_log')
    op.drop_index('ix_audit_log_user_id_timestamp', table_name='audit_log')
    op.drop_index('ix_audit_log_event_type_timestamp', table_name='audit_log')
    op.drop_index('ix_audit_log_timestamp_id', table_name='audit_log')
    op.drop_index('ix_audit_log_timestamp', table_name='audit_log')
    op.drop_index('ix_audit_log_risk_score', table_name='audit_log')
    op.drop_index('ix_audit_log_severity', table_name='audit_log')
    op.drop_index('ix_audit_log_ip_address', table_name='audit_log')
    op.drop_index('ix_audit_log_username', table_name='audit_log')
    op.drop_index('ix_audit_log_user_id', table_name='audit_log')
    op.drop_index('ix_audit_log_event_category', table_name='audit_log')
    op.drop_index('ix_audit_log_event_type', table_name='audit_log')
    op.drop_table('audit_log')
