"""initial repairdesk schema

Revision ID: r1a2b3c4d5e6
Revises:
Create Date: 2026-03-02 00:00:00.000000

This migration creates the complete RepairDesk schema from scratch:
- users / roles / user_roles: staff accounts and role assignments
- clients / client_sessions: portal customers and their server-side sessions
- equipment / order_statuses / service_orders / order_status_history:
  the repair workflow and its append-only transition ledger
- invoice_sequences / invoices: electronic invoicing
- tickets / ticket_responses: client support
- security_events: security audit log
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'r1a2b3c4d5e6'
down_revision = None
branch_labels = None
depends_on = None


def _created_at(name='created_at'):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # Staff
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'user_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        _created_at('assigned_at'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_roles'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])
    op.create_index('ix_user_roles_role_id', 'user_roles', ['role_id'])

    # ============================================================================
    # Clients
    # ============================================================================
    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('display_name', sa.String(length=160), nullable=False),
        sa.Column('id_number', sa.String(length=20), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('id_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_clients_email', 'clients', ['email'], unique=True)

    # No FK on client_id: a session pointing at a deleted client must be detectable
    op.create_table(
        'client_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        _created_at(),
        _created_at('last_used_at'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_client_sessions_client_id', 'client_sessions', ['client_id'])
    op.create_index('ix_client_sessions_token_hash', 'client_sessions', ['token_hash'], unique=True)
    op.create_index('ix_client_sessions_expires_at', 'client_sessions', ['expires_at'])
    op.create_index('ix_client_sessions_is_revoked', 'client_sessions', ['is_revoked'])
    op.create_index('ix_client_sessions_client_active', 'client_sessions', ['client_id', 'is_revoked'])

    # ============================================================================
    # Workflow
    # ============================================================================
    op.create_table(
        'equipment',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('equipment_type', sa.String(length=64), nullable=False),
        sa.Column('brand', sa.String(length=64), nullable=True),
        sa.Column('model', sa.String(length=64), nullable=True),
        sa.Column('serial_number', sa.String(length=128), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_equipment_client_id', 'equipment', ['client_id'])
    op.create_index('ix_equipment_serial_number', 'equipment', ['serial_number'])

    op.create_table(
        'order_statuses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_statuses_code', 'order_statuses', ['code'], unique=True)

    op.create_table(
        'service_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('identity_tag', sa.String(length=32), nullable=False),
        sa.Column('status_id', sa.Integer(), nullable=False),
        sa.Column('proforma_status', sa.String(length=16), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('equipment_id', sa.Integer(), nullable=False),
        sa.Column('receptionist_id', sa.Integer(), nullable=False),
        sa.Column('technician_id', sa.Integer(), nullable=True),
        sa.Column('diagnosis', sa.Text(), nullable=True),
        sa.Column('parts', sa.Text(), nullable=True),
        sa.Column('total_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at('intake_date'),
        sa.Column('estimated_delivery_date', sa.Date(), nullable=True),
        sa.Column('proforma_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('proforma_decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('service_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('service_ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_by_name', sa.String(length=160), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['status_id'], ['order_statuses.id']),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.ForeignKeyConstraint(['equipment_id'], ['equipment.id']),
        sa.ForeignKeyConstraint(['receptionist_id'], ['users.id']),
        sa.ForeignKeyConstraint(['technician_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identity_tag'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_service_orders_status', 'service_orders', ['status_id'])
    op.create_index('ix_service_orders_client', 'service_orders', ['client_id'])
    op.create_index('ix_service_orders_technician_id', 'service_orders', ['technician_id'])

    # Append-only: one row per accepted transition
    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status_id', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('changed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('changed_by_client_id', sa.Integer(), nullable=True),
        _created_at('changed_at'),
        sa.ForeignKeyConstraint(['order_id'], ['service_orders.id']),
        sa.ForeignKeyConstraint(['status_id'], ['order_statuses.id']),
        sa.ForeignKeyConstraint(['changed_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['changed_by_client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'sequence', name='uq_order_status_history_seq'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    # ============================================================================
    # Invoicing
    # ============================================================================
    op.create_table(
        'invoice_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('establishment', sa.String(length=3), nullable=False),
        sa.Column('emission_point', sa.String(length=3), nullable=False),
        sa.Column('last_sequence', sa.Integer(), nullable=False),
        _created_at('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('establishment', 'emission_point', name='uq_invoice_sequences_scope'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=17), nullable=False),
        sa.Column('access_key', sa.String(length=44), nullable=False),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('subtotal', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('tax', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('total_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('pdf_path', sa.String(length=512), nullable=True),
        sa.Column('xml_path', sa.String(length=512), nullable=True),
        sa.Column('issued_by_user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['service_orders.id']),
        sa.ForeignKeyConstraint(['issued_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
        sa.UniqueConstraint('access_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'], unique=True)

    # ============================================================================
    # Support tickets
    # ============================================================================
    op.create_table(
        'tickets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ticket_number', sa.String(length=32), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('subject', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('assigned_to_user_id', sa.Integer(), nullable=True),
        _created_at(),
        _created_at('updated_at'),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.ForeignKeyConstraint(['order_id'], ['service_orders.id']),
        sa.ForeignKeyConstraint(['assigned_to_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ticket_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tickets_client_id', 'tickets', ['client_id'])
    op.create_index('ix_tickets_order_id', 'tickets', ['order_id'])
    op.create_index('ix_tickets_assigned_to_user_id', 'tickets', ['assigned_to_user_id'])
    op.create_index('ix_tickets_status_priority', 'tickets', ['status', 'priority'])

    op.create_table(
        'ticket_responses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False),
        sa.Column('responded_by_user_id', sa.Integer(), nullable=True),
        sa.Column('responded_by_client_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id']),
        sa.ForeignKeyConstraint(['responded_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['responded_by_client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_ticket_responses_ticket_id', 'ticket_responses', ['ticket_id'])

    # ============================================================================
    # Security audit log (append-only)
    # ============================================================================
    op.create_table(
        'security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('principal_kind', sa.String(length=16), nullable=True),
        sa.Column('principal_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        _created_at('occurred_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_security_events_principal_id', 'security_events', ['principal_id'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_success', 'security_events', ['success'])
    op.create_index('ix_security_events_principal', 'security_events', ['principal_kind', 'principal_id'])
    op.create_index('ix_security_events_occurred', 'security_events', ['occurred_at'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('security_events')
    op.drop_table('ticket_responses')
    op.drop_table('tickets')
    op.drop_table('invoices')
    op.drop_table('invoice_sequences')
    op.drop_table('order_status_history')
    op.drop_table('service_orders')
    op.drop_table('order_statuses')
    op.drop_table('equipment')
    op.drop_table('client_sessions')
    op.drop_table('clients')
    op.drop_table('user_roles')
    op.drop_table('roles')
    op.drop_table('users')
