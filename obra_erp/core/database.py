"""
Database access layer for the construction ERP.

Thin wrapper over psycopg 3 with dict rows. Services run their SQL through
fetch_one/fetch_all/execute, passing an open connection when several
statements must commit together inside transaction().
"""

from contextlib import contextmanager
from typing import Any, Generator

import psycopg
from psycopg.rows import dict_row

from obra_erp.config import settings
from obra_erp.core.logging import get_logger

log = get_logger(__name__)


SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

-- identity and tenancy
CREATE TABLE IF NOT EXISTS users (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    email VARCHAR(255) UNIQUE NOT NULL,
    full_name VARCHAR(255) NOT NULL DEFAULT '',
    password_hash VARCHAR(255),
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS sessions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    token VARCHAR(128) UNIQUE NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS password_resets (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    token_hash VARCHAR(128) UNIQUE NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    used_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS organizations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name VARCHAR(255) NOT NULL,
    legal_name VARCHAR(255),
    tax_id VARCHAR(50),
    address VARCHAR(255),
    city VARCHAR(100),
    country VARCHAR(100),
    email VARCHAR(255),
    phone VARCHAR(50),
    website VARCHAR(255),
    logo_storage_key TEXT,
    max_storage_gb INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS org_members (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    role VARCHAR(20) NOT NULL,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    restricted_to_projects BOOLEAN NOT NULL DEFAULT FALSE,
    custom_permissions JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (org_id, user_id)
);

CREATE TABLE IF NOT EXISTS invitations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    email VARCHAR(255) NOT NULL,
    role VARCHAR(20) NOT NULL,
    token VARCHAR(128) UNIQUE NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
    invited_by UUID REFERENCES users(id),
    expires_at TIMESTAMPTZ NOT NULL,
    accepted_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (org_id, email)
);

-- projects
CREATE TABLE IF NOT EXISTS projects (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_number VARCHAR(50) NOT NULL,
    name VARCHAR(255) NOT NULL,
    client_name VARCHAR(255),
    location VARCHAR(255),
    description TEXT,
    m2 NUMERIC(14, 2),
    start_date DATE,
    planned_end_date DATE,
    status VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
    phase VARCHAR(30) NOT NULL DEFAULT 'PRE_CONSTRUCTION',
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_by UUID REFERENCES users(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (org_id, project_number)
);

CREATE INDEX IF NOT EXISTS idx_projects_org ON projects(org_id, active);

CREATE TABLE IF NOT EXISTS project_members (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    org_member_id UUID NOT NULL REFERENCES org_members(id) ON DELETE CASCADE,
    project_role VARCHAR(20) NOT NULL,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (project_id, org_member_id)
);

-- budget
CREATE TABLE IF NOT EXISTS wbs_nodes (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    parent_id UUID REFERENCES wbs_nodes(id) ON DELETE CASCADE,
    code VARCHAR(50) NOT NULL,
    name VARCHAR(500) NOT NULL,
    unit VARCHAR(20),
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (project_id, code)
);

CREATE TABLE IF NOT EXISTS budget_versions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    version_code VARCHAR(20) NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'DRAFT',
    markup_mode VARCHAR(20) NOT NULL DEFAULT 'GLOBAL',
    global_overhead_pct NUMERIC(7, 4) NOT NULL DEFAULT 15,
    global_financial_pct NUMERIC(7, 4) NOT NULL DEFAULT 5,
    global_profit_pct NUMERIC(7, 4) NOT NULL DEFAULT 20,
    global_tax_pct NUMERIC(7, 4) NOT NULL DEFAULT 21,
    direct_cost_total NUMERIC(16, 2) NOT NULL DEFAULT 0,
    sale_price_total NUMERIC(16, 2) NOT NULL DEFAULT 0,
    approved_at TIMESTAMPTZ,
    approved_by UUID REFERENCES users(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (project_id, version_code)
);

CREATE TABLE IF NOT EXISTS budget_lines (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    budget_version_id UUID NOT NULL REFERENCES budget_versions(id) ON DELETE CASCADE,
    wbs_node_id UUID NOT NULL REFERENCES wbs_nodes(id) ON DELETE CASCADE,
    description VARCHAR(500) NOT NULL,
    unit VARCHAR(20),
    quantity NUMERIC(16, 4) NOT NULL DEFAULT 1,
    overhead_pct NUMERIC(7, 4),
    financial_pct NUMERIC(7, 4),
    profit_pct NUMERIC(7, 4),
    tax_pct NUMERIC(7, 4),
    direct_cost_total NUMERIC(16, 2) NOT NULL DEFAULT 0,
    sale_price_total NUMERIC(16, 2) NOT NULL DEFAULT 0,
    sort_order INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_budget_lines_version ON budget_lines(budget_version_id);

CREATE TABLE IF NOT EXISTS budget_resources (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    budget_line_id UUID NOT NULL REFERENCES budget_lines(id) ON DELETE CASCADE,
    resource_type VARCHAR(20) NOT NULL,
    description VARCHAR(500) NOT NULL DEFAULT '',
    unit VARCHAR(20),
    quantity NUMERIC(16, 4) NOT NULL DEFAULT 0,
    unit_cost NUMERIC(16, 4) NOT NULL DEFAULT 0,
    attributes JSONB,
    sort_order INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_budget_resources_line ON budget_resources(budget_line_id);

CREATE TABLE IF NOT EXISTS progress_updates (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    wbs_node_id UUID REFERENCES wbs_nodes(id) ON DELETE CASCADE,
    progress_pct NUMERIC(6, 2) NOT NULL,
    as_of_date DATE NOT NULL,
    created_by UUID REFERENCES users(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- parties
CREATE TABLE IF NOT EXISTS global_parties (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name VARCHAR(255) NOT NULL,
    tax_id VARCHAR(50),
    category VARCHAR(100),
    email VARCHAR(255),
    phone VARCHAR(50),
    website VARCHAR(255),
    verified BOOLEAN NOT NULL DEFAULT FALSE,
    org_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS parties (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    party_type VARCHAR(20) NOT NULL,
    name VARCHAR(255) NOT NULL,
    tax_id VARCHAR(50),
    email VARCHAR(255),
    phone VARCHAR(50),
    address VARCHAR(255),
    city VARCHAR(100),
    country VARCHAR(100),
    contact_name VARCHAR(255),
    notes TEXT,
    global_party_id UUID REFERENCES global_parties(id),
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS org_party_links (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    global_party_id UUID NOT NULL REFERENCES global_parties(id) ON DELETE CASCADE,
    party_id UUID REFERENCES parties(id),
    local_alias VARCHAR(255),
    local_contact_name VARCHAR(255),
    local_contact_email VARCHAR(255),
    local_contact_phone VARCHAR(50),
    preferred BOOLEAN NOT NULL DEFAULT FALSE,
    status VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
    payment_terms VARCHAR(255),
    discount_pct NUMERIC(6, 2),
    notes TEXT,
    created_by UUID REFERENCES users(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (org_id, global_party_id)
);

-- purchase commitments
CREATE TABLE IF NOT EXISTS commitments (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    party_id UUID NOT NULL REFERENCES parties(id),
    commitment_type VARCHAR(20) NOT NULL DEFAULT 'PO',
    commitment_number VARCHAR(30) NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'DRAFT',
    issue_date DATE NOT NULL,
    description TEXT,
    currency VARCHAR(3) NOT NULL DEFAULT 'USD',
    total NUMERIC(16, 2) NOT NULL DEFAULT 0,
    deleted BOOLEAN NOT NULL DEFAULT FALSE,
    created_by UUID REFERENCES users(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_commitments_number
    ON commitments(org_id, commitment_type, commitment_number);

CREATE TABLE IF NOT EXISTS commitment_lines (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    commitment_id UUID NOT NULL REFERENCES commitments(id) ON DELETE CASCADE,
    wbs_node_id UUID REFERENCES wbs_nodes(id),
    description VARCHAR(500) NOT NULL,
    unit VARCHAR(20),
    quantity NUMERIC(16, 4) NOT NULL,
    unit_price NUMERIC(16, 4) NOT NULL,
    line_total NUMERIC(16, 2) NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0
);

-- finance
CREATE TABLE IF NOT EXISTS finance_transactions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID REFERENCES projects(id),
    party_id UUID REFERENCES parties(id),
    transaction_number VARCHAR(30) NOT NULL,
    type VARCHAR(20) NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'DRAFT',
    document_type VARCHAR(20) NOT NULL DEFAULT 'INVOICE',
    issue_date DATE NOT NULL,
    due_date DATE,
    paid_date DATE,
    description TEXT,
    currency VARCHAR(3) NOT NULL DEFAULT 'USD',
    exchange_rate NUMERIC(14, 6) NOT NULL DEFAULT 1,
    subtotal NUMERIC(16, 2) NOT NULL DEFAULT 0,
    tax_total NUMERIC(16, 2) NOT NULL DEFAULT 0,
    total NUMERIC(16, 2) NOT NULL DEFAULT 0,
    amount_base_currency NUMERIC(16, 2) NOT NULL DEFAULT 0,
    retention_amount NUMERIC(16, 2) NOT NULL DEFAULT 0,
    deleted BOOLEAN NOT NULL DEFAULT FALSE,
    created_by UUID REFERENCES users(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (org_id, transaction_number)
);

CREATE INDEX IF NOT EXISTS idx_finance_tx_org_date ON finance_transactions(org_id, issue_date);
CREATE INDEX IF NOT EXISTS idx_finance_tx_project ON finance_transactions(project_id);

CREATE TABLE IF NOT EXISTS finance_lines (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    transaction_id UUID NOT NULL REFERENCES finance_transactions(id) ON DELETE CASCADE,
    wbs_node_id UUID REFERENCES wbs_nodes(id),
    description VARCHAR(500) NOT NULL,
    quantity NUMERIC(16, 4) NOT NULL DEFAULT 1,
    unit_price NUMERIC(16, 4) NOT NULL DEFAULT 0,
    line_total NUMERIC(16, 2) NOT NULL DEFAULT 0,
    sort_order INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS overhead_allocations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    transaction_id UUID NOT NULL REFERENCES finance_transactions(id) ON DELETE CASCADE,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    allocation_pct NUMERIC(7, 4) NOT NULL,
    allocation_amount NUMERIC(16, 2) NOT NULL,
    UNIQUE (transaction_id, project_id)
);

-- inventory
CREATE TABLE IF NOT EXISTS inventory_categories (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    name VARCHAR(100) NOT NULL,
    UNIQUE (org_id, name)
);

CREATE TABLE IF NOT EXISTS inventory_items (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    category_id UUID REFERENCES inventory_categories(id),
    sku VARCHAR(50) NOT NULL,
    name VARCHAR(255) NOT NULL,
    unit VARCHAR(20) NOT NULL,
    min_stock_qty NUMERIC(16, 4) NOT NULL DEFAULT 0,
    reorder_qty NUMERIC(16, 4) NOT NULL DEFAULT 0,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (org_id, sku)
);

CREATE TABLE IF NOT EXISTS inventory_locations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID REFERENCES projects(id),
    name VARCHAR(255) NOT NULL,
    type VARCHAR(30) NOT NULL,
    active BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE TABLE IF NOT EXISTS inventory_movements (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    item_id UUID NOT NULL REFERENCES inventory_items(id),
    movement_type VARCHAR(20) NOT NULL,
    from_location_id UUID REFERENCES inventory_locations(id),
    to_location_id UUID REFERENCES inventory_locations(id),
    project_id UUID REFERENCES projects(id),
    party_id UUID REFERENCES parties(id),
    quantity NUMERIC(16, 4) NOT NULL,
    unit_cost NUMERIC(16, 4) NOT NULL DEFAULT 0,
    total_cost NUMERIC(16, 2) NOT NULL DEFAULT 0,
    movement_date DATE NOT NULL,
    notes TEXT,
    created_by UUID REFERENCES users(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_inventory_movements_item ON inventory_movements(item_id);

-- documents
CREATE TABLE IF NOT EXISTS document_folders (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID REFERENCES projects(id) ON DELETE CASCADE,
    parent_id UUID REFERENCES document_folders(id),
    name VARCHAR(255) NOT NULL,
    created_by UUID REFERENCES users(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS documents (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID REFERENCES projects(id),
    folder_id UUID REFERENCES document_folders(id),
    title VARCHAR(255) NOT NULL,
    doc_type VARCHAR(50) NOT NULL DEFAULT 'OTHER',
    category VARCHAR(100),
    description TEXT,
    deleted BOOLEAN NOT NULL DEFAULT FALSE,
    created_by UUID REFERENCES users(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS document_versions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    document_id UUID NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    version_number INTEGER NOT NULL,
    file_name VARCHAR(255) NOT NULL,
    mime_type VARCHAR(100) NOT NULL,
    size_bytes BIGINT NOT NULL,
    storage_key TEXT NOT NULL,
    checksum VARCHAR(64),
    uploaded_by UUID REFERENCES users(id),
    uploaded_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (document_id, version_number)
);

CREATE TABLE IF NOT EXISTS document_links (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    document_id UUID NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    entity_type VARCHAR(30) NOT NULL,
    entity_id UUID NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (document_id, entity_type, entity_id)
);

-- change orders
CREATE TABLE IF NOT EXISTS change_orders (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    party_id UUID REFERENCES parties(id),
    number VARCHAR(20) NOT NULL,
    title VARCHAR(255) NOT NULL,
    reason TEXT NOT NULL,
    justification TEXT,
    change_type VARCHAR(20) NOT NULL DEFAULT 'SCOPE',
    budget_impact_type VARCHAR(20) NOT NULL DEFAULT 'APPROVED_CHANGE',
    status VARCHAR(30) NOT NULL DEFAULT 'DRAFT',
    cost_impact NUMERIC(16, 2) NOT NULL DEFAULT 0,
    time_impact_days INTEGER NOT NULL DEFAULT 0,
    request_date DATE,
    approved_date DATE,
    implemented_date DATE,
    approved_by UUID REFERENCES users(id),
    created_by UUID REFERENCES users(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (project_id, number)
);

CREATE TABLE IF NOT EXISTS change_order_lines (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    change_order_id UUID NOT NULL REFERENCES change_orders(id) ON DELETE CASCADE,
    wbs_node_id UUID NOT NULL REFERENCES wbs_nodes(id),
    change_type VARCHAR(10) NOT NULL,
    justification VARCHAR(500) NOT NULL,
    delta_cost NUMERIC(16, 2) NOT NULL DEFAULT 0,
    new_qty NUMERIC(16, 4),
    new_unit_cost NUMERIC(16, 4)
);

-- schedule
CREATE TABLE IF NOT EXISTS schedules (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name VARCHAR(255) NOT NULL,
    working_days_per_week INTEGER NOT NULL DEFAULT 5,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS schedule_tasks (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    schedule_id UUID NOT NULL REFERENCES schedules(id) ON DELETE CASCADE,
    wbs_node_id UUID REFERENCES wbs_nodes(id),
    code VARCHAR(50) NOT NULL,
    name VARCHAR(500) NOT NULL,
    planned_start_date DATE NOT NULL,
    planned_end_date DATE NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS task_dependencies (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    predecessor_id UUID NOT NULL REFERENCES schedule_tasks(id) ON DELETE CASCADE,
    successor_id UUID NOT NULL REFERENCES schedule_tasks(id) ON DELETE CASCADE,
    dependency_type VARCHAR(2) NOT NULL DEFAULT 'FS',
    lag_days INTEGER NOT NULL DEFAULT 0,
    UNIQUE (predecessor_id, successor_id)
);

-- outbox
CREATE TABLE IF NOT EXISTS outbox_events (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    org_id UUID NOT NULL,
    event_type VARCHAR(100) NOT NULL,
    entity_type VARCHAR(100) NOT NULL,
    entity_id VARCHAR(100) NOT NULL,
    payload JSONB,
    status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    processed_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_outbox_status_created ON outbox_events(status, created_at);
"""


class Database:
    """PostgreSQL operations for the ERP."""

    def __init__(self, connection_string: str | None = None):
        """
        Initialize database access.

        Args:
            connection_string: PostgreSQL connection URL. Uses settings if not provided.
        """
        self.connection_string = connection_string or settings.database_url

    @contextmanager
    def get_connection(self) -> Generator[psycopg.Connection, None, None]:
        """Get a database connection as a context manager."""
        conn = psycopg.connect(self.connection_string, row_factory=dict_row)
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[psycopg.Connection, None, None]:
        """Connection that commits on success and rolls back on any error."""
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def fetch_one(
        self,
        sql: str,
        params: tuple | dict | None = None,
        conn: psycopg.Connection | None = None,
    ) -> dict[str, Any] | None:
        """Run a query and return the first row (commits when no connection is passed)."""
        if conn is not None:
            return conn.execute(sql, params).fetchone()
        with self.get_connection() as own:
            row = own.execute(sql, params).fetchone()
            own.commit()
            return row

    def fetch_all(
        self,
        sql: str,
        params: tuple | dict | None = None,
        conn: psycopg.Connection | None = None,
    ) -> list[dict[str, Any]]:
        """Run a query and return all rows."""
        if conn is not None:
            return conn.execute(sql, params).fetchall()
        with self.get_connection() as own:
            return own.execute(sql, params).fetchall()

    def execute(
        self,
        sql: str,
        params: tuple | dict | None = None,
        conn: psycopg.Connection | None = None,
    ) -> int:
        """Run a statement and return the affected row count."""
        if conn is not None:
            return conn.execute(sql, params).rowcount
        with self.get_connection() as own:
            count = own.execute(sql, params).rowcount
            own.commit()
            return count

    def lock_sequence(self, conn: psycopg.Connection, key: str) -> None:
        """
        Take a transaction-scoped advisory lock on a numbering sequence.

        Held until commit or rollback, so read-max-then-insert numbering
        for the same key runs one transaction at a time.
        """
        conn.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (key,))

    def ping(self) -> bool:
        """Run SELECT 1 against the database."""
        with self.get_connection() as conn:
            conn.execute("SELECT 1")
        return True

    def init_schema(self) -> None:
        """Initialize database schema (create tables if not exist)."""
        with self.get_connection() as conn:
            conn.execute(SCHEMA_SQL)
            conn.commit()
            log.info("database_schema_initialized")
