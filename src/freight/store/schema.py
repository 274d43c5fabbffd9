"""SQLite schema for the freight exchange store.

Mutable aggregates (loads, invoices) carry a ``version`` column for
compare-and-swap updates.  Log tables (state changes, invoice history,
negotiation messages) are append-only.
"""

from __future__ import annotations

import sqlite3

from freight.audit.store import init_audit_table

TABLES = (
    "accounts",
    "loads",
    "load_state_changes",
    "bids",
    "negotiation_messages",
    "negotiation_threads",
    "invoices",
    "invoice_history",
    "admin_audit_log",
)


def init_schema(conn: sqlite3.Connection) -> None:
    """Create every freight table and index if it does not already exist.

    Args:
        conn: An open sqlite3.Connection in autocommit mode.
    """
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS accounts (
            id TEXT PRIMARY KEY,
            role TEXT NOT NULL,
            is_verified INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS loads (
            id TEXT PRIMARY KEY,
            shipper_id TEXT NOT NULL,
            assigned_carrier_id TEXT,
            pickup_city TEXT NOT NULL,
            dropoff_city TEXT NOT NULL,
            cargo_description TEXT NOT NULL DEFAULT '',
            weight_tons TEXT NOT NULL DEFAULT '0',
            required_truck_type TEXT,
            status TEXT NOT NULL,
            previous_status TEXT,
            version INTEGER NOT NULL DEFAULT 1,
            shipper_price_per_ton TEXT,
            admin_suggested_price TEXT,
            admin_final_price TEXT,
            price_breakdown TEXT,
            price_locked INTEGER NOT NULL DEFAULT 0,
            price_locked_by TEXT,
            price_locked_at TEXT,
            post_mode TEXT,
            invited_carrier_ids TEXT NOT NULL DEFAULT '[]',
            awarded_bid_id TEXT,
            awarded_amount TEXT,
            invoice_id TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_loads_status ON loads (status);
        CREATE INDEX IF NOT EXISTS idx_loads_shipper ON loads (shipper_id);

        CREATE TABLE IF NOT EXISTS load_state_changes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            load_id TEXT NOT NULL REFERENCES loads (id),
            actor_id TEXT NOT NULL,
            from_state TEXT NOT NULL,
            to_state TEXT NOT NULL,
            reason TEXT,
            metadata TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_state_changes_load ON load_state_changes (load_id);

        CREATE TABLE IF NOT EXISTS bids (
            id TEXT PRIMARY KEY,
            load_id TEXT NOT NULL REFERENCES loads (id),
            carrier_id TEXT NOT NULL,
            carrier_type TEXT NOT NULL,
            amount TEXT NOT NULL,
            counter_amount TEXT,
            previous_amount TEXT,
            status TEXT NOT NULL,
            bid_type TEXT NOT NULL,
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_bids_load ON bids (load_id);

        CREATE TABLE IF NOT EXISTS negotiation_messages (
            id TEXT PRIMARY KEY,
            load_id TEXT NOT NULL REFERENCES loads (id),
            sequence INTEGER NOT NULL,
            bid_id TEXT,
            carrier_id TEXT,
            sender_id TEXT NOT NULL,
            sender_role TEXT NOT NULL,
            message_type TEXT NOT NULL,
            amount TEXT,
            previous_amount TEXT,
            body TEXT,
            created_at TEXT NOT NULL,
            UNIQUE (load_id, sequence)
        );

        CREATE TABLE IF NOT EXISTS negotiation_threads (
            load_id TEXT PRIMARY KEY REFERENCES loads (id),
            total_bids INTEGER NOT NULL DEFAULT 0,
            real_bids INTEGER NOT NULL DEFAULT 0,
            simulated_bids INTEGER NOT NULL DEFAULT 0,
            pending_counter_count INTEGER NOT NULL DEFAULT 0,
            countered_bid_ids TEXT NOT NULL DEFAULT '[]',
            accepted_bid_id TEXT,
            accepted_carrier_id TEXT,
            accepted_amount TEXT,
            last_sequence INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT
        );

        CREATE TABLE IF NOT EXISTS invoices (
            id TEXT PRIMARY KEY,
            invoice_number TEXT NOT NULL UNIQUE,
            load_id TEXT NOT NULL REFERENCES loads (id),
            shipper_id TEXT NOT NULL,
            admin_id TEXT NOT NULL,
            base_freight TEXT NOT NULL,
            fuel_surcharge TEXT NOT NULL DEFAULT '0',
            toll_charges TEXT NOT NULL DEFAULT '0',
            handling_fee TEXT NOT NULL DEFAULT '0',
            insurance_fee TEXT NOT NULL DEFAULT '0',
            discount_amount TEXT NOT NULL DEFAULT '0',
            discount_reason TEXT,
            tax_percent TEXT NOT NULL DEFAULT '18',
            subtotal TEXT NOT NULL,
            tax_amount TEXT NOT NULL,
            total_amount TEXT NOT NULL,
            status TEXT NOT NULL,
            shipper_response_type TEXT,
            shipper_counter_amount TEXT,
            shipper_message TEXT,
            revision_number INTEGER NOT NULL DEFAULT 1,
            previous_invoice_id TEXT REFERENCES invoices (id),
            idempotency_key TEXT NOT NULL UNIQUE,
            payment_terms_days INTEGER NOT NULL DEFAULT 30,
            due_date TEXT,
            sent_at TEXT,
            viewed_at TEXT,
            responded_at TEXT,
            paid_at TEXT,
            paid_amount TEXT,
            payment_reference TEXT,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_invoices_load ON invoices (load_id);

        CREATE TABLE IF NOT EXISTS invoice_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            invoice_id TEXT NOT NULL REFERENCES invoices (id),
            actor_id TEXT NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            metadata TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_invoice_history_invoice ON invoice_history (invoice_id);
    """)

    init_audit_table(conn)
