"""
SQLite persistence for release records, executor relationships, contacts,
letters and access grants.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator
from . import config

REQUIRED_TABLES = ['release_records', 'executor_relationships', 'trusted_contacts',
                   'letters', 'access_grants']


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    # Concurrent writers wait on the busy timeout instead of failing immediately
    conn = sqlite3.connect(config.get_db_path(), timeout=30)
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    """Initialize the database with required tables."""
    config.ensure_db_directory()

    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('PRAGMA journal_mode=WAL')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS release_records (
                owner_id TEXT PRIMARY KEY,
                is_locked BOOLEAN NOT NULL DEFAULT FALSE,
                unlock_code_hash TEXT,
                executor_contact_ref TEXT,
                release_activated BOOLEAN NOT NULL DEFAULT FALSE,
                release_activated_at TIMESTAMP,
                owner_display_name TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CHECK ((release_activated = 0) = (release_activated_at IS NULL))
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS trusted_contacts (
                contact_ref TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT NOT NULL,
                email TEXT,
                can_view_personal_details BOOLEAN NOT NULL DEFAULT FALSE,
                can_view_medical_contacts BOOLEAN NOT NULL DEFAULT FALSE,
                can_view_funeral_preferences BOOLEAN NOT NULL DEFAULT FALSE,
                can_view_documents BOOLEAN NOT NULL DEFAULT FALSE,
                can_view_letters BOOLEAN NOT NULL DEFAULT FALSE
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS executor_relationships (
                executor_identity TEXT NOT NULL,
                owner_id TEXT NOT NULL,
                contact_ref TEXT NOT NULL,
                status TEXT NOT NULL CHECK (status IN ('invited', 'accepted', 'removed')),
                PRIMARY KEY (executor_identity, owner_id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS letters (
                letter_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                release_type TEXT NOT NULL
                    CHECK (release_type IN ('after_death', 'on_date', 'on_milestone', 'immediate')),
                title TEXT,
                body TEXT NOT NULL,
                recipient_ref TEXT,
                recipient_email TEXT,
                release_date TEXT,
                milestone_type TEXT,
                milestone_date TEXT,
                milestone_description TEXT,
                auto_delivery_enabled BOOLEAN NOT NULL DEFAULT TRUE,
                delivered BOOLEAN NOT NULL DEFAULT FALSE,
                delivered_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CHECK ((delivered = 0) = (delivered_at IS NULL))
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS access_grants (
                token TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                contact_ref TEXT NOT NULL,
                permissions TEXT NOT NULL,  -- JSON snapshot, never updated
                issued_at TIMESTAMP NOT NULL,
                expires_at TIMESTAMP NOT NULL
            )
        ''')

        # Create indexes for the dispatch and sweep queries
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_letters_owner_pending ON letters(owner_id, delivered)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_grants_expires_at ON access_grants(expires_at)')

        conn.commit()


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            tables = cursor.fetchall()

            # Check if required tables exist
            table_names = [table[0] for table in tables]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
