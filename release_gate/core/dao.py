"""
Data access for the release gate.
Every state transition that can race (release activation, letter delivery)
is a single conditional UPDATE whose rowcount says whether this caller won.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .db import get_db
from .errors import PersistenceError
from .schema import (
    AccessGrant,
    ExecutorRelationship,
    Letter,
    PermissionRecord,
    ReleaseRecord,
    TrustedContact,
)
from util.logging import logger

PERMISSION_COLUMNS = ", ".join(PermissionRecord.capabilities())

LETTER_COLUMNS = (
    "letter_id, owner_id, release_type, body, title, recipient_ref, recipient_email, "
    "release_date, milestone_type, milestone_date, milestone_description, "
    "auto_delivery_enabled, delivered, delivered_at"
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _normalize_identity(identity: str) -> str:
    return (identity or "").strip().lower()


@contextmanager
def _store_call(operation: str):
    """Translate storage failures into PersistenceError after logging them."""
    try:
        yield
    except sqlite3.Error as e:
        logger.error(f"Database error during {operation}: {e}")
        raise PersistenceError(f"Release store unavailable during {operation}") from e


# Release records

def upsert_release_record(owner_id: str, is_locked: bool, unlock_code_hash: Optional[str],
                          executor_contact_ref: Optional[str], owner_display_name: Optional[str] = None) -> None:
    """Create or update an owner's release settings.

    A None hash or display name keeps the stored value. The activation flag
    is never written here.
    """
    with _store_call("upsert_release_record"), get_db() as conn:
        conn.execute(
            '''
            INSERT INTO release_records
                (owner_id, is_locked, unlock_code_hash, executor_contact_ref, owner_display_name)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(owner_id) DO UPDATE SET
                is_locked = excluded.is_locked,
                unlock_code_hash = COALESCE(excluded.unlock_code_hash, release_records.unlock_code_hash),
                executor_contact_ref = excluded.executor_contact_ref,
                owner_display_name = COALESCE(excluded.owner_display_name, release_records.owner_display_name),
                updated_at = CURRENT_TIMESTAMP
            ''',
            (owner_id, bool(is_locked), unlock_code_hash, executor_contact_ref, owner_display_name)
        )
        conn.commit()


def get_release_record(owner_id: str) -> Optional[ReleaseRecord]:
    with _store_call("get_release_record"), get_db() as conn:
        row = conn.execute(
            '''
            SELECT owner_id, is_locked, unlock_code_hash, executor_contact_ref,
                   release_activated, release_activated_at, owner_display_name
            FROM release_records WHERE owner_id = ?
            ''',
            (owner_id,)
        ).fetchone()

    if not row:
        return None

    owner, is_locked, code_hash, contact_ref, activated, activated_at, display_name = row
    return ReleaseRecord(
        owner_id=owner,
        is_locked=bool(is_locked),
        unlock_code_hash=code_hash,
        executor_contact_ref=contact_ref,
        release_activated=bool(activated),
        release_activated_at=_to_dt(activated_at),
        owner_display_name=display_name
    )


def activate_release(owner_id: str, activated_at: datetime) -> bool:
    """Flip release_activated false->true. Returns True only for the caller that flipped it."""
    with _store_call("activate_release"), get_db() as conn:
        cursor = conn.execute(
            '''
            UPDATE release_records
            SET release_activated = 1, release_activated_at = ?, updated_at = CURRENT_TIMESTAMP
            WHERE owner_id = ? AND is_locked = 1 AND release_activated = 0
            ''',
            (activated_at.isoformat(), owner_id)
        )
        conn.commit()
        return cursor.rowcount == 1


# Trusted contacts and permissions

def save_trusted_contact(contact: TrustedContact) -> None:
    perms = contact.permissions
    with _store_call("save_trusted_contact"), get_db() as conn:
        conn.execute(
            f'''
            INSERT OR REPLACE INTO trusted_contacts
                (contact_ref, owner_id, name, email, {PERMISSION_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''',
            (contact.contact_ref, contact.owner_id, contact.name, contact.email,
             *[perms.allows(name) for name in PermissionRecord.capabilities()])
        )
        conn.commit()


def set_contact_permissions(contact_ref: str, permissions: PermissionRecord) -> bool:
    assignments = ", ".join(f"{name} = ?" for name in PermissionRecord.capabilities())
    with _store_call("set_contact_permissions"), get_db() as conn:
        cursor = conn.execute(
            f"UPDATE trusted_contacts SET {assignments} WHERE contact_ref = ?",
            (*[permissions.allows(name) for name in PermissionRecord.capabilities()], contact_ref)
        )
        conn.commit()
        return cursor.rowcount == 1


def get_trusted_contact(contact_ref: str) -> Optional[TrustedContact]:
    with _store_call("get_trusted_contact"), get_db() as conn:
        row = conn.execute(
            f"SELECT contact_ref, owner_id, name, email, {PERMISSION_COLUMNS} "
            "FROM trusted_contacts WHERE contact_ref = ?",
            (contact_ref,)
        ).fetchone()

    if not row:
        return None

    ref, owner_id, name, email, *flags = row
    permissions = PermissionRecord(*[bool(flag) for flag in flags])
    return TrustedContact(contact_ref=ref, owner_id=owner_id, name=name, email=email,
                          permissions=permissions)


def get_permission_record(contact_ref: str) -> Optional[PermissionRecord]:
    contact = get_trusted_contact(contact_ref)
    return contact.permissions if contact else None


# Executor relationships

def save_relationship(executor_identity: str, owner_id: str, contact_ref: str, status: str) -> None:
    with _store_call("save_relationship"), get_db() as conn:
        conn.execute(
            '''
            INSERT INTO executor_relationships (executor_identity, owner_id, contact_ref, status)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(executor_identity, owner_id) DO UPDATE SET
                contact_ref = excluded.contact_ref,
                status = excluded.status
            ''',
            (_normalize_identity(executor_identity), owner_id, contact_ref, status)
        )
        conn.commit()


def get_relationship(executor_identity: str, owner_id: str) -> Optional[ExecutorRelationship]:
    with _store_call("get_relationship"), get_db() as conn:
        row = conn.execute(
            '''
            SELECT executor_identity, owner_id, contact_ref, status
            FROM executor_relationships
            WHERE executor_identity = ? AND owner_id = ?
            ''',
            (_normalize_identity(executor_identity), owner_id)
        ).fetchone()

    return ExecutorRelationship(*row) if row else None


def list_relationships(executor_identity: str, statuses: Iterable[str]) -> List[ExecutorRelationship]:
    statuses = list(statuses)
    if not statuses:
        return []
    placeholders = ", ".join("?" for _ in statuses)
    with _store_call("list_relationships"), get_db() as conn:
        rows = conn.execute(
            f'''
            SELECT executor_identity, owner_id, contact_ref, status
            FROM executor_relationships
            WHERE executor_identity = ? AND status IN ({placeholders})
            ORDER BY owner_id
            ''',
            (_normalize_identity(executor_identity), *statuses)
        ).fetchall()
    return [ExecutorRelationship(*row) for row in rows]


# Letters

def _row_to_letter(row) -> Letter:
    (letter_id, owner_id, release_type, body, title, recipient_ref, recipient_email,
     release_date, milestone_type, milestone_date, milestone_description,
     auto_delivery_enabled, delivered, delivered_at) = row
    return Letter(
        letter_id=letter_id,
        owner_id=owner_id,
        release_type=release_type,
        body=body,
        title=title,
        recipient_ref=recipient_ref,
        recipient_email=recipient_email,
        release_date=release_date,
        milestone_type=milestone_type,
        milestone_date=milestone_date,
        milestone_description=milestone_description,
        auto_delivery_enabled=bool(auto_delivery_enabled),
        delivered=bool(delivered),
        delivered_at=_to_dt(delivered_at)
    )


def save_letter(letter: Letter) -> None:
    """Insert a new letter. Delivery state always starts undelivered."""
    with _store_call("save_letter"), get_db() as conn:
        conn.execute(
            f"INSERT INTO letters ({LETTER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, NULL)",
            (letter.letter_id, letter.owner_id, letter.release_type, letter.body, letter.title,
             letter.recipient_ref, letter.recipient_email, letter.release_date,
             letter.milestone_type, letter.milestone_date, letter.milestone_description,
             bool(letter.auto_delivery_enabled))
        )
        conn.commit()


def get_letter(letter_id: str) -> Optional[Letter]:
    with _store_call("get_letter"), get_db() as conn:
        row = conn.execute(
            f"SELECT {LETTER_COLUMNS} FROM letters WHERE letter_id = ?",
            (letter_id,)
        ).fetchone()
    return _row_to_letter(row) if row else None


def list_pending_after_death_letters(owner_id: str) -> List[Letter]:
    """Letters the activation event should dispatch for this owner."""
    with _store_call("list_pending_after_death_letters"), get_db() as conn:
        rows = conn.execute(
            f'''
            SELECT {LETTER_COLUMNS} FROM letters
            WHERE owner_id = ? AND release_type = 'after_death'
              AND auto_delivery_enabled = 1 AND delivered = 0
            ORDER BY created_at, letter_id
            ''',
            (owner_id,)
        ).fetchall()
    return [_row_to_letter(row) for row in rows]


def list_due_letters(today: str) -> List[Letter]:
    """Undelivered auto-delivery letters whose trigger has arrived for activated owners.

    Covers on_date and on_milestone letters due on or before `today` (YYYY-MM-DD)
    and after_death letters left undelivered by an earlier dispatch run.
    """
    prefixed = ", ".join(f"l.{col.strip()}" for col in LETTER_COLUMNS.split(","))
    with _store_call("list_due_letters"), get_db() as conn:
        rows = conn.execute(
            f'''
            SELECT {prefixed}
            FROM letters l
            JOIN release_records r ON r.owner_id = l.owner_id
            WHERE r.release_activated = 1
              AND l.auto_delivery_enabled = 1
              AND l.delivered = 0
              AND (
                    l.release_type = 'after_death'
                 OR (l.release_type = 'on_date' AND l.release_date IS NOT NULL AND l.release_date <= ?)
                 OR (l.release_type = 'on_milestone' AND l.milestone_date IS NOT NULL AND l.milestone_date <= ?)
              )
            ORDER BY l.owner_id, l.created_at, l.letter_id
            ''',
            (today, today)
        ).fetchall()
    return [_row_to_letter(row) for row in rows]


def mark_letter_delivered(letter_id: str, delivered_at: datetime) -> bool:
    """Flip delivered false->true. Returns True only for the caller that flipped it."""
    with _store_call("mark_letter_delivered"), get_db() as conn:
        cursor = conn.execute(
            "UPDATE letters SET delivered = 1, delivered_at = ? WHERE letter_id = ? AND delivered = 0",
            (delivered_at.isoformat(), letter_id)
        )
        conn.commit()
        return cursor.rowcount == 1


# Access grants

def insert_grant(grant: AccessGrant) -> None:
    with _store_call("insert_grant"), get_db() as conn:
        conn.execute(
            '''
            INSERT INTO access_grants (token, owner_id, contact_ref, permissions, issued_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ''',
            (grant.token, grant.owner_id, grant.contact_ref,
             json.dumps(grant.permissions.to_dict(), sort_keys=True),
             grant.issued_at.isoformat(), grant.expires_at.isoformat())
        )
        conn.commit()


def get_grant(token: str) -> Optional[AccessGrant]:
    with _store_call("get_grant"), get_db() as conn:
        row = conn.execute(
            '''
            SELECT token, owner_id, contact_ref, permissions, issued_at, expires_at
            FROM access_grants WHERE token = ?
            ''',
            (token,)
        ).fetchone()

    if not row:
        return None

    token, owner_id, contact_ref, permissions, issued_at, expires_at = row
    return AccessGrant(
        token=token,
        owner_id=owner_id,
        contact_ref=contact_ref,
        permissions=PermissionRecord.from_dict(json.loads(permissions)),
        issued_at=_to_dt(issued_at),
        expires_at=_to_dt(expires_at)
    )


def delete_grant(token: str) -> bool:
    with _store_call("delete_grant"), get_db() as conn:
        cursor = conn.execute("DELETE FROM access_grants WHERE token = ?", (token,))
        conn.commit()
        return cursor.rowcount == 1


def delete_expired_grants(now: datetime) -> int:
    with _store_call("delete_expired_grants"), get_db() as conn:
        cursor = conn.execute("DELETE FROM access_grants WHERE expires_at <= ?", (now.isoformat(),))
        conn.commit()
        return cursor.rowcount
