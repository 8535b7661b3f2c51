"""
Executor identity and access code verification.
Both checks are read-only; nothing here mutates a release record or letter.
"""

from typing import Tuple

from . import dao
from .codes import check_access_code
from .errors import InvalidCode, NotAnExecutor, NotLocked, WrongExecutor
from .schema import ExecutorRelationship, PermissionRecord, ReleaseRecord


def verify_executor_identity(identity: str, owner_id: str) -> ExecutorRelationship:
    """
    Confirm an asserted identity is an accepted executor for the owner.

    Args:
        identity: Stable identity key (verified email) asserted upstream
        owner_id: Owner whose data the executor claims access to

    Returns:
        The accepted ExecutorRelationship

    Raises:
        NotAnExecutor: no relationship, or it is not accepted
    """
    if not identity or not identity.strip() or not owner_id:
        raise NotAnExecutor()

    relationship = dao.get_relationship(identity, owner_id)
    if relationship is None or relationship.status != 'accepted':
        raise NotAnExecutor()

    return relationship


def verify_access_code(owner_id: str, presented_code: str,
                       relationship: ExecutorRelationship) -> Tuple[ReleaseRecord, PermissionRecord]:
    """
    Check the presented code against the owner's release record.

    Order matters: an unconfigured record is NotLocked before any hash work,
    a mismatch is InvalidCode, and only a correct code reaches the
    designated-executor cross-check.

    Returns:
        (release record, permission record of the verified contact)
    """
    record = dao.get_release_record(owner_id)
    if record is None or not record.is_locked or not record.unlock_code_hash:
        raise NotLocked()

    if not check_access_code(presented_code, record.unlock_code_hash):
        raise InvalidCode()

    if record.executor_contact_ref != relationship.contact_ref:
        raise WrongExecutor()

    permissions = dao.get_permission_record(relationship.contact_ref)
    return record, permissions or PermissionRecord.none()
