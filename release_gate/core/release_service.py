"""
Executor access entry point.

verify_executor_access runs identity check, code check, activation and
grant issuance in that order. Letter dispatch is only ever scheduled by the
activation that wins the transition, and is never waited on here.
"""

from dataclasses import dataclass
from typing import List, Optional

from . import dao
from .activation import ActivationResult, ReleaseActivator
from .codes import hash_access_code
from .dispatch import LetterDispatcher
from .errors import ReleaseAccessError
from .schema import AccessGrant, ReleaseRecord
from .sessions import SessionIssuer
from .verifier import verify_access_code, verify_executor_identity
from util.logging import logger

ACCOUNT_STATUSES = ('invited', 'accepted')


@dataclass
class VerificationResult:
    grant: AccessGrant
    activation: ActivationResult
    executor_name: Optional[str] = None


@dataclass
class ExecutorAccount:
    owner_id: str
    contact_ref: str
    status: str
    owner_display_name: Optional[str] = None
    is_locked: bool = False
    release_activated: bool = False


# Process-wide collaborators; the dispatcher is built on first use so the
# mail transport is only resolved when something actually needs it
sessions = SessionIssuer()
_dispatcher: Optional[LetterDispatcher] = None


def get_dispatcher() -> LetterDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = LetterDispatcher()
    return _dispatcher


def set_dispatcher(dispatcher: Optional[LetterDispatcher]):
    """Swap the process dispatcher (tests, alternate transports). None resets to lazy default."""
    global _dispatcher
    _dispatcher = dispatcher


def verify_executor_access(identity: str, owner_id: str, presented_code: str,
                           dispatcher: LetterDispatcher = None) -> VerificationResult:
    """
    Verify an executor and open an access grant.

    Args:
        identity: Identity key asserted by the upstream identity provider
        owner_id: Owner whose data is being unlocked
        presented_code: Access code typed by the executor
        dispatcher: Override for the process dispatcher

    Returns:
        VerificationResult with the new grant and the activation outcome

    Raises:
        NotAnExecutor, NotLocked, InvalidCode, WrongExecutor: verification failed
        PersistenceError: store unavailable; retry the whole call
    """
    try:
        relationship = verify_executor_identity(identity, owner_id)
        _record, permissions = verify_access_code(owner_id, presented_code, relationship)

        activator = ReleaseActivator(dispatcher or get_dispatcher())
        activation = activator.activate(owner_id)

        grant = sessions.issue(owner_id, relationship.contact_ref, permissions)
    except ReleaseAccessError as e:
        logger.log_verification(owner_id, identity, "failed", e.error_type)
        raise

    contact = dao.get_trusted_contact(relationship.contact_ref)
    logger.log_verification(owner_id, identity, "success", activation.outcome)

    return VerificationResult(
        grant=grant,
        activation=activation,
        executor_name=contact.name if contact else None
    )


def configure_release(owner_id: str, code: Optional[str], executor_contact_ref: Optional[str],
                      is_locked: bool = True, owner_display_name: Optional[str] = None) -> ReleaseRecord:
    """
    Owner-side setup of the release record.

    A None code keeps the stored hash. The activation flag is never touched,
    so re-configuring an activated release cannot reset it.

    Raises:
        ValueError: malformed code, unknown contact, or locking without any code
    """
    code_hash = hash_access_code(code) if code is not None else None

    if executor_contact_ref is not None:
        contact = dao.get_trusted_contact(executor_contact_ref)
        if contact is None or contact.owner_id != owner_id:
            raise ValueError(f"Executor contact {executor_contact_ref} does not belong to owner {owner_id}")

    existing = dao.get_release_record(owner_id)
    if is_locked and code_hash is None and (existing is None or not existing.unlock_code_hash):
        raise ValueError("A locked release requires an access code")

    dao.upsert_release_record(owner_id, is_locked, code_hash, executor_contact_ref, owner_display_name)
    logger.log_operation("release.configure", "success", {
        "owner_id": owner_id,
        "is_locked": is_locked,
        "code_changed": code_hash is not None,
        "executor_contact_ref": executor_contact_ref
    })
    return dao.get_release_record(owner_id)


def list_executor_accounts(identity: str) -> List[ExecutorAccount]:
    """Accounts the identity has been invited to or accepted for."""
    accounts = []
    for relationship in dao.list_relationships(identity, ACCOUNT_STATUSES):
        record = dao.get_release_record(relationship.owner_id)
        accounts.append(ExecutorAccount(
            owner_id=relationship.owner_id,
            contact_ref=relationship.contact_ref,
            status=relationship.status,
            owner_display_name=record.owner_display_name if record else None,
            is_locked=record.is_locked if record else False,
            release_activated=record.release_activated if record else False
        ))
    return accounts
