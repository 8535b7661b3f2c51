"""
Release activation - the one-way Locked -> Activated transition.

No lock is held around the write. The conditional UPDATE in
dao.activate_release is the only arbiter, so exactly one caller across
threads or processes observes the transition and schedules dispatch.
"""

from dataclasses import dataclass
from typing import Optional

from . import dao
from .dispatch import LetterDispatcher
from .errors import NotLocked
from util.logging import logger

ACTIVATED = 'activated'
ALREADY_ACTIVE = 'already_active'


@dataclass
class ActivationResult:
    outcome: str  # activated, already_active
    run_id: Optional[str] = None  # dispatch run, only on the transition edge

    @property
    def transitioned(self) -> bool:
        return self.outcome == ACTIVATED


class ReleaseActivator:

    def __init__(self, dispatcher: LetterDispatcher):
        self.dispatcher = dispatcher

    def activate(self, owner_id: str) -> ActivationResult:
        """
        Activate the owner's release if not already active.

        Raises:
            NotLocked: record vanished or was unlocked since verification
            PersistenceError: store unavailable; nothing was activated
        """
        record = dao.get_release_record(owner_id)
        if record is None or not record.is_locked:
            raise NotLocked()

        if record.release_activated:
            logger.log_activation(owner_id, ALREADY_ACTIVE)
            return ActivationResult(outcome=ALREADY_ACTIVE)

        if not dao.activate_release(owner_id, dao.utcnow()):
            # Lost the race, or the record changed under us
            current = dao.get_release_record(owner_id)
            if current is not None and current.release_activated:
                logger.log_activation(owner_id, ALREADY_ACTIVE, {"raced": True})
                return ActivationResult(outcome=ALREADY_ACTIVE)
            raise NotLocked()

        try:
            run_id = self.dispatcher.schedule(owner_id)
        except RuntimeError as e:
            # The transition is committed; pending letters wait for the sweep
            logger.error(f"Could not schedule letter dispatch for owner {owner_id}: {e}")
            logger.log_activation(owner_id, ACTIVATED, {"dispatch_run": None, "schedule_error": str(e)})
            return ActivationResult(outcome=ACTIVATED)

        logger.log_activation(owner_id, ACTIVATED, {"dispatch_run": run_id})
        return ActivationResult(outcome=ACTIVATED, run_id=run_id)
