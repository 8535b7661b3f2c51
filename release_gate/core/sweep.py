"""
Scheduled letter sweep.

Delivers on_date and on_milestone letters whose day has come, and retries
after_death letters an earlier dispatch run failed to send. Only owners with
an activated release are considered. Uses the same per-letter deliver path
as activation dispatch, so a sweep racing a dispatch run cannot double-send.
"""

from datetime import date
from typing import Dict, Optional

from . import config, dao, heartbeat
from .dispatch import STORE_FAILED, LetterDispatcher
from .errors import PersistenceError
from .release_service import get_dispatcher, sessions
from util.logging import logger


def sweep_due_letters(today: Optional[date] = None, dispatcher: LetterDispatcher = None) -> Dict[str, str]:
    """
    Deliver every due letter once.

    Returns:
        letter_id -> delivery outcome
    """
    dispatcher = dispatcher or get_dispatcher()
    day = (today or dao.utcnow().date()).isoformat()

    owner_names: Dict[str, Optional[str]] = {}
    outcomes: Dict[str, str] = {}

    for letter in dao.list_due_letters(day):
        if letter.owner_id not in owner_names:
            try:
                record = dao.get_release_record(letter.owner_id)
            except PersistenceError as e:
                # Left undelivered for the next sweep
                logger.log_delivery(letter.letter_id, STORE_FAILED, {"error": str(e)})
                outcomes[letter.letter_id] = STORE_FAILED
                continue
            owner_names[letter.owner_id] = record.owner_display_name if record else None
        outcomes[letter.letter_id] = dispatcher.deliver(letter, owner_name=owner_names[letter.owner_id])

    logger.log_operation("letters.sweep", "success", {"day": day, "letters": len(outcomes)})
    return outcomes


def purge_expired_grants() -> int:
    return sessions.purge_expired()


def register_sweep_tasks():
    """Register the sweep and grant purge with the heartbeat loop."""
    heartbeat.register_task("letter_sweep", config.get_sweep_interval(), sweep_due_letters)
    heartbeat.register_task("grant_purge", config.GRANT_PURGE_INTERVAL_SEC, purge_expired_grants)
