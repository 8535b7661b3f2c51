"""
Letter dispatch - fans out letters bound to a release activation.

Each letter is delivered independently and marked delivered with its own
conditional update, so duplicate or concurrent runs can never flip a letter
twice. Runs execute on daemon threads; the caller only receives a run id.
"""

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from . import config, dao
from .errors import PersistenceError, SendTimeout
from .mailer import NotificationSender, OutboundMessage, build_sender
from .schema import Letter
from util.logging import logger

# Per-letter outcomes
SENT = 'sent'
ALREADY_DELIVERED = 'already_delivered'
MISSING_RECIPIENT = 'missing_recipient'
SEND_FAILED = 'send_failed'
TIMEOUT = 'timeout'
MARK_FAILED = 'mark_failed'  # sent, but the delivered flag could not be written
STORE_FAILED = 'store_failed'  # letter or recipient could not be read; nothing sent
AUTO_DELIVERY_DISABLED = 'auto_delivery_disabled'

# Finished run reports kept for get_run; running reports are never evicted
MAX_TRACKED_RUNS = 256


@dataclass
class Recipient:
    email: str
    name: Optional[str] = None


@dataclass
class DispatchReport:
    run_id: str
    owner_id: str
    status: str = 'running'  # running, completed, crashed
    outcomes: Dict[str, str] = field(default_factory=dict)  # letter_id -> outcome
    error: Optional[str] = None
    started_at: datetime = field(default_factory=dao.utcnow)
    finished_at: Optional[datetime] = None

    def letters_with(self, outcome: str) -> List[str]:
        return [letter_id for letter_id, result in self.outcomes.items() if result == outcome]

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for result in self.outcomes.values():
            counts[result] = counts.get(result, 0) + 1
        return counts


def resolve_recipient(letter: Letter) -> Optional[Recipient]:
    """
    Resolve where a letter goes.

    An explicit recipient_email on the letter wins. Otherwise the email of the
    linked recipient contact is used, provided that contact belongs to the
    same owner. Blank values count as absent.
    """
    contact = dao.get_trusted_contact(letter.recipient_ref) if letter.recipient_ref else None
    if contact is not None and contact.owner_id != letter.owner_id:
        contact = None

    name = contact.name if contact else None
    explicit = (letter.recipient_email or "").strip()
    if explicit:
        return Recipient(email=explicit, name=name)

    if contact is not None and (contact.email or "").strip():
        return Recipient(email=contact.email.strip(), name=name)

    return None


def compose_message(letter: Letter, recipient: Recipient, owner_name: Optional[str] = None) -> OutboundMessage:
    owner_name = owner_name or "a loved one"
    subject = letter.title or f"A Message From {owner_name}"

    if letter.release_type == 'after_death':
        footnote = f"This message was created to be shared with you after {owner_name}'s passing."
    elif letter.release_type == 'on_date':
        footnote = f"This message was scheduled to be delivered to you on {letter.release_date}."
    elif letter.release_type == 'on_milestone':
        milestone = letter.milestone_type or "a milestone"
        if letter.milestone_description:
            milestone += f" ({letter.milestone_description})"
        footnote = f"This message was meant to be shared with you on the milestone: {milestone}."
    else:
        footnote = ""

    body = (
        f"Dear {recipient.name or 'Friend'},\n\n"
        f"You are receiving this message because {owner_name} wanted you to have this letter.\n\n"
        f"{letter.body}\n\n"
        f"{footnote}\n\n"
        "With love and remembrance\n"
    )
    return OutboundMessage(recipient=recipient.email, subject=subject, body=body,
                           dedup_key=f"letter-{letter.letter_id}")


class LetterDispatcher:
    """Delivers letters through an injected sender, one conditional update per letter."""

    def __init__(self, sender: NotificationSender = None, send_timeout_sec: float = None):
        self.sender = sender if sender is not None else build_sender()
        self.send_timeout_sec = send_timeout_sec or config.SEND_TIMEOUT_SEC
        # In-process run registry only; persistence is never guarded by this lock
        self._registry_lock = threading.Lock()
        self._runs: "OrderedDict[str, DispatchReport]" = OrderedDict()
        self._threads: Dict[str, threading.Thread] = {}

    def schedule(self, owner_id: str) -> str:
        """Start a background dispatch run for the owner and return its id without waiting."""
        run_id = f"dispatch_{uuid.uuid4().hex[:12]}"
        report = DispatchReport(run_id=run_id, owner_id=owner_id)
        thread = threading.Thread(target=self._run, args=(report,), name=run_id, daemon=True)

        with self._registry_lock:
            self._runs[run_id] = report
            self._threads[run_id] = thread
            self._evict_finished_runs()

        thread.start()
        logger.info(f"Scheduled letter dispatch {run_id} for owner {owner_id}")
        return run_id

    def _evict_finished_runs(self):
        # Caller holds _registry_lock
        overflow = len(self._runs) - MAX_TRACKED_RUNS
        if overflow <= 0:
            return
        finished = [run_id for run_id, report in self._runs.items() if report.status != 'running']
        for run_id in finished[:overflow]:
            del self._runs[run_id]

    def get_run(self, run_id: str) -> Optional[DispatchReport]:
        with self._registry_lock:
            return self._runs.get(run_id)

    def list_runs(self) -> List[DispatchReport]:
        with self._registry_lock:
            return list(self._runs.values())

    def wait(self, run_id: str, timeout: float = None) -> Optional[DispatchReport]:
        """Block until a run finishes (or the timeout passes). Intended for tests and scripts."""
        with self._registry_lock:
            thread = self._threads.get(run_id)
        if thread is not None:
            thread.join(timeout)
        return self.get_run(run_id)

    def _run(self, report: DispatchReport):
        start_time = time.monotonic()
        try:
            self.dispatch_owner(report.owner_id, report=report)
            report.status = 'completed'
        except Exception as e:
            # The run registry is this unit of work's error channel
            report.status = 'crashed'
            report.error = str(e)
            logger.error(f"Letter dispatch {report.run_id} for owner {report.owner_id} crashed: {e}")
        finally:
            report.finished_at = dao.utcnow()
            with self._registry_lock:
                self._threads.pop(report.run_id, None)
            logger.log_dispatch_run(report.run_id, report.owner_id, report.status, start_time,
                                    time.monotonic(), report.summary())

    def dispatch_owner(self, owner_id: str, report: DispatchReport = None) -> DispatchReport:
        """Deliver every pending after_death letter for the owner. Synchronous."""
        if report is None:
            report = DispatchReport(run_id=f"inline_{uuid.uuid4().hex[:12]}", owner_id=owner_id)

        record = dao.get_release_record(owner_id)
        owner_name = record.owner_display_name if record else None

        for letter in dao.list_pending_after_death_letters(owner_id):
            report.outcomes[letter.letter_id] = self.deliver(letter, owner_name=owner_name)

        return report

    def deliver(self, letter: Letter, owner_name: str = None) -> str:
        """
        Attempt one letter. Never raises for transport or per-letter store problems.

        Returns:
            One of the per-letter outcome constants
        """
        if not letter.auto_delivery_enabled:
            return AUTO_DELIVERY_DISABLED

        try:
            current = dao.get_letter(letter.letter_id)
            if current is None or current.delivered:
                logger.log_delivery(letter.letter_id, ALREADY_DELIVERED)
                return ALREADY_DELIVERED

            recipient = resolve_recipient(current)
        except PersistenceError as e:
            logger.log_delivery(letter.letter_id, STORE_FAILED, {"error": str(e)})
            return STORE_FAILED

        if recipient is None:
            logger.log_delivery(letter.letter_id, MISSING_RECIPIENT, {"owner_id": letter.owner_id})
            return MISSING_RECIPIENT

        message = compose_message(current, recipient, owner_name)

        try:
            sent = self._send_with_timeout(message)
        except SendTimeout:
            logger.log_delivery(letter.letter_id, TIMEOUT, {"timeout_sec": self.send_timeout_sec})
            return TIMEOUT

        if not sent:
            logger.log_delivery(letter.letter_id, SEND_FAILED, {"recipient": recipient.email})
            return SEND_FAILED

        try:
            flipped = dao.mark_letter_delivered(letter.letter_id, dao.utcnow())
        except PersistenceError as e:
            logger.log_delivery(letter.letter_id, MARK_FAILED, {"error": str(e)})
            return MARK_FAILED

        if not flipped:
            # A concurrent run marked it between our read and our write
            logger.log_delivery(letter.letter_id, ALREADY_DELIVERED, {"raced": True})
            return ALREADY_DELIVERED

        logger.log_delivery(letter.letter_id, SENT, {"recipient": recipient.email})
        return SENT

    def _send_with_timeout(self, message: OutboundMessage) -> bool:
        result = {}

        def _target():
            try:
                result["ok"] = bool(self.sender.send(message))
            except Exception as e:
                result["error"] = e

        worker = threading.Thread(target=_target, name=f"send-{message.dedup_key}", daemon=True)
        worker.start()
        worker.join(self.send_timeout_sec)

        if worker.is_alive():
            raise SendTimeout(f"Send of {message.dedup_key} exceeded {self.send_timeout_sec}s")

        if "error" in result:
            logger.error(f"Sender raised for {message.dedup_key}: {result['error']}")
            return False

        return result.get("ok", False)
