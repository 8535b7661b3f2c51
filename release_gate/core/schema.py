"""
Record types for release activation and executor access.
Plain dataclasses; the DAO converts rows to these and back.
"""

from dataclasses import dataclass, asdict, fields
from datetime import datetime
from typing import Dict, List, Optional

RELEASE_TYPES = ('after_death', 'on_date', 'on_milestone', 'immediate')
RELATIONSHIP_STATUSES = ('invited', 'accepted', 'removed')


@dataclass(frozen=True)
class PermissionRecord:
    """Flat capability set attached to a trusted contact. No ordering or priority."""
    can_view_personal_details: bool = False
    can_view_medical_contacts: bool = False
    can_view_funeral_preferences: bool = False
    can_view_documents: bool = False
    can_view_letters: bool = False

    @classmethod
    def capabilities(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def none(cls) -> 'PermissionRecord':
        return cls()

    def allows(self, capability: str) -> bool:
        if capability not in self.capabilities():
            raise ValueError(f"Unknown capability: {capability}")
        return getattr(self, capability)

    def granted(self) -> List[str]:
        return [name for name in self.capabilities() if getattr(self, name)]

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'PermissionRecord':
        """Build from a mapping; missing or unknown keys are ignored, falsy values are False."""
        data = data or {}
        return cls(**{name: bool(data.get(name, False)) for name in cls.capabilities()})


@dataclass
class ReleaseRecord:
    owner_id: str
    is_locked: bool
    unlock_code_hash: Optional[str]
    executor_contact_ref: Optional[str]
    release_activated: bool = False
    release_activated_at: Optional[datetime] = None
    owner_display_name: Optional[str] = None


@dataclass
class ExecutorRelationship:
    executor_identity: str
    owner_id: str
    contact_ref: str
    status: str  # invited, accepted, removed


@dataclass
class TrustedContact:
    contact_ref: str
    owner_id: str
    name: str
    email: Optional[str]
    permissions: PermissionRecord


@dataclass
class AccessGrant:
    token: str
    owner_id: str
    contact_ref: str
    permissions: PermissionRecord
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class Letter:
    letter_id: str
    owner_id: str
    release_type: str  # after_death, on_date, on_milestone, immediate
    body: str
    title: Optional[str] = None
    recipient_ref: Optional[str] = None
    recipient_email: Optional[str] = None
    release_date: Optional[str] = None  # YYYY-MM-DD
    milestone_type: Optional[str] = None
    milestone_date: Optional[str] = None  # YYYY-MM-DD
    milestone_description: Optional[str] = None
    auto_delivery_enabled: bool = True
    delivered: bool = False
    delivered_at: Optional[datetime] = None
