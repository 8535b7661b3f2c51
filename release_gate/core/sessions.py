"""
Executor access grants.

A grant carries a snapshot of the contact's permissions taken at issuance.
Later edits to the contact's permissions do not reach an existing grant;
re-verification issues a new one.
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

from . import config, dao
from .errors import GrantInvalid, InsufficientPermissions
from .schema import AccessGrant, PermissionRecord
from util.logging import logger


class SessionIssuer:
    """Issues, looks up and revokes time-bound executor grants."""

    def __init__(self, ttl_sec: int = None):
        self.ttl_sec = ttl_sec

    def _ttl(self) -> timedelta:
        return timedelta(seconds=self.ttl_sec or config.GRANT_TTL_SEC)

    def issue(self, owner_id: str, contact_ref: str, permissions: PermissionRecord) -> AccessGrant:
        """Issue a new grant. The permission record is copied, not referenced."""
        issued_at = dao.utcnow()
        grant = AccessGrant(
            token=secrets.token_urlsafe(32),
            owner_id=owner_id,
            contact_ref=contact_ref,
            permissions=PermissionRecord.from_dict(permissions.to_dict()),
            issued_at=issued_at,
            expires_at=issued_at + self._ttl()
        )
        dao.insert_grant(grant)

        logger.log_grant("issued", owner_id, contact_ref, {
            "granted": grant.permissions.granted(),
            "expires_at": grant.expires_at.isoformat()
        })
        return grant

    def get(self, token: str, now: datetime = None) -> Optional[AccessGrant]:
        """Look up a live grant. Expired grants are destroyed on sight."""
        if not token:
            return None

        grant = dao.get_grant(token)
        if grant is None:
            return None

        if grant.is_expired(now or dao.utcnow()):
            dao.delete_grant(token)
            logger.log_grant("expired", grant.owner_id, grant.contact_ref)
            return None

        return grant

    def authorize(self, token: str, capability: str = None) -> AccessGrant:
        """
        Resolve a bearer token to its grant, optionally requiring a capability.

        Raises:
            GrantInvalid: unknown, revoked or expired token
            InsufficientPermissions: grant lacks the capability
        """
        grant = self.get(token)
        if grant is None:
            raise GrantInvalid()

        if capability is not None:
            try:
                allowed = grant.permissions.allows(capability)
            except ValueError:
                raise InsufficientPermissions(f"Unknown capability: {capability}")
            if not allowed:
                raise InsufficientPermissions(f"Grant does not include {capability}")

        return grant

    def revoke(self, token: str) -> bool:
        grant = dao.get_grant(token) if token else None
        if grant is None:
            return False

        revoked = dao.delete_grant(token)
        if revoked:
            logger.log_grant("revoked", grant.owner_id, grant.contact_ref)
        return revoked

    def purge_expired(self) -> int:
        """Delete every expired grant. Returns the number removed."""
        removed = dao.delete_expired_grants(dao.utcnow())
        if removed:
            logger.info(f"Purged {removed} expired executor grants")
        return removed
