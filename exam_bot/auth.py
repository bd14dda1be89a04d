"""Admin authority and the authorized-group allowlist.

Authority comes from two places: ids configured through ``ADMIN_IDS`` and admins
granted at runtime and stored in the database. Configured entries always outrank
granted ones and carry super-admin rights; they cannot be removed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Union

from .errors import AlreadyExists, NotFoundError, PermissionDenied, ValidationError
from .models import Admin, AuthorizedGroup
from .store import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Configured:
    user_id: int
    priority: int

    @property
    def rank(self):
        return (0, self.priority)


@dataclass(frozen=True, slots=True)
class Granted:
    user_id: int
    granted_by: int
    granted_at: datetime
    username: Optional[str] = None
    first_name: Optional[str] = None

    @property
    def rank(self):
        return (1, self.granted_at)


Authority = Union[Configured, Granted]


class AccessControl:
    def __init__(self, store: Store, configured_ids: Sequence[int]):
        self.store = store
        self.configured = tuple(
            Configured(user_id=user_id, priority=priority)
            for priority, user_id in enumerate(dict.fromkeys(configured_ids))
        )

    # ===================== LOOKUPS =====================

    def authority(self, user_id: int) -> Optional[Authority]:
        for entry in self.configured:
            if entry.user_id == user_id:
                return entry
        admin = self.store.get_admin(user_id)
        if admin is None:
            return None
        return _granted(admin)

    def authorities(self) -> List[Authority]:
        """Every admin, super admins first."""
        entries: List[Authority] = list(self.configured)
        configured_ids = {entry.user_id for entry in self.configured}
        entries.extend(_granted(a) for a in self.store.list_admins() if a.user_id not in configured_ids)
        return sorted(entries, key=lambda entry: entry.rank)

    def is_admin(self, user_id: int) -> bool:
        return self.authority(user_id) is not None

    def is_super_admin(self, user_id: int) -> bool:
        return isinstance(self.authority(user_id), Configured)

    def require_admin(self, user_id: int) -> Authority:
        authority = self.authority(user_id)
        if authority is None:
            raise PermissionDenied("❌ Only admins can do this.")
        return authority

    def require_super_admin(self, user_id: int) -> Configured:
        authority = self.authority(user_id)
        if not isinstance(authority, Configured):
            raise PermissionDenied("❌ Only the super admin can manage admins.")
        return authority

    # ===================== ADMIN MANAGEMENT =====================

    def parse_admin_id(self, text: str) -> int:
        text = text.strip()
        if not text.isdigit() or int(text) == 0:
            raise ValidationError("❌ Send a positive numeric Telegram user ID:")
        return int(text)

    def grant_admin(
        self,
        user_id: int,
        granted_by: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> Granted:
        self.require_super_admin(granted_by)
        if self.is_admin(user_id):
            raise AlreadyExists(f"ℹ️ User {user_id} is already an admin.")
        admin = self.store.add_admin(user_id, granted_by, username=username, first_name=first_name)
        if admin is None:
            raise AlreadyExists(f"ℹ️ User {user_id} is already an admin.")
        logger.info("Admin %s granted by %s", user_id, granted_by)
        return _granted(admin)

    def revoke_admin(self, user_id: int, revoked_by: int) -> None:
        self.require_super_admin(revoked_by)
        if isinstance(self.authority(user_id), Configured):
            raise PermissionDenied("❌ Configured admins cannot be removed.")
        if not self.store.remove_admin(user_id):
            raise NotFoundError("❌ Admin not found.")
        logger.info("Admin %s revoked by %s", user_id, revoked_by)

    # ===================== GROUPS =====================

    def is_group_authorized(self, chat_id: int) -> bool:
        return self.store.get_group(chat_id) is not None

    def authorize_group(self, chat_id: int, added_by: int, title: Optional[str] = None) -> AuthorizedGroup:
        self.require_admin(added_by)
        group = self.store.add_group(chat_id, added_by, title=title)
        if group is None:
            raise AlreadyExists("ℹ️ This group is already authorized.")
        logger.info("Group %s authorized by %s", chat_id, added_by)
        return group

    def revoke_group(self, chat_id: int, revoked_by: int) -> None:
        self.require_admin(revoked_by)
        if not self.store.remove_group(chat_id):
            raise NotFoundError("❌ Group not found.")
        logger.info("Group %s revoked by %s", chat_id, revoked_by)


def _granted(admin: Admin) -> Granted:
    return Granted(
        user_id=admin.user_id,
        granted_by=admin.added_by,
        granted_at=admin.added_at,
        username=admin.username,
        first_name=admin.first_name,
    )
