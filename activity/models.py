"""
activity/models.py -- Domain dataclass and type constants for the audit log.

Entries are append-only: nothing in the codebase updates a written row. The
only removal path is ActivityStore.cleanup_for_user(), which drops entries
older than a retention window.
"""

from dataclasses import dataclass
from typing import Optional

REGISTER = "REGISTER"
LOGIN = "LOGIN"
LOGIN_FAILED = "LOGIN_FAILED"
PROFILE_UPDATED = "PROFILE_UPDATED"
PASSWORD_CHANGED = "PASSWORD_CHANGED"
PASSWORD_CHANGE_FAILED = "PASSWORD_CHANGE_FAILED"
ACCOUNT_DELETED = "ACCOUNT_DELETED"
USER_CREATED = "USER_CREATED"
USER_UPDATED = "USER_UPDATED"
USER_DELETED = "USER_DELETED"
PASSWORD_RESET = "PASSWORD_RESET"

ACTIVITY_TYPES: tuple[str, ...] = (
    REGISTER,
    LOGIN,
    LOGIN_FAILED,
    PROFILE_UPDATED,
    PASSWORD_CHANGED,
    PASSWORD_CHANGE_FAILED,
    ACCOUNT_DELETED,
    USER_CREATED,
    USER_UPDATED,
    USER_DELETED,
    PASSWORD_RESET,
)


@dataclass(frozen=True)
class ActivityLogEntry:
    """One audit record.

    user_id is the account the entry is filed under. For admin actions that
    is the acting admin, and the description names the target account.
    """

    user_id: int
    activity_type: str
    description: str = ""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: str = ""  # ISO 8601, set by store on insert
    id: Optional[int] = None
