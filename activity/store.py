"""
activity/store.py -- SQLAlchemy Core persistence for the activity log.

Pattern: Repository + Data Mapper, same as auth/store.py. ActivityStore is the
repository, _row_to_entry the mapper.

log_activity() is best effort. The audit trail is a side channel of
authentication and provisioning: a failed insert is logged and dropped, and
never aborts the request that triggered it.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = ActivityStore("sqlite:///./authenticator.db")
    store.log_activity(user_id, LOGIN, "User logged in", ip_address="10.0.0.1")
    page = store.list_for_user(user_id, page=1, limit=20)
    store.close()
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from activity.models import LOGIN, ActivityLogEntry

logger = logging.getLogger("authenticator.activity")

_SUMMARY_RECENT = 5
_SUMMARY_WINDOW_DAYS = 30

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_activity = Table(
    "activity_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("activity_type", String(50), nullable=False),
    Column("description", Text),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("timestamp", String(32), nullable=False),
    Index("ix_activity_user_time", "user_id", "timestamp"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ActivityStore:
    """Repository for ActivityLogEntry records."""

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def log_activity(
        self,
        user_id: int,
        activity_type: str,
        description: str = "",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[int]:
        """Append one entry. Returns its id, or None if the write failed."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _activity.insert().values(
                        user_id=user_id,
                        activity_type=activity_type,
                        description=description,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        timestamp=_now().isoformat(),
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except Exception:
            logger.exception("Failed to record %s activity for user %s", activity_type, user_id)
            return None

    def list_for_user(self, user_id: int, page: int = 1, limit: int = 20) -> tuple[list[ActivityLogEntry], dict]:
        """Return one page of entries (newest first) plus pagination metadata."""
        page = max(page, 1)
        limit = max(limit, 1)
        with self.engine.connect() as conn:
            total = (
                conn.execute(
                    select(func.count()).select_from(_activity).where(_activity.c.user_id == user_id)
                ).scalar()
                or 0
            )
            rows = conn.execute(
                _activity.select()
                .where(_activity.c.user_id == user_id)
                .order_by(_activity.c.timestamp.desc(), _activity.c.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            ).fetchall()
        total_pages = math.ceil(total / limit)
        pagination = {
            "current_page": page,
            "total_pages": total_pages,
            "total_activities": total,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        }
        return [_row_to_entry(r) for r in rows], pagination

    def summary_for_user(self, user_id: int) -> dict:
        """Recent entries, per-type counts over the last 30 days, and the last login time."""
        cutoff = (_now() - timedelta(days=_SUMMARY_WINDOW_DAYS)).isoformat()
        with self.engine.connect() as conn:
            recent = conn.execute(
                _activity.select()
                .where(_activity.c.user_id == user_id)
                .order_by(_activity.c.timestamp.desc(), _activity.c.id.desc())
                .limit(_SUMMARY_RECENT)
            ).fetchall()
            count_rows = conn.execute(
                select(_activity.c.activity_type, func.count())
                .where((_activity.c.user_id == user_id) & (_activity.c.timestamp >= cutoff))
                .group_by(_activity.c.activity_type)
            ).fetchall()
            last_login = conn.execute(
                select(func.max(_activity.c.timestamp)).where(
                    (_activity.c.user_id == user_id) & (_activity.c.activity_type == LOGIN)
                )
            ).scalar()
        return {
            "recent_activities": [_row_to_entry(r) for r in recent],
            "activity_counts": {row[0]: row[1] for row in count_rows},
            "last_login": last_login,
        }

    def cleanup_for_user(self, user_id: int, days_to_keep: int = 90) -> int:
        """Delete entries older than days_to_keep. Returns the number removed."""
        cutoff = (_now() - timedelta(days=days_to_keep)).isoformat()
        with self.engine.connect() as conn:
            result = conn.execute(
                _activity.delete().where((_activity.c.user_id == user_id) & (_activity.c.timestamp < cutoff))
            )
            conn.commit()
        logger.info(
            "Removed %d activity entries older than %d days for user %d", result.rowcount, days_to_keep, user_id
        )
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> ActivityLogEntry:
    return ActivityLogEntry(
        id=row.id,
        user_id=row.user_id,
        activity_type=row.activity_type,
        description=row.description or "",
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        timestamp=row.timestamp,
    )
