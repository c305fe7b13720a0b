"""
Activity Auditor

Append-only log of security-relevant second-factor events, shown to the
user as "recent activity". Writes go through a separate session so a
failed audit insert can never roll back or fail the caller's operation.
"""

import functools
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from twofactor.database import get_session_factory, persistence_guard
from twofactor.exceptions import PersistenceUnavailableError
from twofactor.models.activity import ActivityEvent, ActivityRecord
from twofactor.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_LIMIT = 10
MAX_ACTIVITY_LIMIT = 100

# Context keys that get their own columns; everything else goes to details
_CONTEXT_COLUMNS = ("ip_address", "user_agent", "location")


@dataclass(frozen=True)
class ActivityEntry:
    id: int
    event_type: str
    success: bool
    created_at: datetime
    ip_address: str | None
    user_agent: str | None
    location: str | None
    details: dict[str, Any]


class ActivityAuditor:
    def __init__(self, session_factory: async_sessionmaker | None = None, clock: Clock = system_clock):
        self.session_factory = session_factory or get_session_factory()
        self.clock = clock

    async def record(
        self,
        user_id: int,
        event_type: ActivityEvent | str,
        success: bool,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Append an activity record.

        Never raises: a failed write is logged and dropped.
        """
        context = dict(context or {})
        event = event_type.value if isinstance(event_type, ActivityEvent) else str(event_type)
        try:
            columns = {key: context.pop(key, None) or "Unknown" for key in _CONTEXT_COLUMNS}
            details = json.dumps(context, default=str) if context else None

            async with self.session_factory() as session:
                session.add(
                    ActivityRecord(
                        user_id=user_id,
                        event_type=event,
                        success=success,
                        created_at=self.clock.now(),
                        details=details,
                        **columns,
                    )
                )
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to log 2FA activity {event} for user {user_id}: {str(e)}")

    async def list_recent(self, user_id: int, limit: int = DEFAULT_ACTIVITY_LIMIT) -> list[ActivityEntry]:
        limit = max(1, min(limit, MAX_ACTIVITY_LIMIT))
        async with self.session_factory() as session:
            async with persistence_guard(session, "list activity"):
                result = await session.execute(
                    select(ActivityRecord)
                    .where(ActivityRecord.user_id == user_id)
                    .order_by(ActivityRecord.created_at.desc(), ActivityRecord.id.desc())
                    .limit(limit)
                )
                rows = result.scalars().all()

        return [
            ActivityEntry(
                id=row.id,
                event_type=row.event_type,
                success=row.success,
                created_at=row.created_at,
                ip_address=row.ip_address,
                user_agent=row.user_agent,
                location=row.location,
                details=json.loads(row.details) if row.details else {},
            )
            for row in rows
        ]


def reports_persistence_errors(operation: str):
    """
    Audit storage failures of a flow operation before re-raising them.

    The wrapped coroutine must be a method whose owner has an `auditor`
    attribute and whose first argument after self is the acting user.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, user, *args, **kwargs):
            try:
                return await func(self, user, *args, **kwargs)
            except PersistenceUnavailableError:
                await self.auditor.record(user.id, ActivityEvent.persistence_error, False, {"operation": operation})
                raise

        return wrapper

    return decorator
