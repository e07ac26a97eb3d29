"""
Database-backed notifier: each notification is a row the client apps poll.

Uses its own session so a failed notification insert can never poison the
caller's unit of work. Callers treat delivery as best-effort.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from freight.database import AsyncSessionLocal
from freight.models.notification import Notification

logger = logging.getLogger(__name__)


class DatabaseNotifier:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory

    async def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        related_booking_id: Optional[str] = None,
        related_user_id: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as db:
            db.add(
                Notification(
                    user_id=user_id,
                    type=type,
                    title=title,
                    message=message,
                    related_booking_id=related_booking_id,
                    related_user_id=related_user_id,
                    is_read=False,
                )
            )
            await db.commit()
        logger.debug("Notification %s queued for user=%s booking=%s", type, user_id, related_booking_id)


async def notify_safely(notifier, user_id: Optional[str], type: str, title: str, message: str, **related) -> bool:
    """Send a notification, logging instead of raising on failure."""
    if notifier is None or not user_id:
        return False
    try:
        await notifier.notify(user_id, type, title, message, **related)
        return True
    except Exception as exc:
        logger.error("Failed to create %s notification for user=%s: %s", type, user_id, exc, exc_info=True)
        return False
