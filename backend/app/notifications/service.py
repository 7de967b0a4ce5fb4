"""Notification service — store notifications and hand e-mails to the background."""

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from functools import partial
from typing import Any

from sqlalchemy import event, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from app.database import SessionFactory, session_scope
from app.models.notification import Notification
from app.models.user import User
from app.notifications.dispatcher import BackgroundDispatcher, dispatcher
from app.notifications.mailer import SmtpMailer, mailer, render_notification_html
from app.notifications.types import NotificationContent, get_notification_content

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Work that must only start once the caller's transaction is committed
# ---------------------------------------------------------------------------

_AFTER_COMMIT_KEY = "notifications.after_commit"

PendingJob = tuple[BackgroundDispatcher, Callable[[], Awaitable[Any]], str]


def _run_after_commit(session: Session) -> None:
    for background, job, name in session.info.pop(_AFTER_COMMIT_KEY, []):
        background.dispatch(job(), name=name)


def _discard_after_rollback(session: Session) -> None:
    dropped = session.info.pop(_AFTER_COMMIT_KEY, [])
    if dropped:
        logger.info("Transaction rolled back, dropped %d queued e-mail(s)", len(dropped))


def dispatch_after_commit(
    db: AsyncSession,
    background: BackgroundDispatcher,
    job: Callable[[], Awaitable[Any]],
    *,
    name: str,
) -> None:
    """Hand ``job`` to the dispatcher once ``db`` commits; drop it on rollback.

    The job reads rows this session wrote, so it cannot start while the
    transaction is still open.
    """
    sync_session = db.sync_session
    if not event.contains(sync_session, "after_commit", _run_after_commit):
        event.listen(sync_session, "after_commit", _run_after_commit)
        event.listen(sync_session, "after_rollback", _discard_after_rollback)
    pending: list[PendingJob] = sync_session.info.setdefault(_AFTER_COMMIT_KEY, [])
    pending.append((background, job, name))


async def send_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    type_key: str | None = None,
    content: NotificationContent | None = None,
    metadata: dict[str, Any] | None = None,
    email_mailer: SmtpMailer = mailer,
    background: BackgroundDispatcher = dispatcher,
    session_factory: SessionFactory | None = None,
) -> Notification:
    """Create a notification for a user and queue its e-mail.

    Pass either a ``type_key`` (content comes from the notification config)
    or explicit ``content``. E-mail delivery is dispatched to the background
    when the caller commits ``db`` and is dropped if it rolls back. It is
    never awaited; its failure never reaches the caller.
    """
    if content is None:
        if type_key is None:
            raise ValueError("send_notification needs a type_key or content")
        content = get_notification_content(type_key, metadata)

    notification = Notification(
        user_id=user_id,
        type=content.type,
        title=content.title,
        message=content.message,
        html=content.html,
        channel=content.channel,
        details=metadata,
    )
    db.add(notification)
    await db.flush()
    logger.info("Created notification %s (%s) for user %s", notification.id, content.title, user_id)

    if content.channel in ("email", "both"):
        user = await db.get(User, user_id)
        if user is None or not user.notifications_enabled:
            logger.info("User %s has e-mail notifications disabled, skipping e-mail", user_id)
        elif not email_mailer.configured:
            logger.warning("SMTP is not configured, notification %s not e-mailed", notification.id)
        else:
            dispatch_after_commit(
                db,
                background,
                partial(
                    deliver_notification_email,
                    notification.id,
                    user.email,
                    content.title,
                    content.html or render_notification_html(content.title, content.message),
                    email_mailer=email_mailer,
                    session_factory=session_factory,
                ),
                name=f"notification-email-{notification.id}",
            )

    return notification


async def deliver_notification_email(
    notification_id: uuid.UUID,
    recipient: str,
    subject: str,
    html: str,
    *,
    email_mailer: SmtpMailer = mailer,
    session_factory: SessionFactory | None = None,
) -> None:
    """Send one notification e-mail, then flag the notification as e-mailed."""
    await email_mailer.send(recipient, subject, html)
    async with session_scope(session_factory) as db:
        result = await db.execute(
            update(Notification)
            .where(Notification.id == notification_id)
            .values(email_sent=True)
        )
    if result.rowcount == 0:
        logger.warning("Notification %s e-mailed but no longer in the database", notification_id)


async def get_notifications(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    unread_only: bool = False,
    limit: int | None = None,
) -> list[Notification]:
    query = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id)
    )
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def mark_notification_as_read(
    db: AsyncSession, notification_id: uuid.UUID, user_id: uuid.UUID
) -> Notification | None:
    """Mark one of the user's notifications read. Returns None if not theirs."""
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        return None
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = _utcnow()
        await db.flush()
    return notification


async def mark_all_notifications_as_read(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Mark every unread notification of a user as read; returns the count."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def get_unread_notification_count(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
    )
    return result.scalar_one()
