"""
Learner-facing notifications.

Delivery is fire-and-forget: a failure is logged and reported back as a
soft warning, never raised into the grading flow that triggered it.
"""
from typing import List, Optional
import logging

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coursegrade.core import config
from coursegrade.core.errors import NonFatalSideEffectError, NotFoundError
from coursegrade.models.orm import Notification

logger = logging.getLogger(__name__)

QUIZ_GRADED = "quiz_graded"

def course_link(course_id: Optional[str]) -> str:
    path = f"/course-learning/{course_id}" if course_id else "/student?tab=learning"
    return f"{config.APP_BASE_URL}{path}"

def quiz_graded_message(quiz_title: str, score: int, passed: bool) -> str:
    return f'Your quiz "{quiz_title}" has been graded. Score: {score}% - {"Passed" if passed else "Failed"}'

def create_notification(db: Session, user_id: str, title: str, message: str, type: str, link: Optional[str] = None) -> Notification:
    row = Notification(user_id=user_id, title=title, message=message, type=type, link=link)
    db.add(row)
    db.commit()
    return row

def notify(db: Session, *, user_id: str, title: str, message: str, type: str, link: Optional[str] = None,
           backend: Optional[str] = None) -> Optional[str]:
    """Deliver a notification. Returns a warning string when delivery failed."""
    backend = backend or config.NOTIFICATION_BACKEND
    try:
        if backend == "rq":
            from coursegrade.jobs.queue import queue
            from coursegrade.jobs.notification_job import deliver_notification
            queue.enqueue(deliver_notification, user_id, title, message, type, link)
        else:
            create_notification(db, user_id, title, message, type, link)
    except (SQLAlchemyError, RedisError) as e:
        if backend != "rq":
            db.rollback()
        err = NonFatalSideEffectError(f"Notification for {user_id} was not delivered", detail={"type": type})
        logger.error("%s: %s", err.message, e, exc_info=True)
        return err.message
    logger.info("Notification %s queued for %s via %s", type, user_id, backend)
    return None

def list_notifications(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    return list(db.scalars(stmt.order_by(Notification.created_at.desc()).limit(limit)))

def mark_read(db: Session, user_id: str, notification_id: str) -> Notification:
    row = db.get(Notification, notification_id)
    if row is None or row.user_id != user_id:
        raise NotFoundError("Notification not found")
    row.is_read = True
    db.commit()
    return row
