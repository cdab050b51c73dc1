import logging
from rq import get_current_job
from coursegrade.core.database import SessionLocal
from coursegrade.services.notifications import create_notification

logger = logging.getLogger(__name__)

def deliver_notification(user_id, title, message, type, link=None, session_factory=SessionLocal):
    job = get_current_job()
    db = session_factory()
    try:
        row = create_notification(db, user_id, title, message, type, link)
        if job:
            job.meta.update({"state": "done", "notification_id": row.id}); job.save_meta()
        return row.id
    except Exception:
        db.rollback()
        if job:
            job.meta.update({"state": "failed"}); job.save_meta()
        logger.exception("Notification %s for %s failed", type, user_id)
        raise
    finally:
        db.close()
