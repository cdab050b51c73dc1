from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coursegrade.core.errors import CourseGradeError, NonFatalSideEffectError, StorageError
from coursegrade.models.orm import Enrollment, utcnow
from coursegrade.services.certificates import issue_certificate

logger = logging.getLogger(__name__)

@dataclass
class CompletionOutcome:
    completed_at: datetime
    certificate_number: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

def dispatch_completion(db: Session, enrollment: Enrollment, now: Optional[datetime] = None) -> CompletionOutcome:
    """
    Mark an enrollment completed and issue its certificate.

    Completion is committed first. A certificate failure afterwards is
    logged and returned as a warning; it never un-completes the course.
    """
    now = now or utcnow()
    try:
        enrollment.completed_at = now
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError("Course completion could not be saved") from e
    logger.info("Student %s completed course %s", enrollment.student_id, enrollment.course_id)
    outcome = CompletionOutcome(completed_at=now)
    try:
        cert = issue_certificate(db, enrollment.student_id, enrollment.course_id, now)
    except (CourseGradeError, SQLAlchemyError) as e:
        db.rollback()
        err = NonFatalSideEffectError("Certificate could not be issued; it can be reissued later",
                                      detail={"course_id": enrollment.course_id})
        logger.error("%s (student %s): %s", err.message, enrollment.student_id, e, exc_info=True)
        outcome.warnings.append(err.message)
        return outcome
    outcome.certificate_number = cert.certificate_number
    return outcome
