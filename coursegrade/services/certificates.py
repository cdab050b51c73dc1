"""
Certificate numbering and issuance.

Numbers look like ``CERT-2026-000042``. The primary generator is a
per-year counter row locked for the duration of the issuing transaction;
when that is unavailable a random six-digit suffix is used instead. The
unique key on (student_id, course_id) is what guarantees at most one
certificate per enrollment, whatever the number looks like.
"""
from datetime import datetime
from typing import List, Optional
import logging
import secrets

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from coursegrade.core import config
from coursegrade.core.errors import NotFoundError, StorageError, ValidationError
from coursegrade.models.orm import Certificate, CertificateCounter, Enrollment, utcnow

logger = logging.getLogger(__name__)

MAX_ISSUE_TRIES = 3

def format_certificate_number(year: int, value: int, prefix: Optional[str] = None) -> str:
    return f"{prefix or config.CERTIFICATE_PREFIX}-{year}-{value:06d}"

def fallback_certificate_number(year: int) -> str:
    return format_certificate_number(year, secrets.randbelow(1_000_000))

def next_sequence_value(db: Session, year: int) -> int:
    counter = db.get(CertificateCounter, year, with_for_update=True)
    if counter is None:
        counter = CertificateCounter(year=year, last_value=0)
        db.add(counter)
    counter.last_value += 1
    db.flush()
    return counter.last_value

def generate_certificate_number(db: Session, now: Optional[datetime] = None) -> str:
    year = (now or utcnow()).year
    try:
        return format_certificate_number(year, next_sequence_value(db, year))
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Certificate sequence unavailable, using random number: %s", e)
        return fallback_certificate_number(year)

def find_certificate(db: Session, student_id: str, course_id: str) -> Optional[Certificate]:
    return db.scalar(select(Certificate).where(Certificate.student_id == student_id, Certificate.course_id == course_id))

def issue_certificate(db: Session, student_id: str, course_id: str, now: Optional[datetime] = None) -> Certificate:
    """Insert-or-return the certificate for an enrollment."""
    existing = find_certificate(db, student_id, course_id)
    if existing:
        return existing
    now = now or utcnow()
    for _ in range(MAX_ISSUE_TRIES):
        cert = Certificate(student_id=student_id, course_id=course_id,
                           certificate_number=generate_certificate_number(db, now), issued_at=now)
        db.add(cert)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = find_certificate(db, student_id, course_id)
            if existing:
                return existing
            # certificate_number collision, draw another one
            continue
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError("Certificate could not be stored") from e
        logger.info("Issued certificate %s to %s for course %s", cert.certificate_number, student_id, course_id)
        return cert
    raise StorageError("Could not allocate a unique certificate number")

def list_certificates(db: Session, student_id: str) -> List[Certificate]:
    stmt = select(Certificate).where(Certificate.student_id == student_id).order_by(Certificate.issued_at.desc())
    return list(db.scalars(stmt))

def reissue_certificate(db: Session, student_id: str, course_id: str) -> Certificate:
    """Issue a certificate that was missed when the course was completed."""
    enrollment = db.scalar(select(Enrollment).where(Enrollment.student_id == student_id, Enrollment.course_id == course_id))
    if enrollment is None:
        raise NotFoundError("Enrollment not found")
    if enrollment.completed_at is None:
        raise ValidationError("Course is not completed yet", detail={"progress": enrollment.progress})
    return issue_certificate(db, student_id, course_id)
