from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List
from datetime import datetime
from sqlalchemy.orm import Session
from coursegrade.core.database import get_db
from coursegrade.core.auth import require_roles, TokenData
from coursegrade.services.certificates import list_certificates, reissue_certificate

router = APIRouter()

class CertificateOut(BaseModel):
    certificate_number: str
    course_id: str
    issued_at: datetime

def _out(c) -> CertificateOut:
    return CertificateOut(certificate_number=c.certificate_number, course_id=c.course_id, issued_at=c.issued_at)

@router.get("/certificates", response_model=List[CertificateOut])
def my_certificates(user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    return [_out(c) for c in list_certificates(db, user.sub)]

@router.post("/courses/{course_id}/certificate", response_model=CertificateOut)
def reissue(course_id: str, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    return _out(reissue_certificate(db, user.sub, course_id))
