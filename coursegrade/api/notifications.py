from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from coursegrade.core.database import get_db
from coursegrade.core.auth import get_current_user, TokenData
from coursegrade.services.notifications import list_notifications, mark_read

router = APIRouter()

class NotificationOut(BaseModel):
    id: str
    title: str
    type: str
    message: str
    link: Optional[str] = None
    is_read: bool
    created_at: datetime

def _out(n) -> NotificationOut:
    return NotificationOut(id=n.id, title=n.title, type=n.type, message=n.message, link=n.link, is_read=n.is_read, created_at=n.created_at)

@router.get("", response_model=List[NotificationOut])
def mine(unread_only: bool = False, user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    return [_out(n) for n in list_notifications(db, user.sub, unread_only)]

@router.post("/{notification_id}/read", response_model=NotificationOut)
def read(notification_id: str, user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    return _out(mark_read(db, user.sub, notification_id))
