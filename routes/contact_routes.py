from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from core.responses import envelope
from db.database import get_db
from services.contact import ContactService
from services.notifications import Notifier, get_notifier
from utils.mobile_utils import national_mobile

router = APIRouter()


class ContactRequest(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    email: EmailStr
    mobile: Optional[str] = None
    subject: str = Field(min_length=5, max_length=255)
    message: str = Field(min_length=10, max_length=2000)

    @field_validator("mobile")
    @classmethod
    def indian_mobile(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return national_mobile(v)


class NewsletterRequest(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=255)


@router.post("/submit")
def submit(payload: ContactRequest, request: Request, background: BackgroundTasks,
           db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    data = payload.model_dump()
    outcome = ContactService(db).submit_message(data)
    background.add_task(notifier.contact_received, data)
    return envelope(request, {"message": outcome.message})


@router.post("/newsletter")
def newsletter(payload: NewsletterRequest, request: Request, background: BackgroundTasks,
               db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    outcome = ContactService(db).subscribe(payload.email, payload.name)
    if outcome.data:
        background.add_task(notifier.newsletter_welcome, payload.email, payload.name or "")
    return envelope(request, {"message": outcome.message})
