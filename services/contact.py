import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import ContactMessage, NewsletterSubscriber
from services.results import Outcome

log = logging.getLogger(__name__)


class ContactService:
    def __init__(self, db: Session):
        self.db = db

    def submit_message(self, data: dict) -> Outcome:
        message = ContactMessage(
            name=data["name"],
            email=data["email"],
            mobile=data.get("mobile"),
            subject=data["subject"],
            message=data["message"],
        )
        self.db.add(message)
        self.db.commit()
        log.info("Contact message %s from %s: %s", message.id, data["email"], data["subject"])
        return Outcome.ok("Thank you for contacting us. We will get back to you soon.", message.id)

    def subscribe(self, email: str, name: Optional[str] = None) -> Outcome:
        """
        Add ``email`` to the newsletter.

        ``data`` of the outcome is True when a welcome message should go out,
        i.e. for new and reactivated subscriptions.
        """
        existing = self.db.scalars(select(NewsletterSubscriber).where(NewsletterSubscriber.email == email)).first()
        if existing and existing.is_active:
            return Outcome.ok("You are already subscribed to our newsletter.", False)

        if existing:
            existing.is_active = True
            existing.unsubscribed_at = None
            log.info("Newsletter subscription reactivated for %s", email)
        else:
            self.db.add(NewsletterSubscriber(email=email, name=name))
            log.info("New newsletter subscription for %s", email)
        self.db.commit()
        return Outcome.ok("Thank you for subscribing to our newsletter!", True)
