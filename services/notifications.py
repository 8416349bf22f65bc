"""
Outbound SMS and email.

Every public send catches its own failures and reports them as ``False``;
callers never see an exception from here. In debug mode, or without
credentials, messages are only logged.
"""
from __future__ import annotations

import logging
import re
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Dict, Iterable, Optional

import requests

from core.config import Settings, settings as default_settings
from db.schemas import OrderOut

log = logging.getLogger(__name__)

STATUS_MESSAGES = {
    "confirmed": "Your order has been confirmed and is being prepared.",
    "processing": "Your order is being processed and will be shipped soon.",
    "shipped": "Your order has been shipped and is on its way to you.",
    "delivered": "Your order has been delivered. Thank you for shopping with us!",
    "cancelled": "Your order has been cancelled as requested.",
}


class SMSSender:
    def __init__(self, settings: Settings = default_settings, timeout: float = 30):
        self.settings = settings
        self.timeout = timeout

    @property
    def live(self) -> bool:
        return not self.settings.DEBUG and bool(self.settings.SMS_API_KEY)

    @staticmethod
    def _digits(mobile: str) -> str:
        digits = re.sub(r"\D", "", mobile)
        return digits[2:] if len(digits) == 12 and digits.startswith("91") else digits

    def send(self, mobile: str, message: str) -> bool:
        number = self._digits(mobile)
        if not self.live:
            log.info("SMS to %s not sent (debug/no credentials): %s", number, message)
            return True
        if len(number) != 10:
            log.error("SMS to %r skipped: not a 10-digit mobile", mobile)
            return False
        try:
            resp = requests.post(
                self.settings.SMS_API_URL,
                data={
                    "apikey": self.settings.SMS_API_KEY,
                    "numbers": number,
                    "message": message,
                    "sender": self.settings.SMS_SENDER_ID,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            log.error("SMS to %s failed: %s", number, e)
            return False

        if payload.get("status") != "success":
            errors = payload.get("errors") or [{}]
            log.error("SMS gateway rejected message to %s: %s", number, errors[0].get("message", "unknown error"))
            return False
        log.debug("SMS to %s accepted by gateway", number)
        return True

    def send_bulk(self, mobiles: Iterable[str], message: str) -> Dict[str, bool]:
        results = {mobile: self.send(mobile, message) for mobile in mobiles}
        sent = sum(results.values())
        log.info("Bulk SMS: %d sent, %d failed", sent, len(results) - sent)
        return results

    def delivery_status(self, message_id: str) -> Optional[dict]:
        if not self.live:
            return None
        try:
            resp = requests.post(
                self.settings.SMS_STATUS_URL,
                data={"apikey": self.settings.SMS_API_KEY, "message_id": message_id},
                timeout=10,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            log.error("SMS status lookup for %s failed: %s", message_id, e)
            return None
        return payload.get("message") if payload.get("status") == "success" else None


class EmailSender:
    def __init__(self, settings: Settings = default_settings):
        self.settings = settings

    @property
    def live(self) -> bool:
        return not self.settings.DEBUG and bool(self.settings.SMTP_HOST)

    def send(self, to: str, subject: str, html: str, text: str = "") -> bool:
        if not self.live:
            log.info("Email to %s not sent (debug/no SMTP host): %s", to, subject)
            return True

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.settings.FROM_NAME} <{self.settings.FROM_EMAIL}>"
        msg["To"] = to
        msg["Reply-To"] = self.settings.FROM_EMAIL
        msg.set_content(text or re.sub(r"<[^>]+>", "", html))
        msg.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT, timeout=30) as smtp:
                if self.settings.SMTP_USE_TLS:
                    smtp.starttls()
                if self.settings.SMTP_USERNAME:
                    smtp.login(self.settings.SMTP_USERNAME, self.settings.SMTP_PASSWORD)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            log.error("Email to %s failed: %s", to, e)
            return False
        log.info("Email sent to %s: %s", to, subject)
        return True


class Notifier:
    """Customer-facing messages built on top of the SMS and email senders."""

    def __init__(self, settings: Settings = default_settings,
                 sms: Optional[SMSSender] = None, email: Optional[EmailSender] = None):
        self.settings = settings
        self.sms = sms or SMSSender(settings)
        self.email = email or EmailSender(settings)

    def _safely(self, what: str, fn, *args) -> bool:
        try:
            return fn(*args)
        except Exception:
            log.exception("Notification %r failed", what)
            return False

    def otp(self, mobile: str, code: str) -> bool:
        text = (f"Your {self.settings.APP_NAME} verification code is: {code}. "
                f"Valid for {self.settings.OTP_EXPIRY_MINUTES} minutes. Do not share this code with anyone.")
        return self._safely("otp", self.sms.send, mobile, text)

    def order_placed(self, order: OrderOut) -> bool:
        cur = self.settings.CURRENCY_SYMBOL
        ok = True
        if order.customer_mobile:
            text = (f"Dear Customer, your {self.settings.APP_NAME} order {order.order_number} of "
                    f"{cur}{order.final_amount} has been confirmed. Thank you for choosing us!")
            ok = self._safely("order sms", self.sms.send, order.customer_mobile, text)
        if order.customer_email:
            rows = "".join(
                f"<tr><td>{escape(i.product_name)}</td><td>{i.quantity}</td><td>{cur}{i.total_amount}</td></tr>"
                for i in order.items
            )
            html = (
                f"<h2>Thank you for your order, {escape(order.customer_name or '')}!</h2>"
                f"<p>Order <strong>{order.order_number}</strong></p>"
                f"<table><tr><th>Item</th><th>Qty</th><th>Total</th></tr>{rows}</table>"
                f"<p>Shipping: {cur}{order.shipping_amount}<br>Discount: {cur}{order.discount_amount}<br>"
                f"<strong>Amount payable: {cur}{order.final_amount}</strong></p>"
                f"<p>Ship to: {escape(order.shipping_address)}</p>"
            )
            subject = f"Order Confirmation - {order.order_number} - {self.settings.APP_NAME}"
            ok = self._safely("order email", self.email.send, order.customer_email, subject, html) and ok
        return ok

    def order_status_changed(self, order: OrderOut, status: str) -> bool:
        status_text = STATUS_MESSAGES.get(status, f"Your order status has been updated to: {status}")
        ok = True
        if order.customer_mobile:
            text = f"{self.settings.APP_NAME} Order Update - Order {order.order_number}: {status_text}"
            ok = self._safely("status sms", self.sms.send, order.customer_mobile, text)
        if order.customer_email:
            subject = f"Order {order.order_number} - {status.title()} - {self.settings.APP_NAME}"
            html = f"<p>Order <strong>{order.order_number}</strong></p><p>{escape(status_text)}</p>"
            ok = self._safely("status email", self.email.send, order.customer_email, subject, html) and ok
        return ok

    def contact_received(self, contact: dict) -> bool:
        subject = f"New Contact Form Submission - {contact['subject']}"
        html = (
            f"<p><strong>From:</strong> {escape(contact['name'])} &lt;{escape(contact['email'])}&gt;</p>"
            f"<p><strong>Mobile:</strong> {escape(contact.get('mobile') or '-')}</p>"
            f"<p>{escape(contact['message'])}</p>"
        )
        return self._safely("contact email", self.email.send, self.settings.COMPANY_EMAIL, subject, html)

    def newsletter_welcome(self, email: str, name: str = "") -> bool:
        subject = f"Welcome to {self.settings.APP_NAME} Newsletter!"
        html = (f"<h2>Welcome{', ' + escape(name) if name else ''}!</h2>"
                f"<p>Thank you for subscribing to the {self.settings.APP_NAME} newsletter.</p>")
        return self._safely("newsletter email", self.email.send, email, subject, html)


notifier = Notifier()


def get_notifier() -> Notifier:
    return notifier
