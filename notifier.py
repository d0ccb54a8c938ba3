"""
Outbound customer notifications.

Delivery is best-effort: a notifier answers True/False and never raises into
the state change that triggered it.
"""
import logging
from typing import Protocol

import requests

from secret_store import get_secret
from validation import is_valid_phone

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class Notifier(Protocol):
    def send(self, phone: str, text: str) -> bool:
        ...


class LoggingNotifier:
    """Writes the message to the log instead of delivering it."""

    def send(self, phone: str, text: str) -> bool:
        logger.info("Notify %s: %s", phone, text.replace("\n", " | "))
        return True


class WhatsAppNotifier:
    def __init__(self, account_sid=None, auth_token=None, from_number=None, timeout: float = 10):
        self.account_sid = account_sid or get_secret("TWILIO_ACCOUNT_SID")
        self.auth_token = auth_token or get_secret("TWILIO_AUTH_TOKEN")
        self.from_number = from_number or get_secret("TWILIO_WHATSAPP_NUMBER")
        self.timeout = timeout

    def send(self, phone: str, text: str) -> bool:
        if not phone or not text:
            logger.error("WhatsApp send skipped: missing phone number or message body.")
            return False
        if not is_valid_phone(phone):
            logger.error("WhatsApp send skipped: %s is not E.164.", phone)
            return False
        if not (self.account_sid and self.auth_token and self.from_number):
            logger.warning("Twilio credentials not set; skipping WhatsApp message to %s.", phone)
            return False

        try:
            resp = requests.post(
                TWILIO_MESSAGES_URL.format(sid=self.account_sid),
                data={
                    "From": f"whatsapp:{self.from_number}",
                    "To": f"whatsapp:{phone}",
                    "Body": text,
                },
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("WhatsApp message to %s failed: %s", phone, e)
            return False

        logger.info("WhatsApp message sent to %s. SID: %s", phone, _message_sid(resp))
        return True


def _message_sid(resp):
    # the SID is only logged; a 2xx reply without a JSON body still counts as sent
    try:
        return resp.json().get("sid")
    except ValueError:
        return None


def notify(notifier, phone: str, text: str) -> bool:
    """Send through `notifier`; any exception is logged and reported as False."""
    if notifier is None:
        return False
    try:
        return bool(notifier.send(phone, text))
    except Exception:
        logger.exception("Notifier %s raised while sending to %s", type(notifier).__name__, phone)
        return False


def get_notifier(kind: str = "log", timeout: float = 10) -> Notifier:
    if kind == "whatsapp":
        return WhatsAppNotifier(timeout=timeout)
    return LoggingNotifier()


def send_email(to: str, subject: str, message: str, timeout: float = 10) -> bool:
    """
    Hand an email to the mail Cloud Function at EMAIL_FUNCTION_URL.
    False when the function is not configured or the call fails.
    """
    url = get_secret("EMAIL_FUNCTION_URL")
    if not url:
        logger.warning("EMAIL_FUNCTION_URL not set; email to %s not sent.", to)
        return False

    try:
        resp = requests.post(
            url,
            json={"email": to, "subject": subject, "message": message},
            timeout=timeout,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.warning("Email to %s failed: %s", to, e)
        return False

    logger.info("Email '%s' sent to %s", subject, to)
    return True
