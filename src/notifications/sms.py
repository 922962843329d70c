from __future__ import annotations

import httpx
from loguru import logger

from src.config import get_settings

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class SmsSender:
    """Send plain-text SMS through the Twilio REST API."""

    channel = "sms"

    def __init__(self):
        settings = get_settings()
        self.account_sid = settings.twilio_account_sid
        self.auth_token = settings.twilio_auth_token
        self.from_number = settings.twilio_from_number
        self.timeout = settings.notification_timeout

    @classmethod
    def is_configured(cls) -> bool:
        """Check if Twilio credentials and sender number are set."""
        settings = get_settings()
        return bool(
            settings.twilio_account_sid
            and settings.twilio_auth_token
            and settings.twilio_from_number
        )

    def send(self, phone: str, text: str) -> bool:
        url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"
        data = {"To": phone, "From": self.from_number, "Body": text}

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    url, data=data, auth=(self.account_sid, self.auth_token)
                )
                response.raise_for_status()

            sid = response.json().get("sid")
            logger.info(f"SMS sent to {phone} (sid={sid})")
            return True
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Twilio API error for {phone}: "
                f"{e.response.status_code} - {e.response.text}"
            )
            return False
        except httpx.RequestError as e:
            logger.error(f"Twilio request failed for {phone}: {e}")
            return False
