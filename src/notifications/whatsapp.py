from __future__ import annotations

import httpx
from loguru import logger

from src.config import get_settings


class WhatsAppSender:
    """Send chat messages through an Evolution API WhatsApp instance."""

    channel = "whatsapp"

    def __init__(self):
        settings = get_settings()
        self.api_url = settings.whatsapp_api_url.rstrip("/")
        self.api_key = settings.whatsapp_api_key
        self.instance = settings.whatsapp_instance
        self.timeout = settings.notification_timeout

    @classmethod
    def is_configured(cls) -> bool:
        """Check if the Evolution API endpoint and key are set."""
        settings = get_settings()
        return bool(
            settings.whatsapp_api_url
            and settings.whatsapp_api_key
            and settings.whatsapp_instance
        )

    def send(self, phone: str, text: str) -> bool:
        """Send ``text`` to ``phone`` (already normalized to +digits).

        Returns:
            True if the API accepted the message, False otherwise.
        """
        url = f"{self.api_url}/message/sendText/{self.instance}"
        # Evolution API expects the number without the leading '+'
        payload = {"number": phone.lstrip("+"), "text": text}

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, json=payload, headers={"apikey": self.api_key})
                response.raise_for_status()

            logger.info(f"WhatsApp message sent to {phone}")
            return True
        except httpx.HTTPStatusError as e:
            logger.error(
                f"WhatsApp API error for {phone}: "
                f"{e.response.status_code} - {e.response.text}"
            )
            return False
        except httpx.RequestError as e:
            logger.error(f"WhatsApp request failed for {phone}: {e}")
            return False
