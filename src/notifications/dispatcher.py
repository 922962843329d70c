from __future__ import annotations

from typing import Dict, Optional, Sequence, Union

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import get_settings
from src.models.notification_log import (
    NotificationChannel,
    NotificationLog,
    NotificationType,
)
from src.notifications.phone import normalize_phone
from src.notifications.sms import SmsSender
from src.notifications.whatsapp import WhatsAppSender

Message = Union[str, Dict[str, str]]


class NotificationDispatcher:
    """Delivers a message to one phone number, trying channels in order.

    Channels are tried until one reports success: WhatsApp first, SMS as
    the fallback. Channel errors never reach the caller; ``send`` only
    returns False when every attempt failed.
    """

    def __init__(self, session: Optional[Session] = None, channels: Optional[Sequence] = None):
        self.session = session
        self.settings = get_settings()
        if channels is None:
            channels = [
                sender_cls()
                for sender_cls in (WhatsAppSender, SmsSender)
                if sender_cls.is_configured()
            ]
        self.channels = list(channels)

    def send(
        self,
        recipient: str,
        message: Message,
        notification_type: Optional[NotificationType] = None,
        reference_id: Optional[int] = None,
    ) -> bool:
        """Send ``message`` to ``recipient``.

        Args:
            recipient: Phone number in any format; normalized to +digits.
            message: Plain text, or a dict keyed by channel name ("whatsapp",
                "sms") with a "text" key as the generic rendering.
            notification_type: Recorded in the notification log when given.
            reference_id: Booking id recorded in the notification log.

        Returns:
            True if some channel delivered the message.
        """
        if not self.settings.notification_enabled:
            logger.info("Notifications are disabled, skipping send")
            return False

        if isinstance(message, str):
            message = {"text": message}

        phone = normalize_phone(recipient)
        if not phone:
            logger.warning(f"No usable phone number in {recipient!r}, nothing sent")
            self._record(notification_type, reference_id, recipient or "", None)
            return False

        if not self.channels:
            logger.warning(f"No notification channel configured, cannot reach {phone}")

        delivered_via = None
        for sender in self.channels:
            text = message.get(sender.channel) or message.get("text")
            if not text:
                logger.debug(f"{sender.channel}: no rendering for this message, skipping")
                continue
            try:
                success = sender.send(phone, text)
            except Exception as e:
                logger.error(f"{sender.channel}: error sending to {phone}: {e}")
                success = False

            if success:
                delivered_via = sender.channel
                break
            logger.warning(f"{sender.channel}: delivery to {phone} failed")

        if delivered_via:
            logger.info(f"Notification delivered to {phone} via {delivered_via}")
        else:
            logger.error(f"All channels failed for {phone}")

        self._record(notification_type, reference_id, phone, delivered_via)
        return delivered_via is not None

    def _record(
        self,
        notification_type: Optional[NotificationType],
        reference_id: Optional[int],
        recipient: str,
        channel: Optional[str],
    ) -> None:
        """Store the outcome in the notification log, if a session is attached."""
        if self.session is None or notification_type is None or reference_id is None:
            return
        try:
            self.session.add(
                NotificationLog(
                    notification_type=notification_type,
                    reference_id=reference_id,
                    recipient=recipient,
                    channel=NotificationChannel(channel) if channel else None,
                    delivered=channel is not None,
                )
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Could not record notification for ref={reference_id}: {e}")
