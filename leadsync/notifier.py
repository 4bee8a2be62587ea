"""
Outbound templated messaging.

The batch engine only sees the Notifier interface. TwilioNotifier sends
WhatsApp content-template messages; DryRunNotifier stands in when Twilio
is not configured.
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel

from leadsync.config import config
from leadsync.logging_config import get_logger

logger = get_logger(__name__)

_NON_DIGITS_RE = re.compile(r"\D")

LOCAL_NUMBER_LENGTH = 10


class DeliveryResult(BaseModel):
    success: bool
    reason: Optional[str] = None
    message_id: Optional[str] = None


def format_destination(phone, country_code: Optional[str] = None) -> Optional[str]:
    """
    Digits-only international number for `phone`, or None if it is unusable.

    A bare 10-digit local number gets the country code prefixed; numbers
    already carrying it are left alone.
    """
    country_code = country_code if country_code is not None else config.DEFAULT_COUNTRY_CODE
    digits = _NON_DIGITS_RE.sub("", str(phone or ""))
    if len(digits) < LOCAL_NUMBER_LENGTH:
        return None
    if len(digits) == LOCAL_NUMBER_LENGTH:
        return f"{country_code}{digits}"
    return digits


class Notifier(ABC):

    @abstractmethod
    async def send(self, destination: str, template_id: str, parameters: list) -> DeliveryResult:
        """Send one templated message; never raises for delivery failures."""


class TwilioNotifier(Notifier):
    """WhatsApp content templates through the Twilio REST API."""

    def __init__(self, client=None, from_number: Optional[str] = None):
        if client is None:
            from twilio.rest import Client

            client = Client(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN)
        self.client = client
        self.from_number = from_number or config.TWILIO_WHATSAPP_FROM

    @staticmethod
    def _whatsapp(number: str) -> str:
        number = number.removeprefix("whatsapp:")
        if not number.startswith("+"):
            number = f"+{number}"
        return f"whatsapp:{number}"

    def _create(self, destination: str, template_id: str, parameters: list):
        variables = {str(i): str(value) for i, value in enumerate(parameters, start=1)}
        return self.client.messages.create(
            to=self._whatsapp(destination),
            from_=self._whatsapp(self.from_number),
            content_sid=template_id,
            content_variables=json.dumps(variables),
        )

    async def send(self, destination: str, template_id: str, parameters: list) -> DeliveryResult:
        try:
            message = await asyncio.to_thread(self._create, destination, template_id, parameters)
        except Exception as e:
            logger.warning(
                "whatsapp_send_failed",
                destination=destination,
                template_id=template_id,
                error=str(e),
            )
            return DeliveryResult(success=False, reason=str(e))

        logger.info("whatsapp_sent", template_id=template_id, message_sid=message.sid)
        return DeliveryResult(success=True, message_id=message.sid)


class DryRunNotifier(Notifier):
    """Logs instead of sending. Used when Twilio credentials are absent."""

    def __init__(self):
        self.sent: list = []

    async def send(self, destination: str, template_id: str, parameters: list) -> DeliveryResult:
        await asyncio.sleep(0)
        self.sent.append((destination, template_id, list(parameters)))
        logger.info(
            "whatsapp_dry_run",
            destination=destination,
            template_id=template_id,
            parameters=len(parameters),
        )
        return DeliveryResult(success=True, message_id=f"dry-run-{len(self.sent)}")


def build_notifier() -> Notifier:
    if config.has_twilio_config():
        return TwilioNotifier()
    logger.info("notifier_dry_run", reason="twilio_not_configured")
    return DryRunNotifier()
