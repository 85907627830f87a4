"""Outbound SMS through the Twilio REST API."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from services.errors import ConfigurationError, UpstreamError
from services.upstream import json_or_none, send
from settings import Settings

logger = logging.getLogger(__name__)

_UPSTREAM = "twilio"
TWILIO_API_URL = "https://api.twilio.com/2010-04-01"


class TwilioNotifier:

    def __init__(
        self,
        http: httpx.AsyncClient,
        settings: Settings,
        api_url: str = TWILIO_API_URL,
    ) -> None:
        self._http = http
        self._settings = settings
        self._api_url = api_url.rstrip("/")

    async def send_sms(self, body: str, to_number: Optional[str] = None) -> Optional[str]:
        """Send ``body`` as one SMS and return the Twilio message SID."""
        sid = self._settings.twilio_account_sid
        token = self._settings.twilio_auth_token
        from_number = self._settings.twilio_from_number
        recipient = to_number or self._settings.twilio_to_number
        if not all([sid, token, from_number, recipient]):
            raise ConfigurationError(
                "Twilio is not configured. Set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, "
                "TWILIO_FROM_NUMBER and TWILIO_TO_NUMBER."
            )

        response = await send(
            self._http,
            _UPSTREAM,
            "POST",
            f"{self._api_url}/Accounts/{sid}/Messages.json",
            data={"To": recipient, "From": from_number, "Body": body},
            auth=(sid, token),
        )
        if response.is_error:
            raise UpstreamError(
                _UPSTREAM,
                f"Failed to send SMS: {response.status_code} {response.reason_phrase}",
                response.status_code,
            )

        payload = json_or_none(response) or {}
        message_sid = payload.get("sid") if isinstance(payload, dict) else None
        logger.info("SMS sent", extra={"upstream": _UPSTREAM, "status": response.status_code})
        return message_sid
