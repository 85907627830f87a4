"""Outbound AI phone calls through the Omnidim dispatch API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

import httpx

from services.errors import ConfigurationError, UpstreamError
from services.upstream import json_or_none, send
from settings import Settings

logger = logging.getLogger(__name__)

_UPSTREAM = "omnidim"
DEFAULT_CALL_CONTEXT = {"source": "dashboard", "intent": "test_call"}


def _agent_id(raw: str) -> Union[int, str]:
    try:
        return int(raw)
    except ValueError:
        return raw


class OmnidimClient:

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self._http = http
        self._settings = settings

    @property
    def configured(self) -> bool:
        return bool(self._settings.omnidim_api_key and self._settings.omnidim_agent_id)

    async def dispatch_call(
        self, to_number: str, call_context: Optional[Dict[str, Any]] = None
    ) -> Any:
        if not self.configured:
            raise ConfigurationError("Missing Omnidim API configuration")

        payload: Dict[str, Any] = {
            "agent_id": _agent_id(self._settings.omnidim_agent_id or ""),
            "to_number": to_number,
            "call_context": call_context or dict(DEFAULT_CALL_CONTEXT),
        }
        if self._settings.omnidim_from_number_id:
            payload["from_number_id"] = self._settings.omnidim_from_number_id

        response = await send(
            self._http,
            _UPSTREAM,
            "POST",
            f"{self._settings.omnidim_base_url}/api/v1/calls/dispatch",
            json=payload,
            headers={"Authorization": f"Bearer {self._settings.omnidim_api_key}"},
        )
        if response.is_error:
            raise UpstreamError(
                _UPSTREAM,
                f"Omnidim error {response.status_code}: {response.text}",
                response.status_code,
            )
        logger.info("Call dispatched", extra={"upstream": _UPSTREAM, "status": response.status_code})
        data = json_or_none(response)
        return data if data is not None else {}
