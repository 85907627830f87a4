"""Client for the external agriculture / hyperspectral ML microservice."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import httpx

from services.errors import UpstreamError
from services.upstream import json_or_none, send
from settings import Settings

_UPSTREAM = "ml-service"

HSI_FORM_FIELDS = ("time_step", "w", "num_pc", "s1s2")
DEFAULT_HSI_MODEL = "ssun"

_URGENCY = {
    "Apply Pesticide": "urgent",
    "Irrigate": "urgent",
    "Apply Fertilizer": "moderate",
    "Monitor": "good",
}


def action_urgency(action: Optional[str]) -> str:
    return _URGENCY.get(action or "", "good")


class MlServiceClient:

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self._http = http
        self._base_url = settings.ml_service_url

    async def recommendation(
        self,
        n: float,
        p: float,
        k: float,
        temperature: float,
        humidity: float,
        soil_moisture: Optional[float] = None,
    ) -> Any:
        payload = {
            "n": n,
            "p": p,
            "k": k,
            "temperature": temperature,
            "humidity": humidity,
            "soil_moisture": soil_moisture,
        }
        response = await send(
            self._http,
            _UPSTREAM,
            "POST",
            f"{self._base_url}/agriculture/recommendation",
            json=payload,
        )
        return self._agriculture_payload(response)

    async def statistics(self, kind: Optional[str] = None) -> Any:
        endpoint = "/agriculture/npk-ranges" if kind == "npk-ranges" else "/agriculture/statistics"
        response = await send(
            self._http,
            _UPSTREAM,
            "GET",
            f"{self._base_url}{endpoint}",
            headers={"Accept": "application/json"},
        )
        return self._agriculture_payload(response)

    async def lstm_map(self, body: Any) -> Any:
        response = await send(
            self._http, _UPSTREAM, "POST", f"{self._base_url}/hsi/lstm-map", json=body
        )
        return self._hsi_payload(response)

    async def upload_map(
        self,
        filename: str,
        content: bytes,
        content_type: Optional[str],
        model: Optional[str] = None,
        options: Optional[Mapping[str, str]] = None,
    ) -> Any:
        data: Dict[str, str] = {"model": model or DEFAULT_HSI_MODEL}
        for key in HSI_FORM_FIELDS:
            if options and options.get(key) is not None:
                data[key] = str(options[key])
        files = {"file": (filename or "cube.mat", content, content_type or "application/octet-stream")}
        response = await send(
            self._http,
            _UPSTREAM,
            "POST",
            f"{self._base_url}/hsi/upload-map",
            data=data,
            files=files,
        )
        return self._hsi_payload(response)

    @staticmethod
    def _agriculture_payload(response: httpx.Response) -> Any:
        if response.is_error:
            raise UpstreamError(
                _UPSTREAM,
                f"ML service error: {response.text}",
                response.status_code,
                passthrough_status=True,
            )
        payload = json_or_none(response)
        if payload is None:
            raise UpstreamError(_UPSTREAM, "ML service returned a non-JSON response")
        return payload

    @staticmethod
    def _hsi_payload(response: httpx.Response) -> Any:
        if response.is_error:
            raise UpstreamError(
                _UPSTREAM,
                f"ML service error {response.status_code}: {response.text}",
                response.status_code,
            )
        payload = json_or_none(response)
        if payload is None:
            return {"raw": response.text}
        return payload
