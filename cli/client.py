from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the gateway API."""

    def __init__(self, config: CLIConfig, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._config = config
        self._client = httpx.Client(
            base_url=config.base_url, timeout=config.timeout, transport=transport
        )

    def close(self) -> None:
        self._client.close()

    def sensors(self, time_range: str = "24h") -> Dict[str, Any]:
        return self._request("GET", "/api/sensors", params={"range": time_range})

    def latest_reading(self) -> Dict[str, Any]:
        return self._request("GET", "/api/sensors/latest")

    def pump_status(self) -> Dict[str, Any]:
        return self._request("GET", "/api/pump")

    def set_pump(self, action: str) -> Dict[str, Any]:
        return self._request("POST", "/api/pump", json={"action": action}, allow={429})

    def check_alerts(self, reading: Dict[str, float]) -> Dict[str, Any]:
        return self._request("POST", "/api/alerts", json=reading)

    def recommend_latest(self) -> Dict[str, Any]:
        return self._request("POST", "/api/ml/agriculture/recommendation/latest")

    def translate(self, text: str, target_lang: str) -> Dict[str, Any]:
        return self._request("POST", "/api/translate", json={"text": text, "targetLang": target_lang})

    def _request(
        self,
        method: str,
        path: str,
        allow: Optional[set] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
            if allow is None or response.status_code not in allow:
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.HTTPError as exc:
            typer.secho(f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("error") if isinstance(data, dict) else None
        except ValueError:
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

