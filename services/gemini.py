"""Gemini REST access: chat replies, audio transcription and key diagnostics."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import httpx

from app.schemas import DiagnosticCheck, DiagnosticsReport
from services.errors import ConfigurationError, UpstreamError
from services.upstream import json_or_none, send

if TYPE_CHECKING:
    from services.sensor_context import SensorContext

logger = logging.getLogger(__name__)

_UPSTREAM = "gemini"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"

CHAT_GENERATION_CONFIG = {
    "temperature": 1,
    "topP": 0.95,
    "topK": 40,
    "maxOutputTokens": 8192,
}
TRANSCRIPTION_PROMPT = (
    "Please transcribe the spoken language in this audio accurately. "
    "Ignore any background noise or non-speech sounds."
)

KEY_ENV_NAMES = ["GEMINI_API_KEY", "GOOGLE_API_KEY"]
_RATE_LIMIT_HEADERS = ("x-ratelimit-limit", "x-ratelimit-remaining", "x-ratelimit-reset")
_MAX_ERROR = 500
_MAX_MODELS = 50

STATUS_HINTS = {
    401: "Invalid API key.",
    403: "API not enabled or billing/project permissions issue.",
    404: "Model not found or not supported for generateContent in this region/project.",
    429: "Rate limit or quota exceeded.",
}
# Checked in this order; the first status seen in any check wins.
DIAGNOSES = (
    (429, "Rate limit or quota exceeded."),
    (401, "Invalid API key."),
    (403, "API not enabled, billing/project permission issue, or safety policy block."),
    (404, "Model or endpoint not available for this project/region."),
)
NETWORK_HINT = "Network error. Check firewall/VPN/corporate proxy."


def redact(secret: Optional[str]) -> Optional[str]:
    if not secret:
        return None
    if len(secret) <= 8:
        return "***"
    return secret[:4] + "***" + secret[-4:]


def extract_text(payload: Any) -> str:
    """Concatenate the text parts of the first candidate."""
    if not isinstance(payload, dict):
        return ""
    candidates = payload.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


@dataclass(frozen=True)
class Attachment:
    mime_type: str
    data: bytes

    def as_part(self) -> Dict[str, Any]:
        return {
            "inlineData": {
                "mimeType": self.mime_type,
                "data": base64.b64encode(self.data).decode("ascii"),
            }
        }


class GeminiClient:

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: Optional[str],
        project_id: Optional[str] = None,
        base_url: str = GEMINI_BASE_URL,
    ) -> None:
        self._http = http
        self.api_key = api_key
        self.project_id = project_id
        self._base_url = base_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-user-project": self.project_id} if self.project_id else {}

    async def raw_generate(
        self,
        model: str,
        contents: List[Dict[str, Any]],
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        payload: Dict[str, Any] = {"contents": contents}
        if generation_config:
            payload["generationConfig"] = generation_config
        return await send(
            self._http,
            _UPSTREAM,
            "POST",
            f"{self._base_url}/v1beta/{model}:generateContent",
            params={"key": self.api_key or ""},
            json=payload,
            headers=self._headers(),
        )

    async def generate_content(
        self,
        model: str,
        contents: List[Dict[str, Any]],
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.configured:
            raise ConfigurationError("Missing API key for Balaram AI (Gemini).")
        response = await self.raw_generate(model, contents, generation_config)
        if response.is_error:
            raise UpstreamError(
                _UPSTREAM,
                f"Gemini error {response.status_code}: {response.text}",
                response.status_code,
            )
        payload = json_or_none(response)
        if not isinstance(payload, dict):
            raise UpstreamError(_UPSTREAM, "Gemini returned a non-JSON response")
        return payload

    async def list_models(self) -> httpx.Response:
        return await send(
            self._http,
            _UPSTREAM,
            "GET",
            f"{self._base_url}/v1beta/models",
            params={"key": self.api_key or ""},
            headers=self._headers(),
        )


class ChatService:

    def __init__(self, client: GeminiClient, model: str) -> None:
        self._client = client
        self._model = model

    async def generate_response(
        self,
        user_input: str,
        system_prompt: str = "",
        context: Optional["SensorContext"] = None,
        attachment: Optional[Attachment] = None,
    ) -> str:
        text = user_input
        if system_prompt.strip():
            variables = context.gemini_variables() if context is not None else {}
            text = f"{system_prompt}\nSENSOR_CONTEXT_JSON: {json.dumps(variables)}\n\n{user_input}"

        parts: List[Dict[str, Any]] = [{"text": text}]
        if attachment is not None:
            parts.append(attachment.as_part())

        payload = await self._client.generate_content(
            self._model,
            [{"role": "user", "parts": parts}],
            CHAT_GENERATION_CONFIG,
        )
        return extract_text(payload)


class TranscriptionService:

    def __init__(self, client: GeminiClient, model: str) -> None:
        self._client = client
        self._model = model

    async def transcribe(self, wav_base64: str, mime_type: str = "audio/wav") -> str:
        payload = await self._client.generate_content(
            self._model,
            [
                {
                    "role": "user",
                    "parts": [
                        {"inlineData": {"mimeType": mime_type, "data": wav_base64}},
                        {"text": TRANSCRIPTION_PROMPT},
                    ],
                }
            ],
        )
        transcript = extract_text(payload).strip()
        logger.info("Audio transcribed", extra={"upstream": _UPSTREAM, "model": self._model})
        return transcript


def _rate_limit_headers(response: httpx.Response) -> Dict[str, str]:
    return {name: response.headers.get(name, "") for name in _RATE_LIMIT_HEADERS}


def _check_from_response(name: str, response: httpx.Response) -> DiagnosticCheck:
    ok = not response.is_error
    return DiagnosticCheck(
        name=name,
        ok=ok,
        status=response.status_code,
        error=None if ok else response.text[:_MAX_ERROR],
        hint=None if ok else STATUS_HINTS.get(response.status_code),
        headers=_rate_limit_headers(response),
    )


class DiagnosticsService:
    """Probes the configured key against the model list and a tiny generation."""

    def __init__(self, client: GeminiClient, model: str) -> None:
        self._client = client
        self._model = model

    async def run(self) -> DiagnosticsReport:
        if not self._client.configured:
            return DiagnosticsReport(
                ok=False,
                message="Missing API key for Balaram AI (Gemini).",
                looked_for=list(KEY_ENV_NAMES),
            )

        checks = [await self._list_models(), await self._ping()]
        statuses = {check.status for check in checks}
        diagnosis = next(
            (text for status, text in DIAGNOSES if status in statuses), "Unknown"
        )
        report = DiagnosticsReport(
            ok=all(check.ok for check in checks),
            diagnosis=diagnosis,
            api_key_redacted=redact(self._client.api_key),
            project_id=self._client.project_id,
            checks=checks,
        )
        logger.info(
            "Gemini diagnostics finished",
            extra={"upstream": _UPSTREAM, "reason": diagnosis, "model": self._model},
        )
        return report

    async def _list_models(self) -> DiagnosticCheck:
        name = "List Models"
        try:
            response = await self._client.list_models()
        except UpstreamError as exc:
            return DiagnosticCheck(name=name, ok=False, error=str(exc), hint=NETWORK_HINT)

        check = _check_from_response(name, response)
        payload = json_or_none(response)
        if isinstance(payload, dict) and isinstance(payload.get("models"), list):
            check.models = [
                model["name"]
                for model in payload["models"]
                if isinstance(model, dict) and isinstance(model.get("name"), str)
            ][:_MAX_MODELS]
        return check

    async def _ping(self) -> DiagnosticCheck:
        name = "Generate Content (text)"
        try:
            response = await self._client.raw_generate(
                self._model,
                [{"role": "user", "parts": [{"text": "ping"}]}],
                {"maxOutputTokens": 4},
            )
        except UpstreamError as exc:
            return DiagnosticCheck(name=name, ok=False, error=str(exc), hint=NETWORK_HINT)
        return _check_from_response(name, response)
