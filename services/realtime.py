"""Bridge between a browser audio session and the Gemini realtime API."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosedError

from services.analysis import ChartAnalyzer
from services.audio import audio_level, pcm_to_wav
from services.errors import GatewayError
from services.gemini import TranscriptionService
from services.sensor_context import SensorContext

logger = logging.getLogger(__name__)

REALTIME_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1alpha.GenerativeService.BidiGenerateContent"
)
AUDIO_MIME = "audio/pcm;rate=24000"
AUDIO_PLACEHOLDER = "Audio response provided"
RECONNECT_DELAY = 1.0

Emit = Callable[[Dict[str, Any]], Awaitable[None]]
Sink = Callable[[bytes], Awaitable[None]]

PERSONA_PROMPT = (
    "Speak with a helpful, funny and wise tone, that is very sportive, optimistic and can say "
    "no to the user if required. Always be confident in what you say. Ask the user for their "
    "query. Sound natural in the language you are speaking, do not repeat questions or keep "
    "using the user's name, and avoid generic answers: go in depth, but bit by bit. Do not "
    "speak more than 40 words at a time. Vocalise your thinking while looking for a solution. "
    "You are an agriculture expert in India solving farmers' problems. Always converse in the "
    "language the user is talking in, or asks to speak. You have access to real-time sensor "
    "data including: Location --> {locationName}, Humidity --> {humidity}%, Soil Moisture --> "
    "{soilMoisture}%, Nitrogen --> {npkNitrogen}ppm N, Phosphorus --> {npkPhosphorus}ppm P, "
    "Potassium --> {npkPotassium}ppm K, Avg NPK: {npkAverage}ppm. Based on these values, the "
    "location and the crop asked about, give personalized agricultural suggestions and "
    "recommendations. Say sensor numbers in words, not digits, and in English. When users ask "
    'you to "search", "find", "lookup", or ask for "current prices" or "latest news", use '
    "Google Search to get real-time information in an Indian context only."
)


def realtime_url(api_key: str, base_url: str = REALTIME_URL) -> str:
    return f"{base_url}?key={api_key}"


def setup_frame(model: str, context: SensorContext) -> Dict[str, Any]:
    variables = context.gemini_variables()
    return {
        "setup": {
            "model": model,
            "generation_config": {"response_modalities": ["AUDIO"]},
            "tools": [{"google_search": {}}],
            "system_instruction": {
                "parts": [
                    {"text": PERSONA_PROMPT.format(**variables)},
                    {"text": f"SENSOR_CONTEXT_JSON: {json.dumps(variables)}"},
                ]
            },
        }
    }


class AudioPlaybackQueue:
    """FIFO of PCM chunks played one at a time through ``sink``."""

    def __init__(
        self,
        sink: Sink,
        on_playing: Optional[Callable[[bool], Awaitable[None]]] = None,
        on_level: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._sink = sink
        self._on_playing = on_playing
        self._on_level = on_level
        self._queue: Deque[bytes] = deque()
        self._task: Optional[asyncio.Task] = None
        self.playing = False

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, chunk: bytes) -> None:
        self._queue.append(chunk)
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._drain())

    async def wait_idle(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def stop(self) -> None:
        self._queue.clear()
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._set_playing(False)

    async def _drain(self) -> None:
        # The idle callback yields, so chunks can arrive after the inner loop ends.
        while True:
            await self._set_playing(True)
            while self._queue:
                chunk = self._queue.popleft()
                try:
                    if self._on_level is not None:
                        await self._on_level(audio_level(chunk))
                    await self._sink(chunk)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Audio chunk playback failed")
            await self._set_playing(False)
            if not self._queue:
                return

    async def _set_playing(self, playing: bool) -> None:
        if self.playing == playing:
            return
        self.playing = playing
        if self._on_playing is not None:
            await self._on_playing(playing)


class RealtimeSession:
    """One assistant conversation relayed to the Gemini bidirectional API.

    Model audio is replayed through ``playback``; when a turn completes the
    spoken audio is transcribed and the turn is offered to chart analysis.
    Browser-facing events are delivered through ``emit``.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        context: SensorContext,
        transcriber: TranscriptionService,
        analyzer: ChartAnalyzer,
        emit: Emit,
        playback: AudioPlaybackQueue,
        connector: Callable[[str], Any] = websockets.connect,
        url: str = REALTIME_URL,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._context = context
        self._transcriber = transcriber
        self._analyzer = analyzer
        self._emit = emit
        self.playback = playback
        self._connector = connector
        self._url = url
        self._reconnect_delay = reconnect_delay

        self._ws: Any = None
        self._closing = False
        self.setup_complete = False
        self._pcm_chunks: List[str] = []
        self._response_text = ""
        self._search_results: Optional[Dict[str, Any]] = None

    async def run(self) -> None:
        """Hold the upstream connection until it closes cleanly or ``close`` is called."""
        while not self._closing:
            self.setup_complete = False
            try:
                async with self._connector(realtime_url(self._api_key, self._url)) as ws:
                    self._ws = ws
                    await ws.send(json.dumps(setup_frame(self._model, self._context)))
                    logger.info("Realtime setup sent", extra={"model": self._model})
                    async for message in ws:
                        await self.handle_message(message)
                return
            except ConnectionClosedError as exc:
                if self._closing or not self.setup_complete:
                    raise
                logger.warning(
                    "Realtime connection dropped, reconnecting",
                    extra={"upstream": "gemini-live", "reason": str(exc)},
                )
                await asyncio.sleep(self._reconnect_delay)
            finally:
                self._ws = None

    async def close(self) -> None:
        self._closing = True
        self.setup_complete = False
        await self.playback.stop()
        if self._ws is not None:
            await self._ws.close()

    async def send_media_chunk(self, data: str, mime_type: str) -> bool:
        if self._ws is None or not self.setup_complete:
            return False
        frame = {"realtime_input": {"media_chunks": [{"mime_type": mime_type, "data": data}]}}
        await self._ws.send(json.dumps(frame))
        return True

    async def interrupt(self) -> None:
        dropped = len(self.playback)
        await self.playback.stop()
        logger.info("Playback interrupted", extra={"results": dropped})

    async def handle_message(self, raw: Any) -> None:
        """Apply one upstream frame; malformed frames are logged and skipped."""
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            message = json.loads(raw)
            if not isinstance(message, dict):
                raise TypeError(f"expected an object, got {type(message).__name__}")
            await self._apply(message)
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning(
                "Ignoring malformed realtime frame",
                extra={"upstream": "gemini-live", "reason": str(exc)},
            )

    async def _apply(self, message: Dict[str, Any]) -> None:
        if message.get("setupComplete") is not None:
            self.setup_complete = True
            await self._emit({"type": "setup_complete"})
            return

        content = message.get("serverContent")
        if not isinstance(content, dict):
            return
        grounding = content.get("groundingMetadata")
        if grounding:
            self._search_results = grounding
            await self._emit({"type": "search_results", "data": grounding})

        if content.get("interrupted"):
            await self.playback.stop()

        model_turn = content.get("modelTurn")
        parts = model_turn.get("parts") if isinstance(model_turn, dict) else None
        for part in parts if isinstance(parts, list) else []:
            if not isinstance(part, dict):
                continue
            inline = part.get("inlineData")
            if isinstance(inline, dict) and inline.get("mimeType") == AUDIO_MIME and inline.get("data"):
                chunk = base64.b64decode(inline["data"], validate=True)
                self._pcm_chunks.append(inline["data"])
                self.playback.enqueue(chunk)
            text = part.get("text")
            if isinstance(text, str) and text:
                self._response_text += text
                await self._emit({"type": "text", "text": text})

        if content.get("turnComplete") is True:
            await self._complete_turn()

    async def _complete_turn(self) -> None:
        try:
            if not self._pcm_chunks:
                return
            transcript = await self._transcriber.transcribe(pcm_to_wav(self._pcm_chunks))
            await self._emit({"type": "transcription", "text": transcript})
            if not transcript:
                return
            result = await self._analyzer.analyze(
                transcript,
                self._response_text or AUDIO_PLACEHOLDER,
                self._search_results,
                self._context,
            )
            if not result.skip and result.needs_visual:
                await self._emit({"type": "chart", "data": result.model_dump(mode="json")})
        except (GatewayError, ValueError) as exc:
            logger.warning("Turn post-processing failed", extra={"reason": str(exc)})
            await self._emit({"type": "error", "message": str(exc)})
        finally:
            self._pcm_chunks = []
            self._response_text = ""
            self._search_results = None
