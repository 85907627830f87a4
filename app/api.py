"""HTTP and WebSocket route definitions for the gateway."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from fastapi import (
    APIRouter,
    Body,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from app.schemas import (
    Aggregates,
    AlertCheckRequest,
    AlertCheckResponse,
    AnalysisResult,
    AnalyzeRequest,
    CallRequest,
    CallResponse,
    ChatRequest,
    ChatResponse,
    DetailedWeather,
    DiagnosticsReport,
    ErrorResponse,
    Evapotranspiration,
    LanguageDetection,
    LanguagePromptModel,
    LocationResponse,
    NpkSummary,
    PumpStatusResponse,
    PumpWriteResponse,
    Reading,
    RecommendationRequest,
    SensorOverview,
    SpeechRequest,
    SpeechResponse,
    TranslateRequest,
    TranslateResponse,
    TrendModel,
    VitalStats,
)
from models.records import SensorReading, ThresholdInput, Trend
from services.aggregator import AggregationSummary
from services.audio import chunk_duration
from services.container import FarmServices, build_default_services
from services.errors import ConfigurationError
from services.gemini import Attachment
from services.knowledge import contains_search_triggers, retrieve, sensor_context_block
from services.language import LANGUAGE_PROMPTS, detect_language
from services.ml import HSI_FORM_FIELDS, action_urgency
from services.realtime import AudioPlaybackQueue, RealtimeSession
from services.sensor_context import SensorContext
from services.thingspeak import DEFAULT_RANGE, parse_pump_action

logger = logging.getLogger(__name__)

router = APIRouter(
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    }
)

RECOMMENDATION_ERROR = "Missing or invalid sensor data. Required: n, p, k, temperature, humidity"
RATE_LIMIT_WARNING = "Rate limited by ThingSpeak (wait 15s)"
ASSISTANT_PROMPT = (
    "You are Balaram AI, an agricultural expert helping Indian farmers. Answer in the "
    "language of the question, use the sensor readings and knowledge below when they are "
    "relevant, and give practical, specific advice."
)
CURRENT_INFO_NOTE = (
    "The farmer is asking about current prices, schemes or news. Say which figures may be "
    "out of date and where to confirm them."
)


def get_services() -> FarmServices:
    return build_default_services()


def _reading(reading: SensorReading) -> Reading:
    return Reading.model_validate(reading, from_attributes=True)


def _trend(trend: Trend) -> TrendModel:
    return TrendModel(change=trend.change, increasing=trend.increasing)


def _aggregates(summary: AggregationSummary) -> Aggregates:
    return Aggregates.model_validate(summary, from_attributes=True)


def _location(services: FarmServices, lat: Optional[float], lon: Optional[float]) -> tuple:
    settings = services.settings
    return (
        settings.farm_latitude if lat is None else lat,
        settings.farm_longitude if lon is None else lon,
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}


@router.get(
    "/api/sensors",
    response_model=SensorOverview,
    summary="Current soil readings, history, trends and aggregates.",
)
async def sensors(
    time_range: str = Query(DEFAULT_RANGE, alias="range"),
    services: FarmServices = Depends(get_services),
) -> SensorOverview:
    moisture, npk = await asyncio.gather(
        services.thingspeak.soil_moisture_snapshot(time_range),
        services.thingspeak.npk_snapshot(),
    )
    current = npk.current
    return SensorOverview(
        range=time_range,
        current=_reading(moisture.current),
        trend=_trend(moisture.trend),
        npk=NpkSummary(
            nitrogen=current.nitrogen,
            phosphorus=current.phosphorus,
            potassium=current.potassium,
            average=round(current.npk_average, 2),
            trend=_trend(npk.trend),
        ),
        history=[_reading(reading) for reading in moisture.history],
        aggregates=_aggregates(services.thingspeak.aggregator.aggregate(moisture.history)),
    )


@router.get("/api/sensors/latest", response_model=Reading, summary="Newest sensor reading.")
async def latest_sensor_reading(services: FarmServices = Depends(get_services)) -> Reading:
    reading = await services.thingspeak.latest_reading()
    if reading is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No sensor data available")
    return _reading(reading)


@router.get(
    "/api/sensors/vital-stats",
    response_model=List[VitalStats],
    summary="Crop vital statistics from the secondary channel.",
)
async def vital_stats(
    time_range: str = Query(DEFAULT_RANGE, alias="range"),
    services: FarmServices = Depends(get_services),
) -> List[VitalStats]:
    readings = await services.thingspeak.vital_stats(time_range)
    return [VitalStats.model_validate(reading, from_attributes=True) for reading in readings]


@router.post("/api/pump", response_model=PumpWriteResponse, response_model_exclude_none=True)
@router.post(
    "/api/thingspeak/pump",
    response_model=PumpWriteResponse,
    response_model_exclude_none=True,
    include_in_schema=False,
)
async def set_pump(request: Request, services: FarmServices = Depends(get_services)) -> Any:
    try:
        body = await request.json()
    except ValueError:
        body = None
    try:
        value = parse_pump_action(body if isinstance(body, dict) else None)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    result = await services.pump.set_state(value)
    if result.rate_limited:
        warning = PumpWriteResponse(success=False, state=result.state, warning=RATE_LIMIT_WARNING)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=warning.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
    return PumpWriteResponse(success=True, state=result.state, entry_id=result.entry_id)


@router.get("/api/pump", response_model=PumpStatusResponse)
@router.get("/api/thingspeak/pump", include_in_schema=False)
async def get_pump(services: FarmServices = Depends(get_services)) -> PumpStatusResponse:
    pump = await services.pump.get_state()
    return PumpStatusResponse(state=pump.state, value=pump.value, last_update=pump.last_update)


@router.post("/api/alerts", response_model=AlertCheckResponse, summary="Check thresholds and text alerts.")
async def check_alerts(
    payload: AlertCheckRequest,
    services: FarmServices = Depends(get_services),
) -> AlertCheckResponse:
    reading = ThresholdInput(**payload.model_dump())
    alerts = await services.alerts.check_and_dispatch(reading)
    return AlertCheckResponse(alerts_sent=len(alerts), alerts=alerts)


@router.post("/api/ml/agriculture/recommendation")
async def recommendation(
    payload: Any = Body(default=None),
    services: FarmServices = Depends(get_services),
) -> Any:
    try:
        request = RecommendationRequest.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=RECOMMENDATION_ERROR) from exc
    return await services.ml.recommendation(**request.model_dump())


@router.get("/api/ml/agriculture/recommendation")
async def agriculture_statistics(
    kind: Optional[str] = Query(None, alias="type"),
    services: FarmServices = Depends(get_services),
) -> Any:
    return await services.ml.statistics(kind)


@router.post("/api/ml/agriculture/recommendation/latest")
async def recommendation_for_latest(services: FarmServices = Depends(get_services)) -> Any:
    reading = await services.thingspeak.latest_reading()
    if reading is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No sensor data available")
    result = await services.ml.recommendation(
        n=reading.nitrogen,
        p=reading.phosphorus,
        k=reading.potassium,
        temperature=reading.temperature,
        humidity=reading.humidity,
        soil_moisture=reading.soil_moisture,
    )
    if isinstance(result, dict):
        result = {**result, "urgency": action_urgency(result.get("action"))}
    return result


@router.post("/api/ml/hsi/lstm-map")
async def hsi_lstm_map(
    payload: Any = Body(default=None),
    services: FarmServices = Depends(get_services),
) -> Any:
    return await services.ml.lstm_map(payload or {})


@router.post("/api/ml/hsi/upload-map")
async def hsi_upload_map(
    file: Optional[UploadFile] = File(None),
    model: Optional[str] = Form(None),
    time_step: Optional[str] = Form(None),
    w: Optional[str] = Form(None),
    num_pc: Optional[str] = Form(None),
    s1s2: Optional[str] = Form(None),
    services: FarmServices = Depends(get_services),
) -> Any:
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing file")
    values = {"time_step": time_step, "w": w, "num_pc": num_pc, "s1s2": s1s2}
    options = {key: values[key] for key in HSI_FORM_FIELDS if values[key] is not None}
    try:
        content = await file.read()
    finally:
        await file.close()
    return await services.ml.upload_map(
        file.filename or "cube.mat", content, file.content_type, model=model, options=options
    )


@router.get("/api/weather", response_model=DetailedWeather, summary="Current weather and 5-day forecast.")
async def weather(
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    services: FarmServices = Depends(get_services),
) -> DetailedWeather:
    latitude, longitude = _location(services, lat, lon)
    return await services.weather.detailed_weather(latitude, longitude)


@router.get("/api/weather/evapotranspiration", response_model=Evapotranspiration)
async def evapotranspiration(
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    services: FarmServices = Depends(get_services),
) -> Evapotranspiration:
    latitude, longitude = _location(services, lat, lon)
    return await services.weather.evapotranspiration(latitude, longitude)


@router.get("/api/location", response_model=LocationResponse, summary="Reverse geocode a point.")
async def location(
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    services: FarmServices = Depends(get_services),
) -> LocationResponse:
    latitude, longitude = _location(services, lat, lon)
    name = await services.geocoder.location_name(latitude, longitude)
    return LocationResponse(latitude=latitude, longitude=longitude, location_name=name)


@router.post("/api/translate", response_model=TranslateResponse)
async def translate(
    payload: TranslateRequest,
    services: FarmServices = Depends(get_services),
) -> TranslateResponse:
    if not payload.text or not payload.target_lang:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Text and targetLang are required"
        )
    translated = await services.language.translate(payload.text, payload.target_lang)
    return TranslateResponse(translated_text=translated)


@router.post("/api/tts", response_model=SpeechResponse)
async def text_to_speech(
    payload: SpeechRequest,
    services: FarmServices = Depends(get_services),
) -> SpeechResponse:
    if not payload.text or not payload.lang:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Text and language are required"
        )
    try:
        audio = await services.language.synthesize(payload.text, payload.lang)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return SpeechResponse(audio_content=audio)


@router.get("/api/language/detect", response_model=LanguageDetection)
async def language_detect(text: str = "") -> LanguageDetection:
    return LanguageDetection(language=detect_language(text))


@router.get("/api/language/prompts", response_model=List[LanguagePromptModel])
async def language_prompts() -> List[LanguagePromptModel]:
    return [LanguagePromptModel(code=prompt.code, text=prompt.text) for prompt in LANGUAGE_PROMPTS]


@router.post("/api/omnidim/call", response_model=CallResponse)
async def omnidim_call(
    payload: CallRequest,
    services: FarmServices = Depends(get_services),
) -> CallResponse:
    destination = payload.to or payload.phone_number
    if not services.omnidim.configured:
        raise ConfigurationError("Missing Omnidim API configuration")
    if not destination:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing destination phone number"
        )
    data = await services.omnidim.dispatch_call(destination, payload.call_context)
    return CallResponse(success=True, data=data)


@router.get(
    "/api/diagnostics/balaram-ai",
    response_model=DiagnosticsReport,
    summary="Probe the Gemini key; always answers 200.",
)
async def diagnostics(services: FarmServices = Depends(get_services)) -> DiagnosticsReport:
    return await services.diagnostics.run()


async def _assistant_context(
    services: FarmServices,
    lat: Optional[float],
    lon: Optional[float],
    location_name: Optional[str] = None,
) -> SensorContext:
    latitude, longitude = _location(services, lat, lon)
    if location_name is None and lat is None and lon is None:
        location_name = services.settings.farm_location_name
    context = await services.context_builder.build(latitude, longitude, location_name)
    logger.debug("Assistant context: %s", context.describe(), extra={"route": "assistant"})
    return context


@router.post("/api/assistant/analyze", response_model=AnalysisResult, response_model_exclude_none=True)
async def assistant_analyze(
    payload: AnalyzeRequest,
    services: FarmServices = Depends(get_services),
) -> AnalysisResult:
    context = await _assistant_context(services, None, None)
    return await services.analyzer.analyze(
        payload.query, payload.response, payload.search_results, context
    )


@router.post("/api/assistant/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def assistant_chat(
    payload: ChatRequest,
    services: FarmServices = Depends(get_services),
) -> ChatResponse:
    attachment = None
    if payload.attachment is not None:
        try:
            data = base64.b64decode(payload.attachment.data, validate=True)
        except binascii.Error as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Attachment data must be base64"
            ) from exc
        attachment = Attachment(mime_type=payload.attachment.mime_type, data=data)

    context = await _assistant_context(
        services, payload.latitude, payload.longitude, payload.location_name
    )
    sections = [ASSISTANT_PROMPT, retrieve(payload.message), sensor_context_block(context)]
    if contains_search_triggers(payload.message):
        sections.append(CURRENT_INFO_NOTE)
    system_prompt = "\n\n".join(sections)
    reply = await services.chat.generate_response(
        payload.message, system_prompt, context, attachment=attachment
    )
    analysis = await services.analyzer.analyze(payload.message, reply, None, context)
    chart = analysis if not analysis.skip and analysis.needs_visual else None
    return ChatResponse(reply=reply, chart=chart)


@router.websocket("/ws/assistant")
async def assistant_socket(
    websocket: WebSocket,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    services: FarmServices = Depends(get_services),
) -> None:
    await websocket.accept()

    async def emit(event: Dict[str, Any]) -> None:
        await websocket.send_json(event)

    if not services.gemini.configured:
        await emit({"type": "error", "message": "Missing API key for Balaram AI (Gemini)."})
        await websocket.close(code=1011)
        return

    async def play(chunk: bytes) -> None:
        await emit({"type": "audio", "data": base64.b64encode(chunk).decode("ascii")})
        await asyncio.sleep(chunk_duration(chunk))

    async def on_playing(playing: bool) -> None:
        await emit({"type": "playing", "playing": playing})

    async def on_level(level: float) -> None:
        await emit({"type": "audio_level", "level": round(level, 1)})

    context = await _assistant_context(services, lat, lon)
    session = RealtimeSession(
        api_key=services.gemini.api_key or "",
        model=services.settings.realtime_model,
        context=context,
        transcriber=services.transcription,
        analyzer=services.analyzer,
        emit=emit,
        playback=AudioPlaybackQueue(play, on_playing=on_playing, on_level=on_level),
    )

    async def relay_browser() -> None:
        while True:
            try:
                message = await websocket.receive_json()
            except WebSocketDisconnect:
                logger.info("Browser disconnected", extra={"route": "/ws/assistant"})
                return
            except (ValueError, KeyError):
                logger.warning("Ignoring malformed browser frame", extra={"route": "/ws/assistant"})
                continue
            kind = message.get("type") if isinstance(message, dict) else None
            try:
                if kind == "media":
                    await session.send_media_chunk(
                        message.get("data", ""), message.get("mime_type", "audio/pcm")
                    )
                elif kind == "interrupt":
                    await session.interrupt()
            except ConnectionClosed as exc:
                logger.warning(
                    "Upstream closed while relaying browser frame",
                    extra={"route": "/ws/assistant", "reason": str(exc)},
                )

    upstream = asyncio.create_task(session.run())
    browser = asyncio.create_task(relay_browser())
    done, pending = await asyncio.wait({upstream, browser}, return_when=asyncio.FIRST_COMPLETED)
    await session.close()
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    if upstream in done:
        exc = upstream.exception()
        if exc is not None:
            logger.warning(
                "Realtime session ended with an error",
                extra={"route": "/ws/assistant", "reason": str(exc)},
            )
        try:
            if exc is not None:
                await emit({"type": "error", "message": f"Realtime session failed: {exc}"})
            await websocket.close(code=1011 if exc is not None else 1000)
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Browser socket already closed", extra={"route": "/ws/assistant"})
