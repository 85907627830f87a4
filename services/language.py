"""Translation, speech synthesis and script-based language detection."""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

import httpx
from gtts import gTTS, gTTSError

from services.errors import UpstreamError
from services.upstream import json_or_none, send

logger = logging.getLogger(__name__)

_UPSTREAM = "google-translate"
TRANSLATE_URL = "https://translate.googleapis.com/translate_a/single"

ENGLISH = "en"
BENGALI = "bn"
HINDI = "hi"
KANNADA = "kn"
TAMIL = "ta"
TELUGU = "te"

_SCRIPTS = (
    (HINDI, 0x0900, 0x097F),  # Devanagari
    (BENGALI, 0x0980, 0x09FF),
    (TAMIL, 0x0B80, 0x0BFF),
    (KANNADA, 0x0C80, 0x0CFF),
    (TELUGU, 0x0C00, 0x0C7F),
)

# Full names are checked before the short prefixes speech recognition tends to produce.
_KEYWORDS = (
    ("english", ENGLISH),
    ("hindi", HINDI),
    ("bengali", BENGALI),
    ("bangla", BENGALI),
    ("kannada", KANNADA),
    ("tamil", TAMIL),
    ("telugu", TELUGU),
    ("hind", HINDI),
    ("bangal", BENGALI),
    ("kanna", KANNADA),
    ("tam", TAMIL),
    ("tel", TELUGU),
)

_PLAIN_ENGLISH = re.compile(r"^[a-z0-9\s.,?!]+$")


@dataclass(frozen=True)
class LanguagePrompt:
    code: str
    text: str


LANGUAGE_PROMPTS = (
    LanguagePrompt(ENGLISH, "Please choose by speaking in your preferred language."),
    LanguagePrompt(BENGALI, "অনুগ্রহ করে আপনার পছন্দের ভাষায় কথা বলে বেছে নিন।"),
    LanguagePrompt(HINDI, "कृपया अपनी पसंदीदा भाषा में बोलकर चुनें।"),
    LanguagePrompt(KANNADA, "ದಯವಿಟ್ಟು ನಿಮ್ಮ ಆದ್ಯತೆಯ ಭಾಷೆಯಲ್ಲಿ ಮಾತನಾಡುವ ಮೂಲಕ ಆಯ್ಕೆಮಾಡಿ."),
    LanguagePrompt(TAMIL, "தயவுசெய்து உங்கள் விருப்பமான மொழியில் பேசித் தேர்ந்தெடுக்கவும்."),
    LanguagePrompt(TELUGU, "దయచేసి మీకు ఇష్టమైన భాషలో మాట్లాడి ఎంచుకోండి."),
)


def detect_language(transcript: Optional[str]) -> Optional[str]:
    """Guess a language code from a spoken-language transcript."""
    if not transcript:
        return None
    text = transcript.strip().lower()

    for char in text:
        code_point = ord(char)
        for code, start, end in _SCRIPTS:
            if start <= code_point <= end:
                return code

    for keyword, code in _KEYWORDS:
        if keyword in text:
            return code

    if _PLAIN_ENGLISH.match(text):
        return ENGLISH
    return None


def _render_speech(text: str, lang: str) -> bytes:
    buffer = io.BytesIO()
    gTTS(text=text, lang=lang, slow=False).write_to_fp(buffer)
    return buffer.getvalue()


class LanguageService:

    def __init__(
        self,
        http: httpx.AsyncClient,
        speech_renderer: Callable[[str, str], bytes] = _render_speech,
        translate_url: str = TRANSLATE_URL,
    ) -> None:
        self._http = http
        self._render = speech_renderer
        self._translate_url = translate_url

    async def translate(self, text: str, target_lang: str) -> str:
        response = await send(
            self._http,
            _UPSTREAM,
            "GET",
            self._translate_url,
            params={"client": "gtx", "sl": "auto", "tl": target_lang, "dt": "t", "q": text},
        )
        if response.is_error:
            raise UpstreamError(
                _UPSTREAM,
                f"Translation failed: {response.reason_phrase}",
                response.status_code,
            )
        data = json_or_none(response)
        # Shape: [[["translated", "original", ...], ...], ...]; one entry per sentence.
        try:
            sentences: List[list] = data[0]
            return "".join(segment[0] for segment in sentences if segment and segment[0])
        except (TypeError, IndexError, KeyError) as exc:
            raise UpstreamError(_UPSTREAM, "Unexpected translation payload") from exc

    async def synthesize(self, text: str, lang: str) -> str:
        """Return MP3 speech for ``text`` as a ``data:`` URI."""
        try:
            audio = await asyncio.to_thread(self._render, text, lang)
        except gTTSError as exc:
            raise UpstreamError("google-tts", f"Google TTS failed: {exc}") from exc
        logger.debug("Speech synthesized", extra={"upstream": "google-tts", "reason": lang})
        return "data:audio/mpeg;base64," + base64.b64encode(audio).decode("ascii")
