from __future__ import annotations

import logging

from logging_config import ContextualFormatter, scrub


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("services.thingspeak", logging.WARNING, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_appends_whitelisted_context() -> None:
    formatter = ContextualFormatter(fmt="%(levelname)s %(message)s")

    line = formatter.format(_record("Upstream responded", upstream="ThingSpeak", status=400, secret="x"))

    assert line == "WARNING Upstream responded | upstream=ThingSpeak status=400"


def test_formatter_skips_none_values() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    assert formatter.format(_record("Pump switched", state=None)) == "Pump switched"


def test_api_keys_are_scrubbed_from_messages() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    line = formatter.format(_record("GET /feeds.json?api_key=ABC123&results=60"))

    assert line == "GET /feeds.json?api_key=***&results=60"
    assert scrub("models:generateContent?key=AIzaSECRET") == "models:generateContent?key=***"
