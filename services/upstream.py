"""Shared HTTP plumbing for upstream collaborators."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from services.errors import UpstreamError
from settings import Settings

logger = logging.getLogger(__name__)

_USER_AGENT = "bhoomi-dut-gateway/0.1"


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.http_timeout,
        headers={"User-Agent": _USER_AGENT},
        follow_redirects=True,
    )


async def send(
    http: httpx.AsyncClient,
    upstream: str,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one request, turning transport failures into ``UpstreamError``.

    Non-2xx responses are returned as-is; each caller maps them to its own
    error message and status.
    """
    start = time.perf_counter()
    try:
        response = await http.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        logger.warning("Upstream request timed out", extra={"upstream": upstream})
        raise UpstreamError(upstream, f"{upstream} request timed out") from exc
    except httpx.HTTPError as exc:
        logger.warning(
            "Upstream request failed",
            extra={"upstream": upstream, "reason": type(exc).__name__},
        )
        raise UpstreamError(upstream, f"{upstream} request failed: {exc}") from exc

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log = logger.warning if response.is_error else logger.debug
    log(
        "Upstream responded",
        extra={"upstream": upstream, "status": response.status_code, "elapsed_ms": elapsed_ms},
    )
    return response


def json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
