"""Exception hierarchy shared by the upstream clients and the HTTP layer."""

from __future__ import annotations

from typing import Optional

_MAX_DETAIL = 500


class GatewayError(Exception):
    """Base error rendered as ``{"error": message}`` by the API layer."""

    status_code = 500


class ConfigurationError(GatewayError):
    """A credential or setting required for an upstream call is missing."""


class UpstreamError(GatewayError):
    """An external collaborator failed or answered with a non-2xx status."""

    status_code = 502

    def __init__(
        self,
        upstream: str,
        message: str,
        upstream_status: Optional[int] = None,
        passthrough_status: bool = False,
    ) -> None:
        super().__init__(message[:_MAX_DETAIL])
        self.upstream = upstream
        self.upstream_status = upstream_status
        if passthrough_status and upstream_status is not None:
            self.status_code = upstream_status
