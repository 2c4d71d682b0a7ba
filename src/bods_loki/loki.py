"""Grafana Loki push API client."""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx

from bods_loki import __version__
from bods_loki.config import DEFAULT_HTTP_TIMEOUT_SEC
from bods_loki.errors import ErrorKind, PipelineError
from bods_loki.logging import get_logger

if TYPE_CHECKING:
    import structlog

    from bods_loki.models import ParsedBatch

logger = get_logger(__name__)

PUSH_PATH = "/loki/api/v1/push"
USER_AGENT = f"bods-loki/{__version__}"
STREAM_JOB = "bods2loki"
STREAM_SERVICE = "bus-tracking"


class SendError(PipelineError):
    """Raised when Loki rejects a push or cannot be reached."""

    kind = ErrorKind.SEND_FAILED

    def __init__(
        self,
        message: str,
        *,
        line_ref: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, line_ref=line_ref)
        self.status_code = status_code


def encode_log_line(entry: dict[str, Any]) -> str:
    return json.dumps(entry, separators=(",", ":"), ensure_ascii=False)


def build_push_request(
    batch: ParsedBatch,
    clock_ns: Callable[[], int] = time.time_ns,
) -> dict[str, Any]:
    """Build the push body for one batch: a single stream labelled by line."""
    values = [[str(clock_ns()), encode_log_line(entry)] for entry in batch.log_entries()]
    return {
        "streams": [
            {
                "stream": {
                    "job": STREAM_JOB,
                    "service": STREAM_SERVICE,
                    "line_ref": batch.line_ref,
                },
                "values": values,
            }
        ]
    }


class LokiClient:
    """Sends parsed batches to Loki, one request per batch."""

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        *,
        client: httpx.AsyncClient | None = None,
        timeout_sec: float = DEFAULT_HTTP_TIMEOUT_SEC,
        clock_ns: Callable[[], int] = time.time_ns,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self._clock_ns = clock_ns
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec))
        self._log = log or logger

    @property
    def push_url(self) -> str:
        return f"{self.base_url}{PUSH_PATH}"

    @property
    def auth(self) -> httpx.BasicAuth | None:
        if self.username and self.password:
            return httpx.BasicAuth(self.username, self.password)
        return None

    async def send(self, batch: ParsedBatch) -> None:
        """Push every vehicle in ``batch`` as its own log line.

        Raises:
            SendError: On network failure or a non-2xx response.
        """
        payload = build_push_request(batch, self._clock_ns)
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        started = time.perf_counter()

        try:
            response = await self._client.post(
                self.push_url,
                content=body,
                headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
                auth=self.auth,
            )
        except httpx.RequestError as exc:
            msg = f"failed to send request to Loki: {exc}"
            self._log.warning(
                "Loki push failed",
                line_ref=batch.line_ref,
                error_type="network_error",
                error=str(exc),
            )
            raise SendError(msg, line_ref=batch.line_ref) from exc

        if not response.is_success:
            msg = f"Loki returned status {response.status_code}"
            self._log.warning(
                "Loki rejected push",
                line_ref=batch.line_ref,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise SendError(msg, line_ref=batch.line_ref, status_code=response.status_code)

        self._log.info(
            "Sent vehicle log lines to Loki",
            line_ref=batch.line_ref,
            vehicles_sent=len(batch.vehicles),
            request_bytes=len(body),
            auth_enabled=self.auth is not None,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
