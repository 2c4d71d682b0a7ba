"""BODS SIRI-VM datafeed client."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import httpx

from bods_loki import __version__
from bods_loki.config import BODS_BASE_URL_TEMPLATE, DEFAULT_HTTP_TIMEOUT_SEC
from bods_loki.errors import ErrorKind, PipelineError
from bods_loki.logging import get_logger
from bods_loki.models import FeedPayload

if TYPE_CHECKING:
    import structlog

logger = get_logger(__name__)

USER_AGENT = f"bods-loki/{__version__}"
_ERROR_BODY_LIMIT = 500


class FetchError(PipelineError):
    """Raised when the BODS API call fails or returns a non-200 status."""

    kind = ErrorKind.FETCH_FAILED

    def __init__(
        self,
        message: str,
        *,
        line_ref: str | None = None,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message, line_ref=line_ref)
        self.status_code = status_code
        self.body = body


class BodsClient:
    """Fetches raw SIRI-VM XML for one line at a time.

    The underlying ``httpx.AsyncClient`` is shared across concurrent fetches;
    pass one in to reuse a connection pool, or let the client own its own.
    """

    def __init__(
        self,
        api_key: str,
        dataset_id: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_sec: float = DEFAULT_HTTP_TIMEOUT_SEC,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.api_key = api_key
        self.dataset_id = dataset_id
        self.base_url = BODS_BASE_URL_TEMPLATE.format(dataset_id=dataset_id)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_sec),
            follow_redirects=True,
        )
        self._log = log or logger

    async def fetch(self, line_ref: str) -> FeedPayload:
        """Download the current SIRI-VM document for a line.

        Raises:
            FetchError: On network failure or any non-200 response.
        """
        started = time.perf_counter()
        try:
            response = await self._client.get(
                self.base_url,
                params={"api_key": self.api_key, "lineRef": line_ref},
                headers={"User-Agent": USER_AGENT, "Accept": "*/*"},
            )
        except httpx.RequestError as exc:
            msg = f"request to BODS failed for line {line_ref}: {exc}"
            self._log.warning(
                "BODS request failed",
                line_ref=line_ref,
                error_type="network_error",
                error=str(exc),
            )
            raise FetchError(msg, line_ref=line_ref) from exc

        if response.status_code != httpx.codes.OK:
            body = response.text[:_ERROR_BODY_LIMIT]
            msg = f"API returned status {response.status_code}: {body}"
            self._log.warning(
                "BODS returned error status",
                line_ref=line_ref,
                status_code=response.status_code,
                body=body,
            )
            raise FetchError(msg, line_ref=line_ref, status_code=response.status_code, body=body)

        data = response.content
        self._log.info(
            "BODS feed downloaded",
            line_ref=line_ref,
            status_code=response.status_code,
            size_bytes=len(data),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return FeedPayload(
            line_ref=line_ref,
            xml_data=data,
            fetched_at=datetime.now(timezone.utc),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
