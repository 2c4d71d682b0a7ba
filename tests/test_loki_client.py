"""Tests for the Loki push client."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from bods_loki.errors import ErrorKind
from bods_loki.loki import (
    USER_AGENT,
    LokiClient,
    SendError,
    build_push_request,
    encode_log_line,
)
from bods_loki.models import ParsedBatch, VehicleRecord

FIXED_NS = 1705314600000000000


def _batch(count: int = 2) -> ParsedBatch:
    vehicles = [
        VehicleRecord(
            vehicle_id=f"FBUS-{i}",
            line_ref="49x",
            direction="inbound",
            longitude=-2.5,
            latitude=51.4,
            destination_name="Lyde Green - Science Park",
        )
        for i in range(count)
    ]
    return ParsedBatch(line_ref="49x", timestamp="2024-01-15T10:30:00.000Z", vehicles=vehicles)


def _mock_client(response: httpx.Response | None = None, error: Exception | None = None) -> AsyncMock:
    instance = AsyncMock(spec=httpx.AsyncClient)
    if error is not None:
        instance.post = AsyncMock(side_effect=error)
    else:
        instance.post = AsyncMock(return_value=response)
    return instance


class TestBuildPushRequest:
    """Tests for the push body layout."""

    def test_single_stream_with_labels(self) -> None:
        body = build_push_request(_batch(), clock_ns=lambda: FIXED_NS)

        assert len(body["streams"]) == 1
        stream = body["streams"][0]
        assert stream["stream"] == {"job": "bods2loki", "service": "bus-tracking", "line_ref": "49x"}

    def test_one_value_per_vehicle(self) -> None:
        body = build_push_request(_batch(3), clock_ns=lambda: FIXED_NS)
        values = body["streams"][0]["values"]

        assert len(values) == 3
        assert values[0][0] == str(FIXED_NS)
        line = json.loads(values[2][1])
        assert line["vehicle_ref"] == "FBUS-2"
        assert line["timestamp"] == "2024-01-15T10:30:00.000Z"
        assert line["line_ref"] == "49x"

    def test_empty_batch_has_no_values(self) -> None:
        body = build_push_request(_batch(0), clock_ns=lambda: FIXED_NS)

        assert body["streams"][0]["values"] == []

    def test_encode_log_line_is_compact_and_keeps_unicode(self) -> None:
        assert encode_log_line({"a": 1, "b": "→"}) == '{"a":1,"b":"→"}'


class TestLokiClient:
    """Unit tests for LokiClient."""

    def test_push_url_strips_trailing_slash(self) -> None:
        client = LokiClient("http://localhost:3100/", client=_mock_client())

        assert client.push_url == "http://localhost:3100/loki/api/v1/push"

    def test_auth_requires_both_credentials(self) -> None:
        assert LokiClient("http://l", "user", "", client=_mock_client()).auth is None
        assert LokiClient("http://l", "", "pass", client=_mock_client()).auth is None
        assert isinstance(LokiClient("http://l", "user", "pass", client=_mock_client()).auth, httpx.BasicAuth)

    @pytest.mark.asyncio
    async def test_send_success(self) -> None:
        http = _mock_client(httpx.Response(204))
        client = LokiClient("http://localhost:3100", client=http, clock_ns=lambda: FIXED_NS)

        await client.send(_batch())

        http.post.assert_awaited_once()
        args, kwargs = http.post.call_args
        assert args[0] == "http://localhost:3100/loki/api/v1/push"
        assert kwargs["headers"] == {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        assert kwargs["auth"] is None
        payload = json.loads(kwargs["content"])
        assert len(payload["streams"][0]["values"]) == 2

    @pytest.mark.asyncio
    async def test_send_with_basic_auth(self) -> None:
        http = _mock_client(httpx.Response(200))
        client = LokiClient("https://logs.example.net", "123456", "token", client=http)

        await client.send(_batch())

        assert isinstance(http.post.call_args.kwargs["auth"], httpx.BasicAuth)

    @pytest.mark.asyncio
    async def test_non_2xx_raises_send_error(self) -> None:
        http = _mock_client(httpx.Response(400, text="entry out of order"))
        client = LokiClient("http://localhost:3100", client=http)

        with pytest.raises(SendError, match="Loki returned status 400") as exc_info:
            await client.send(_batch())

        assert exc_info.value.status_code == 400
        assert exc_info.value.kind is ErrorKind.SEND_FAILED
        assert exc_info.value.line_ref == "49x"

    @pytest.mark.asyncio
    async def test_network_error_raises_send_error(self) -> None:
        error = httpx.ConnectError(
            "Connection refused",
            request=httpx.Request("POST", "http://localhost:3100/loki/api/v1/push"),
        )
        client = LokiClient("http://localhost:3100", client=_mock_client(error=error))

        with pytest.raises(SendError, match="failed to send request to Loki"):
            await client.send(_batch())
