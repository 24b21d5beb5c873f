from __future__ import annotations

import httpx
import pytest

from astria_flow.errors import TransportFailure
from astria_flow.transport import AstriaTransport


@pytest.mark.anyio
async def test_request_given_success_when_sent_then_auth_header_is_attached_and_json_returned(settings, fake_api) -> None:
    # Given
    fake_api.add("GET", "/tunes/1", {"id": 1})
    transport = AstriaTransport(settings, transport=fake_api.transport)

    # When
    body = await transport.request("get", "/tunes/1")

    # Then
    assert body == {"id": 1}
    request = fake_api.requests[0]
    assert request.headers["Authorization"] == "Bearer test-key"
    assert request.headers["Accept"] == "application/json"
    assert str(request.url) == "https://astria.test/tunes/1"
    assert request.extensions["timeout"]["read"] == 5.0


@pytest.mark.anyio
async def test_request_given_error_status_when_sent_then_failure_carries_status_and_payload_without_retry(
    settings, fake_api
) -> None:
    # Given
    fake_api.add("POST", "/tunes", httpx.Response(500, json={"message": "server down"}))
    transport = AstriaTransport(settings, transport=fake_api.transport)

    # When
    with pytest.raises(TransportFailure) as excinfo:
        await transport.request("POST", "/tunes", json={"tune": {}})

    # Then
    failure = excinfo.value
    assert failure.status_code == 500
    assert failure.payload == {"message": "server down"}
    assert failure.timed_out is False
    assert fake_api.count("POST") == 1


@pytest.mark.anyio
async def test_request_given_text_body_when_failed_then_payload_is_plain_text(settings, fake_api) -> None:
    # Given
    fake_api.add("GET", "/tunes", httpx.Response(502, text="Bad Gateway"))
    transport = AstriaTransport(settings, transport=fake_api.transport)

    # When
    with pytest.raises(TransportFailure) as excinfo:
        await transport.request("GET", "/tunes")

    # Then
    assert excinfo.value.payload == "Bad Gateway"


@pytest.mark.anyio
async def test_request_given_empty_body_when_sent_then_none_is_returned(settings, fake_api) -> None:
    # Given
    fake_api.add("GET", "/tunes/9", httpx.Response(200, content=b""))
    transport = AstriaTransport(settings, transport=fake_api.transport)

    # When
    body = await transport.request("GET", "/tunes/9")

    # Then
    assert body is None


@pytest.mark.anyio
async def test_request_given_read_timeout_when_sent_then_failure_is_marked_timed_out(settings, fake_api) -> None:
    # Given
    def _timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    fake_api.add("GET", "/tunes/1", _timeout)
    transport = AstriaTransport(settings, transport=fake_api.transport)

    # When
    with pytest.raises(TransportFailure) as excinfo:
        await transport.request("GET", "/tunes/1")

    # Then
    assert excinfo.value.timed_out is True
    assert excinfo.value.status_code is None
    assert excinfo.value.connection_failed is False


@pytest.mark.anyio
async def test_request_given_connect_error_when_sent_then_failure_is_marked_connection_failed(
    settings, fake_api
) -> None:
    # Given
    def _refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fake_api.add("GET", "/tunes", _refused)
    transport = AstriaTransport(settings, transport=fake_api.transport)

    # When
    with pytest.raises(TransportFailure) as excinfo:
        await transport.request("GET", "/tunes")

    # Then
    assert excinfo.value.connection_failed is True
    assert excinfo.value.timed_out is False
