"""
Unit tests for request forwarding.
"""

import asyncio
import ssl
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from dynserv.exceptions import CallerDisconnectedError, UpstreamFailureError
from dynserv.gateway.forwarder import (
    CACHE_PASS,
    STRIPPED_REQUEST_HEADERS,
    RequestForwarder,
    build_outbound_request,
    filter_forward_headers,
    has_request_body,
    request_target_bytes,
)
from dynserv.gateway.target import resolve_target
from dynserv.gateway.upstream import DynamicBackend, derive_upstream_identity, register_dynamic_backend


TARGET_URL = "https://example.com/path?x=1"


def make_backend(hostname="example.com", port=443):
    return register_dynamic_backend(derive_upstream_identity(hostname, port), hostname)


async def read_body(response):
    return b"".join([chunk async for chunk in response.body_iterator])


class TestHeaderFiltering:
    """Test outbound header construction."""

    def test_strips_forwarding_headers(self):
        """Test that X-Forwarded-* and Host are removed case-insensitively."""
        headers = [
            ("Accept", "*/*"),
            ("X-Forwarded-For", "1.2.3.4"),
            ("x-forwarded-host", "gateway.example"),
            ("X-FORWARDED-PROTO", "http"),
            ("host", "gateway.example"),
        ]

        assert filter_forward_headers(headers, "example.com") == [
            ("Accept", "*/*"),
            ("Host", "example.com"),
        ]

    def test_keeps_repeated_headers_in_order(self):
        """Test that duplicates and order survive."""
        headers = [("cookie", "a=1"), ("x-custom", "one"), ("cookie", "b=2")]

        assert filter_forward_headers(headers, "example.com") == [
            ("cookie", "a=1"),
            ("x-custom", "one"),
            ("cookie", "b=2"),
            ("Host", "example.com"),
        ]

    def test_other_forwarding_headers_kept(self):
        """Test that only the listed forwarding headers are dropped."""
        headers = [("Forwarded", "for=1.2.3.4"), ("X-Real-IP", "1.2.3.4")]

        assert len(filter_forward_headers(headers, "example.com")) == 3

    def test_stripped_set(self):
        """Test the stripped header names."""
        assert STRIPPED_REQUEST_HEADERS == {"x-forwarded-for", "x-forwarded-host", "x-forwarded-proto", "host"}


class TestRequestBody:
    """Test body detection."""

    @pytest.mark.parametrize("headers,expected", [
        ([], False),
        ([("content-length", "0")], False),
        ([("Content-Length", "12")], True),
        ([("transfer-encoding", "chunked")], True),
        ([("content-type", "application/json")], False),
    ])
    def test_has_request_body(self, headers, expected):
        """Test that Content-Length/Transfer-Encoding announce a body."""
        assert has_request_body(headers) is expected


class TestBuildOutboundRequest:
    """Test OutboundRequest construction."""

    def test_build_outbound_request(self):
        """Test method, path, headers and cache mode."""
        target = resolve_target(TARGET_URL)

        outbound = build_outbound_request("PATCH", [("X-Forwarded-For", "1.2.3.4"), ("Accept", "*/*")], target)

        assert outbound.method == "PATCH"
        assert outbound.path == "/path?x=1"
        assert outbound.headers == [("Accept", "*/*"), ("Host", "example.com")]
        assert outbound.body is None
        assert outbound.cache_mode == CACHE_PASS

    def test_empty_path_sent_as_root(self):
        """Test that an empty target path is sent as '/'."""
        outbound = build_outbound_request("GET", [], resolve_target("https://example.com"))

        assert outbound.path == "/"

    @pytest.mark.parametrize("path,expected", [
        ("/path?x=1", b"/path?x=1"),
        ("/a%2Fb?q=%20", b"/a%2Fb?q=%20"),
        ("/a b", b"/a%20b"),
        ("/café", b"/caf%C3%A9"),
        ("/~user/[x]", b"/~user/[x]"),
    ])
    def test_request_target_bytes(self, path, expected):
        """Test that printable ASCII is sent verbatim."""
        assert request_target_bytes(path) == expected


class TestRequestForwarder:
    """Test RequestForwarder against a mock upstream."""

    @pytest.mark.asyncio
    async def test_forward_relays_status_headers_and_body(self, upstream):
        """Test a successful GET."""
        forwarder = RequestForwarder(transport=upstream.transport())
        outbound = build_outbound_request(
            "GET",
            [("Accept", "*/*"), ("X-Forwarded-For", "1.2.3.4"), ("Host", "gateway.example")],
            resolve_target(TARGET_URL),
        )

        response = await forwarder.forward(outbound, make_backend(), TARGET_URL)

        assert response.status_code == 200
        assert (b"content-type", b"text/plain") in response.raw_headers
        assert await read_body(response) == b"hello from origin"

        sent = upstream.requests[0]
        assert sent.method == "GET"
        assert sent.url.host == "example.com"
        assert sent.url.raw_path == b"/path?x=1"
        assert sent.extensions["target"] == b"/path?x=1"
        assert sent.headers["host"] == "example.com"
        assert sent.headers["accept"] == "*/*"
        assert "x-forwarded-for" not in sent.headers

    @pytest.mark.asyncio
    async def test_forward_applies_backend_timeouts(self, upstream):
        """Test that the policy timeouts travel with the request."""
        forwarder = RequestForwarder(transport=upstream.transport())
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        response = await forwarder.forward(outbound, make_backend(), TARGET_URL)
        await read_body(response)

        timeout = upstream.requests[0].extensions["timeout"]
        assert timeout["connect"] == 10.0
        assert timeout["read"] == 30.0

    @pytest.mark.asyncio
    async def test_forward_explicit_port(self, upstream):
        """Test that a non-default port reaches the upstream URL."""
        forwarder = RequestForwarder(transport=upstream.transport())
        target = resolve_target("https://example.com:8443/")
        outbound = build_outbound_request("GET", [], target)

        response = await forwarder.forward(outbound, make_backend(port=8443), "https://example.com:8443/")
        await read_body(response)

        assert upstream.requests[0].url.port == 8443

    @pytest.mark.asyncio
    async def test_forward_relays_repeated_headers(self, origin_response):
        """Test that repeated upstream headers are all relayed."""
        def handler(request):
            return origin_response(
                200,
                headers=[("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"), ("X-Origin", "yes")],
                body=b"ok",
            )

        forwarder = RequestForwarder(transport=httpx.MockTransport(handler))
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        response = await forwarder.forward(outbound, make_backend(), TARGET_URL)
        await read_body(response)

        cookies = [value for name, value in response.raw_headers if name == b"set-cookie"]
        assert cookies == [b"a=1", b"b=2"]
        assert (b"x-origin", b"yes") in response.raw_headers

    @pytest.mark.asyncio
    async def test_forward_relays_error_status(self, origin_response):
        """Test that upstream error statuses are relayed, not rewritten."""
        forwarder = RequestForwarder(transport=httpx.MockTransport(lambda request: origin_response(503, body=b"down")))
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        response = await forwarder.forward(outbound, make_backend(), TARGET_URL)

        assert response.status_code == 503
        assert await read_body(response) == b"down"

    @pytest.mark.asyncio
    async def test_forward_does_not_follow_redirects(self, origin_response):
        """Test that 3xx responses are handed back to the caller."""
        calls = []

        def handler(request):
            calls.append(request)
            return origin_response(302, headers=[("Location", "https://other.example/")])

        forwarder = RequestForwarder(transport=httpx.MockTransport(handler))
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        response = await forwarder.forward(outbound, make_backend(), TARGET_URL)
        await read_body(response)

        assert response.status_code == 302
        assert (b"location", b"https://other.example/") in response.raw_headers
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_forward_streams_request_body(self, upstream):
        """Test that a streamed request body reaches the upstream unchanged."""
        async def body():
            yield b"hello "
            yield b"world"

        forwarder = RequestForwarder(transport=upstream.transport())
        outbound = build_outbound_request(
            "POST",
            [("Content-Type", "text/plain")],
            resolve_target(TARGET_URL),
            body(),
        )

        response = await forwarder.forward(outbound, make_backend(), TARGET_URL)
        await read_body(response)

        sent = upstream.requests[0]
        assert sent.method == "POST"
        assert sent.content == b"hello world"
        assert sent.headers["content-type"] == "text/plain"

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        """Test that a connection error becomes an UpstreamFailure."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        forwarder = RequestForwarder(transport=httpx.MockTransport(handler))
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        with pytest.raises(UpstreamFailureError) as exc_info:
            await forwarder.forward(outbound, make_backend(), TARGET_URL)

        error = exc_info.value
        assert error.status_code == 502
        assert error.to_dict() == {
            "error": "Failed to fetch from origin",
            "details": "connection refused",
            "target": TARGET_URL,
        }

    @pytest.mark.asyncio
    async def test_timeout_failure(self):
        """Test that an upstream timeout becomes an UpstreamFailure."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        forwarder = RequestForwarder(transport=httpx.MockTransport(handler))
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        with pytest.raises(UpstreamFailureError) as exc_info:
            await forwarder.forward(outbound, make_backend(), TARGET_URL)

        assert exc_info.value.stage == UpstreamFailureError.FETCH

    @pytest.mark.asyncio
    async def test_tls_failure(self):
        """Test that a TLS handshake failure becomes an UpstreamFailure."""
        def handler(request):
            raise ssl.SSLCertVerificationError("certificate verify failed")

        forwarder = RequestForwarder(transport=httpx.MockTransport(handler))
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        with pytest.raises(UpstreamFailureError) as exc_info:
            await forwarder.forward(outbound, make_backend(), TARGET_URL)

        assert exc_info.value.stage == UpstreamFailureError.FETCH
        assert "certificate verify failed" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_backend_creation_failure(self, upstream):
        """Test that a client that cannot be built fails at the backend stage."""
        forwarder = RequestForwarder(transport=upstream.transport())
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        with patch.object(DynamicBackend, "ssl_context", side_effect=ssl.SSLError("bad context")):
            with pytest.raises(UpstreamFailureError) as exc_info:
                await forwarder.forward(outbound, make_backend(), TARGET_URL)

        assert exc_info.value.to_dict()["error"] == "Failed to create backend"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_request_creation_failure(self, upstream):
        """Test that a header that cannot be encoded fails at the request stage."""
        forwarder = RequestForwarder(transport=upstream.transport())
        outbound = build_outbound_request("GET", [("X-Snow", "☃")], resolve_target(TARGET_URL))

        with pytest.raises(UpstreamFailureError) as exc_info:
            await forwarder.forward(outbound, make_backend(), TARGET_URL)

        assert exc_info.value.to_dict()["error"] == "Failed to create origin request"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_transfer_failure_aborts_stream(self):
        """Test that a failure after headers aborts the relayed body."""
        class FailingStream(httpx.AsyncByteStream):
            async def __aiter__(self):
                yield b"partial"
                raise httpx.ReadError("connection reset")

        forwarder = RequestForwarder(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, stream=FailingStream()))
        )
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        response = await forwarder.forward(outbound, make_backend(), TARGET_URL)
        assert response.status_code == 200

        chunks = []
        with pytest.raises(httpx.ReadError):
            async for chunk in response.body_iterator:
                chunks.append(chunk)

        assert chunks == [b"partial"]

    @pytest.mark.asyncio
    async def test_caller_disconnect_cancels_upstream(self):
        """Test that a caller leaving before headers cancels the fetch."""
        async def slow_handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        inbound = MagicMock()
        inbound.is_disconnected = AsyncMock(return_value=True)

        forwarder = RequestForwarder(transport=httpx.MockTransport(slow_handler), disconnect_poll_interval=0.01)
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        with pytest.raises(CallerDisconnectedError):
            await asyncio.wait_for(forwarder.forward(outbound, make_backend(), TARGET_URL, inbound=inbound), 2)

    @pytest.mark.asyncio
    async def test_connected_caller_gets_response(self, upstream):
        """Test that the disconnect watcher does not interfere when the caller stays."""
        inbound = MagicMock()
        inbound.is_disconnected = AsyncMock(return_value=False)

        forwarder = RequestForwarder(transport=upstream.transport(), disconnect_poll_interval=0.01)
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        response = await forwarder.forward(outbound, make_backend(), TARGET_URL, inbound=inbound)

        assert response.status_code == 200
        assert await read_body(response) == b"hello from origin"

    @pytest.mark.asyncio
    async def test_no_retry_on_failure(self):
        """Test that a failed fetch is attempted exactly once."""
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        forwarder = RequestForwarder(transport=httpx.MockTransport(handler))
        outbound = build_outbound_request("GET", [], resolve_target(TARGET_URL))

        with pytest.raises(UpstreamFailureError):
            await forwarder.forward(outbound, make_backend(), TARGET_URL)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_caller_disconnect_with_body_cancels_upstream(self, origin_response):
        """Test that a caller sending a body is watched once the body is sent."""
        inbound = MagicMock()
        inbound.is_disconnected = AsyncMock(return_value=True)
        polls_while_streaming = []
        received = []

        async def body():
            yield b"part one, "
            polls_while_streaming.append(inbound.is_disconnected.await_count)
            yield b"part two"
            polls_while_streaming.append(inbound.is_disconnected.await_count)

        async def slow_handler(request):
            received.append(request.content)
            await asyncio.sleep(5)
            return origin_response(200)

        forwarder = RequestForwarder(transport=httpx.MockTransport(slow_handler), disconnect_poll_interval=0.01)
        outbound = build_outbound_request("POST", [("Content-Type", "text/plain")], resolve_target(TARGET_URL), body())

        with pytest.raises(CallerDisconnectedError):
            await asyncio.wait_for(forwarder.forward(outbound, make_backend(), TARGET_URL, inbound=inbound), 2)

        assert received == [b"part one, part two"]
        assert polls_while_streaming == [0, 0]
        inbound.is_disconnected.assert_awaited()

    @pytest.mark.asyncio
    async def test_connected_caller_with_body_gets_response(self, upstream):
        """Test that a caller sending a body still gets the relayed response."""
        async def body():
            yield b"payload"

        inbound = MagicMock()
        inbound.is_disconnected = AsyncMock(return_value=False)

        forwarder = RequestForwarder(transport=upstream.transport(), disconnect_poll_interval=0.01)
        outbound = build_outbound_request("PUT", [], resolve_target(TARGET_URL), body())

        response = await forwarder.forward(outbound, make_backend(), TARGET_URL, inbound=inbound)

        assert response.status_code == 200
        assert await read_body(response) == b"hello from origin"
        assert upstream.requests[0].content == b"payload"


class TestInternationalizedHosts:
    """Test forwarding to IDNA-encoded hostnames."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw_url", ["https://bücher.example/", "https://例え.jp/"])
    async def test_forward_uses_a_label(self, upstream, raw_url):
        """Test that Host and the connection target carry the A-label."""
        target = resolve_target(raw_url)
        forwarder = RequestForwarder(transport=upstream.transport())
        outbound = build_outbound_request("GET", [("Accept", "*/*")], target)

        response = await forwarder.forward(outbound, make_backend(target.hostname), raw_url)

        assert response.status_code == 200
        assert await read_body(response) == b"hello from origin"

        sent = upstream.requests[0]
        assert sent.headers["host"] == target.hostname
        assert sent.headers["host"].startswith("xn--")
        assert sent.url.raw_host == target.hostname.encode("ascii")
