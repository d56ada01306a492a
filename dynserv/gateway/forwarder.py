"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Request forwarding to a dynamic upstream.

Builds the outbound request from the inbound one, sends it through a
per-request TLS client and streams the upstream response back without
buffering the body. Forwarding metadata supplied by the caller is dropped
and the Host header is forced to the target hostname.
"""

import asyncio
import ssl
import string
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, List, Optional, Tuple
from urllib.parse import quote

import httpx
from fastapi import Request
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect
from starlette.responses import StreamingResponse

from dynserv.exceptions import CallerDisconnectedError, UpstreamFailureError
from dynserv.gateway.target import TargetSpec
from dynserv.gateway.upstream import DynamicBackend
from dynserv.logging_config import get_logger, log_request_relayed, log_upstream_failure

logger = get_logger(__name__)


# Inbound headers never copied to the upstream request (lowercase).
STRIPPED_REQUEST_HEADERS = frozenset({
    "x-forwarded-for",
    "x-forwarded-host",
    "x-forwarded-proto",
    "host",
})

# Outbound requests are never served from or stored in a cache.
CACHE_PASS = "pass"

DISCONNECT_POLL_INTERVAL = 0.1

_TARGET_SAFE_CHARS = string.punctuation


@dataclass
class OutboundRequest:
    """
    Request to be sent to the upstream.

    Attributes:
        method: HTTP method, unchanged from the inbound request
        path: Origin-form target (path plus "?query"), never empty
        headers: Ordered header list with forwarding headers removed and
            Host set to the target hostname
        body: Inbound body stream, or None for requests without a body
        cache_mode: Always "pass"
    """
    method: str
    path: str
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: Optional[AsyncIterator[bytes]] = None
    cache_mode: str = CACHE_PASS


def filter_forward_headers(
    headers: Iterable[Tuple[str, str]],
    hostname: str,
) -> List[Tuple[str, str]]:
    """
    Copy inbound headers for the upstream request.

    Repeated headers keep their order. X-Forwarded-For/-Host/-Proto and any
    Host header are dropped, then Host is set to ``hostname``.

    Args:
        headers: Inbound (name, value) pairs
        hostname: Target hostname

    Returns:
        Outbound (name, value) pairs
    """
    forwarded = [
        (name, value)
        for name, value in headers
        if name.lower() not in STRIPPED_REQUEST_HEADERS
    ]
    forwarded.append(("Host", hostname))
    return forwarded


def has_request_body(headers: Iterable[Tuple[str, str]]) -> bool:
    """True if the inbound headers announce a message body."""
    for name, value in headers:
        name = name.lower()
        if name == "transfer-encoding":
            return True
        if name == "content-length" and value.strip() not in ("", "0"):
            return True
    return False


def build_outbound_request(
    method: str,
    headers: Iterable[Tuple[str, str]],
    target: TargetSpec,
    body: Optional[AsyncIterator[bytes]] = None,
) -> OutboundRequest:
    """
    Build the upstream request for a resolved target.

    Args:
        method: Inbound HTTP method
        headers: Inbound (name, value) pairs
        target: Resolved target
        body: Inbound body stream, passed through untouched

    Returns:
        OutboundRequest
    """
    return OutboundRequest(
        method=method,
        path=target.path_and_query,
        headers=filter_forward_headers(headers, target.hostname),
        body=body,
    )


def encode_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[bytes, bytes]]:
    """Encode header pairs back to the latin-1 bytes they were read as."""
    return [(name.encode("latin-1"), value.encode("latin-1")) for name, value in headers]


async def signal_when_exhausted(body: AsyncIterator[bytes], done: asyncio.Event) -> AsyncIterator[bytes]:
    """Pass ``body`` through and set ``done`` once its last chunk was read."""
    async for chunk in body:
        yield chunk
    done.set()


def request_target_bytes(path: str) -> bytes:
    """
    Encode an origin-form target for the request line.

    Printable ASCII is kept as is (existing %XX escapes included); only
    spaces, control characters and non-ASCII text are percent-encoded.
    """
    return quote(path, safe=_TARGET_SAFE_CHARS).encode("ascii")


class RequestForwarder:
    """
    Sends outbound requests through dynamic backends.

    The forwarder holds no per-request state. Every call opens its own client,
    and that client is closed once the relayed body is finished or the call
    fails. No retries are made.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        disconnect_poll_interval: float = DISCONNECT_POLL_INTERVAL,
    ):
        """
        Initialize RequestForwarder.

        Args:
            transport: Optional httpx transport used instead of the network
            disconnect_poll_interval: Seconds between caller disconnect checks
                while waiting for upstream headers
        """
        self.transport = transport
        self.disconnect_poll_interval = disconnect_poll_interval

    async def forward(
        self,
        outbound: OutboundRequest,
        backend: DynamicBackend,
        target_url: str,
        inbound: Optional[Request] = None,
    ) -> StreamingResponse:
        """
        Forward a request and stream the upstream response back.

        Args:
            outbound: Request to send
            backend: Dynamic backend for the target
            target_url: Caller-supplied target URL (for diagnostics)
            inbound: Inbound request, watched for caller disconnects

        Returns:
            StreamingResponse relaying upstream status, headers and body

        Raises:
            UpstreamFailureError: If the backend, the request or the fetch fails
            CallerDisconnectedError: If the caller left before upstream headers
        """
        try:
            client = backend.open_client(self.transport)
        except (ssl.SSLError, ValueError, OSError) as e:
            raise self._failure(e, backend, target_url, UpstreamFailureError.CREATE_BACKEND)

        content = outbound.body
        body_sent: Optional[asyncio.Event] = None
        if inbound is not None and content is not None:
            body_sent = asyncio.Event()
            content = signal_when_exhausted(content, body_sent)

        # httpx.Request directly: client default headers are not merged in
        try:
            request = httpx.Request(
                outbound.method,
                f"{backend.base_url}{outbound.path}",
                headers=encode_headers(outbound.headers),
                content=content,
                extensions={
                    "target": request_target_bytes(outbound.path),
                    "timeout": backend.timeout().as_dict(),
                },
            )
        except (httpx.InvalidURL, ValueError, TypeError) as e:
            await client.aclose()
            raise self._failure(e, backend, target_url, UpstreamFailureError.CREATE_REQUEST)

        logger.debug(
            "forwarding_request",
            backend=backend.name,
            method=outbound.method,
            path=outbound.path,
            headers=len(outbound.headers),
            cache_mode=outbound.cache_mode,
        )

        start_time = time.time()
        try:
            upstream = await self._send(client, request, inbound, body_sent)
        except (httpx.HTTPError, OSError) as e:
            await client.aclose()
            raise self._failure(e, backend, target_url, UpstreamFailureError.FETCH)
        except (CallerDisconnectedError, ClientDisconnect):
            await client.aclose()
            logger.info("caller_disconnected", backend=backend.name, stage="awaiting_upstream")
            raise CallerDisconnectedError("Caller disconnected before upstream responded")
        except BaseException:
            await client.aclose()
            raise

        log_request_relayed(
            logger,
            backend=backend.name,
            status_code=upstream.status_code,
            duration_ms=(time.time() - start_time) * 1000,
            method=outbound.method,
        )

        response = StreamingResponse(
            self._relay_body(upstream, client, backend, target_url),
            status_code=upstream.status_code,
            background=BackgroundTask(self._close, upstream, client),
        )
        # Relay every upstream header unmodified, repeated ones included.
        response.raw_headers = [(name.lower(), value) for name, value in upstream.headers.raw]
        return response

    async def _send(
        self,
        client: httpx.AsyncClient,
        request: httpx.Request,
        inbound: Optional[Request],
        body_sent: Optional[asyncio.Event] = None,
    ) -> httpx.Response:
        """
        Send the request, cancelling it if the caller disconnects first.

        With a request body, the caller is only polled once ``body_sent`` is
        set; until then the inbound receive channel belongs to the body.
        """
        if inbound is None:
            return await client.send(request, stream=True)

        send_task = asyncio.ensure_future(client.send(request, stream=True))
        watch_task = asyncio.ensure_future(self._wait_for_disconnect(inbound, body_sent))
        try:
            done, _ = await asyncio.wait(
                {send_task, watch_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            send_task.cancel()
            watch_task.cancel()
            raise

        if send_task in done:
            watch_task.cancel()
            return send_task.result()

        send_task.cancel()
        await asyncio.wait({send_task})
        if not send_task.cancelled() and send_task.exception() is None:
            await send_task.result().aclose()
        raise CallerDisconnectedError("Caller disconnected before upstream responded")

    async def _wait_for_disconnect(self, inbound: Request, body_sent: Optional[asyncio.Event] = None) -> None:
        if body_sent is not None:
            await body_sent.wait()
        while not await inbound.is_disconnected():
            await asyncio.sleep(self.disconnect_poll_interval)

    async def _relay_body(
        self,
        upstream: httpx.Response,
        client: httpx.AsyncClient,
        backend: DynamicBackend,
        target_url: str,
    ) -> AsyncIterator[bytes]:
        """Stream the raw upstream body; content encoding is left untouched."""
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            # Status and headers are already relayed; abort the stream.
            log_upstream_failure(
                logger,
                target=target_url,
                error=str(e) or type(e).__name__,
                backend=backend.name,
                stage="transfer",
            )
            raise
        finally:
            await self._close(upstream, client)

    @staticmethod
    async def _close(upstream: httpx.Response, client: httpx.AsyncClient) -> None:
        await upstream.aclose()
        await client.aclose()

    @staticmethod
    def _failure(
        error: BaseException,
        backend: DynamicBackend,
        target_url: str,
        stage: str,
    ) -> UpstreamFailureError:
        details = str(error) or type(error).__name__
        log_upstream_failure(
            logger,
            target=target_url,
            error=details,
            backend=backend.name,
            stage=stage,
        )
        return UpstreamFailureError(details, target=target_url, stage=stage)
