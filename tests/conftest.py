"""
Pytest configuration and shared fixtures for Dynserv tests.
"""

import logging
import tempfile
from pathlib import Path
from typing import AsyncIterator, Callable, Generator, List, Optional, Tuple

import httpx
import pytest

from dynserv.gateway.admission import AdmissionController
from dynserv.gateway.forwarder import RequestForwarder
from dynserv.gateway.keystore import ConfigStoreRegistry, KeyLookup


class OriginStream(httpx.AsyncByteStream):
    """Response body that has not been read yet, as a live connection delivers it."""

    def __init__(self, body: bytes = b""):
        self.body = body

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self.body:
            yield self.body


def origin_response(
    status_code: int = 200,
    headers: Optional[List[Tuple[str, str]]] = None,
    body: bytes = b"",
) -> httpx.Response:
    """Build an upstream response whose body is still streaming."""
    return httpx.Response(status_code, headers=headers, stream=OriginStream(body))


class RecordingUpstream:
    """
    httpx handler standing in for origin servers.

    Records every request it receives and answers with ``response_factory``
    (default: 200 "hello from origin", empty for HEAD).
    """

    def __init__(self, response_factory: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: List[httpx.Request] = []
        self.response_factory = response_factory or (
            lambda request: origin_response(
                200,
                headers=[("content-type", "text/plain")],
                body=b"" if request.method == "HEAD" else b"hello from origin",
            )
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response_factory(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test files.

    Yields:
        Path to temporary directory that is cleaned up after test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def upstream() -> RecordingUpstream:
    """Create a recording upstream answering 200."""
    return RecordingUpstream()


@pytest.fixture
def key_lookup() -> KeyLookup:
    """Key lookup without any config store, so the fallback key applies."""
    return KeyLookup(ConfigStoreRegistry())


@pytest.fixture
def admission(key_lookup, upstream) -> AdmissionController:
    """Admission controller forwarding to the recording upstream."""
    return AdmissionController(key_lookup, RequestForwarder(transport=upstream.transport()))


@pytest.fixture
def write_config(temp_dir) -> Callable[..., Path]:
    """
    Return a helper writing YAML configuration into the temp directory.

    The helper takes the YAML text and an optional file name and returns
    the path of the written file.
    """
    def _write(content: str, name: str = "config.yaml") -> Path:
        config_path = temp_dir / name
        config_path.write_text(content)
        return config_path

    return _write


@pytest.fixture(name="origin_response")
def origin_response_fixture() -> Callable[..., httpx.Response]:
    """Return the builder for streamed upstream responses."""
    return origin_response


@pytest.fixture
def make_upstream() -> Callable[..., RecordingUpstream]:
    """Return the RecordingUpstream factory for custom origin responses."""
    return RecordingUpstream


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Drop handlers installed by setup_logging so they do not outlive a test."""
    yield
    logging.getLogger().handlers.clear()
