"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Admission controller for the gateway.

Runs the per-request pipeline strictly in order and stops at the first
failure:

1. AuthCheck   - ``key`` query parameter must equal the configured key (403)
2. ParamCheck  - ``url`` query parameter must be present (400)
3. Resolve     - target must be an absolute https URL (400)
4. Classify    - target host must not be private/internal (403)
5. Forward     - derive the upstream identity and relay the request (502)

Every request ends in exactly one response: the relayed upstream response or
a JSON error body. Nothing is shared between requests.
"""

import hmac
from typing import List, Optional, Tuple

from fastapi import Request, Response

from dynserv.exceptions import (
    CallerDisconnectedError,
    ForbiddenHostError,
    MissingParameterError,
    ProxyError,
    UnauthorizedError,
    UpstreamFailureError,
)
from dynserv.gateway.forwarder import (
    RequestForwarder,
    build_outbound_request,
    has_request_body,
)
from dynserv.gateway.keystore import KeyLookup
from dynserv.gateway.target import TargetSpec, resolve_target
from dynserv.gateway.upstream import derive_upstream_identity, register_dynamic_backend
from dynserv.logging_config import get_logger, log_admission_denied, log_ssrf_block

logger = get_logger(__name__)


KEY_PARAM = "key"
URL_PARAM = "url"

# Status recorded when the caller left before a response could be sent.
CLIENT_CLOSED_REQUEST = 499


def _first_query_param(request: Request, name: str) -> Optional[str]:
    values = request.query_params.getlist(name)
    return values[0] if values else None


def _inbound_headers(request: Request) -> List[Tuple[str, str]]:
    return [
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in request.headers.raw
    ]


class AdmissionController:
    """
    Authenticates, validates and forwards gateway requests.

    The key lookup is injected so the valid key source (config store or
    fallback) is decided by the caller, not by ambient state.
    """

    def __init__(self, key_lookup: KeyLookup, forwarder: Optional[RequestForwarder] = None):
        """
        Initialize AdmissionController.

        Args:
            key_lookup: Source of the currently valid API key
            forwarder: Request forwarder (default: network-backed forwarder)
        """
        self.key_lookup = key_lookup
        self.forwarder = forwarder or RequestForwarder()

    def authenticate(self, api_key: Optional[str]) -> None:
        """
        Check the caller's API key.

        Raises:
            UnauthorizedError: If the key is missing, empty or does not match
        """
        valid_key = self.key_lookup.get_valid_key()
        if not api_key or valid_key is None:
            raise UnauthorizedError()
        if not hmac.compare_digest(api_key.encode("utf-8"), valid_key.encode("utf-8")):
            raise UnauthorizedError()

    @staticmethod
    def require_target_url(raw_url: Optional[str]) -> str:
        """
        Check that a target URL was supplied.

        Raises:
            MissingParameterError: If ``url`` is missing or empty
        """
        if not raw_url:
            raise MissingParameterError()
        return raw_url

    @staticmethod
    def admit_target(raw_url: str) -> TargetSpec:
        """
        Resolve the target URL and refuse private/internal hosts.

        Classification happens before any network action.

        Raises:
            InvalidURLError: If the URL cannot be parsed
            UnsupportedSchemeError: If the URL is not https
            ForbiddenHostError: If the host is private or internal
        """
        target = resolve_target(raw_url)
        verdict = target.classify()
        if verdict.blocked:
            log_ssrf_block(logger, hostname=target.hostname, rule=verdict.rule, target=raw_url)
            raise ForbiddenHostError(target.hostname, verdict.rule)
        return target

    async def handle(self, request: Request) -> Response:
        """
        Run the admission pipeline for one inbound request.

        Args:
            request: Inbound request

        Returns:
            Relayed upstream response, or a JSON error response
        """
        raw_url: Optional[str] = None
        try:
            self.authenticate(_first_query_param(request, KEY_PARAM))
            raw_url = self.require_target_url(_first_query_param(request, URL_PARAM))
            target = self.admit_target(raw_url)
        except ProxyError as e:
            log_admission_denied(
                logger,
                kind=e.kind,
                status_code=e.status_code,
                reason=str(e),
                method=request.method,
                target=raw_url,
            )
            return e.to_response()

        identity = derive_upstream_identity(target.hostname, target.port)
        headers = _inbound_headers(request)
        body = request.stream() if has_request_body(headers) else None

        try:
            backend = register_dynamic_backend(identity, target.hostname)
            outbound = build_outbound_request(request.method, headers, target, body)
            return await self.forwarder.forward(outbound, backend, raw_url, inbound=request)
        except UpstreamFailureError as e:
            return e.to_response()
        except CallerDisconnectedError:
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        except Exception as e:
            logger.error(
                "unexpected_forwarding_error",
                backend=identity.name,
                target=raw_url,
                error=str(e),
                exc_info=True,
            )
            return UpstreamFailureError(str(e) or type(e).__name__, target=raw_url).to_response()
