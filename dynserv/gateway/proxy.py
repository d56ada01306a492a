"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Gateway Proxy server for Dynserv.

Exposes the admission pipeline over HTTP:
- Any method on any path (other than /health) is admitted and relayed
- GET /health answers liveness/readiness probes
- Optional inbound TLS via uvicorn
"""

from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.responses import StreamingResponse

from dynserv._version import __version__
from dynserv.config.settings import DynservConfig, get_default_config
from dynserv.gateway.admission import AdmissionController
from dynserv.gateway.keystore import KeyLookup
from dynserv.logging_config import get_logger, set_correlation_id

logger = get_logger(__name__)


PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"]
REQUEST_ID_HEADER = "X-Request-ID"


class GatewayProxy:
    """
    Gateway Proxy server.

    Wraps an AdmissionController in a FastAPI application. Holds no
    per-request state.
    """

    def __init__(
        self,
        config: Optional[DynservConfig] = None,
        admission: Optional[AdmissionController] = None,
    ):
        """
        Initialize Gateway Proxy.

        Args:
            config: DynservConfig with server settings (default: built-in defaults)
            admission: Optional AdmissionController; built from config when omitted
        """
        self.config = config or get_default_config()
        self.admission = admission or AdmissionController(KeyLookup.from_config(self.config))

        self.app = FastAPI(
            title="Dynserv Gateway",
            description="Dynamic-upstream reverse proxy",
            version=__version__,
        )

        self._register_routes()

        logger.info(
            f"Initialized GatewayProxy with config_store={self.config.auth.config_store}, "
            f"inbound_tls={self.config.server.tls.enabled}"
        )

    def _register_routes(self):
        """Register FastAPI routes."""

        @self.app.get("/health")
        async def health_check():
            """Liveness probe; the gateway has no dependencies to check."""
            return JSONResponse(
                status_code=200,
                content={
                    "status": "healthy",
                    "service": "dynserv-gateway",
                    "version": __version__,
                },
            )

        @self.app.api_route("/{path:path}", methods=PROXY_METHODS)
        async def handle_request(request: Request, path: str):
            """Admit and relay a request. The inbound path is not used."""
            return await self._handle_request(request)

    async def _handle_request(self, request: Request) -> Response:
        """
        Handle one inbound request.

        Args:
            request: FastAPI Request object

        Returns:
            Relayed upstream response or JSON error response
        """
        correlation_id = set_correlation_id(request.headers.get(REQUEST_ID_HEADER))
        response = await self.admission.handle(request)
        if not isinstance(response, StreamingResponse):
            response.headers[REQUEST_ID_HEADER] = correlation_id
        return response

    async def start(self):
        """
        Start the gateway proxy server.

        Configures inbound TLS if certificates are provided and serves the
        FastAPI app with uvicorn.
        """
        import uvicorn

        host, port = self.config.server.listen_address.rsplit(":", 1)
        port = int(port)
        tls = self.config.server.tls

        if tls.enabled:
            logger.info(f"Starting Gateway Proxy with TLS on {host}:{port}")
        else:
            logger.warning(
                f"Starting Gateway Proxy without TLS on {host}:{port} "
                "(not recommended for production)"
            )

        config = uvicorn.Config(
            app=self.app,
            host=host.strip("[]"),
            port=port,
            ssl_certfile=tls.cert_file if tls.enabled else None,
            ssl_keyfile=tls.key_file if tls.enabled else None,
            # uvicorn logs propagate to the handlers set up by setup_logging
            log_config=None,
            log_level=self.config.logging.level.lower(),
        )

        server = uvicorn.Server(config)
        await server.serve()
