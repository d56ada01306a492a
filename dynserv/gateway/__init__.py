"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Gateway module for Dynserv.

This module provides the request admission and dynamic-upstream pipeline:
- API key authentication against a named config store
- Target URL resolution (https only)
- SSRF host classification
- Dynamic TLS backend derivation
- Header-filtered, streamed request forwarding
"""

from dynserv.gateway.admission import AdmissionController
from dynserv.gateway.classifier import HostVerdict, classify_host, is_private_host
from dynserv.gateway.forwarder import (
    OutboundRequest,
    RequestForwarder,
    build_outbound_request,
    filter_forward_headers,
)
from dynserv.gateway.keystore import ConfigStore, ConfigStoreRegistry, KeyLookup
from dynserv.gateway.proxy import GatewayProxy
from dynserv.gateway.target import TargetSpec, resolve_target
from dynserv.gateway.upstream import (
    UPSTREAM_POLICY,
    DynamicBackend,
    UpstreamIdentity,
    UpstreamPolicy,
    derive_upstream_identity,
    register_dynamic_backend,
)

__all__ = [
    "AdmissionController",
    "HostVerdict",
    "classify_host",
    "is_private_host",
    "OutboundRequest",
    "RequestForwarder",
    "build_outbound_request",
    "filter_forward_headers",
    "ConfigStore",
    "ConfigStoreRegistry",
    "KeyLookup",
    "GatewayProxy",
    "TargetSpec",
    "resolve_target",
    "UPSTREAM_POLICY",
    "DynamicBackend",
    "UpstreamIdentity",
    "UpstreamPolicy",
    "derive_upstream_identity",
    "register_dynamic_backend",
]
