"""Proxy probe library -- boundary search, classification, and connection monitoring."""

from .api import ByteEcho, EchoInfo, NodeInfo, ProxyAPI
from .bandwidth import BandwidthEstimator, BandwidthRegistry
from .boundary import BoundaryProbe, ProbeOutcome, ProbeResult, probe_boundary
from .charset import CharResult, probe_charset
from .classify import (
    CLIENT_REJECTED,
    Classification,
    Verdict,
    classify_rejection,
    header_size_advice,
)
from .connection import (
    ConnectionMachine,
    ConnectionRegistry,
    ConnectionSession,
    SSEDecoder,
    SSETransport,
    WebSocketTransport,
)
from .history import ConnectionEntry, ConnectionHistory, TransportType
from .lb import LoadBalancerResult, probe_load_balancer
from .size_tests import Dimension, SizeTester

__all__ = [
    "BandwidthEstimator",
    "BandwidthRegistry",
    "BoundaryProbe",
    "ByteEcho",
    "CLIENT_REJECTED",
    "CharResult",
    "Classification",
    "ConnectionEntry",
    "ConnectionHistory",
    "ConnectionMachine",
    "ConnectionRegistry",
    "ConnectionSession",
    "Dimension",
    "EchoInfo",
    "LoadBalancerResult",
    "NodeInfo",
    "ProbeOutcome",
    "ProbeResult",
    "ProxyAPI",
    "SSEDecoder",
    "SSETransport",
    "SizeTester",
    "TransportType",
    "Verdict",
    "WebSocketTransport",
    "classify_rejection",
    "header_size_advice",
    "probe_boundary",
    "probe_charset",
    "probe_load_balancer",
]
