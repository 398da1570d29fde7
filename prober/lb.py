"""
Load balancer distribution probe.

Sequential ``/lb`` requests, each with a cache-busting parameter, recording
which backend node answered.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from .api import NodeInfo, ProxyAPI
from .constants import DEFAULT_LB_REQUESTS
from .stats import count_nodes

logger = logging.getLogger(__name__)


@dataclass
class LBSample:
    index: int
    node: Optional[NodeInfo] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"index": self.index}
        if self.node is not None:
            result["node"] = self.node.to_dict()
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class LoadBalancerResult:
    samples: List[LBSample] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return sum(1 for s in self.samples if s.node is None)

    def distribution(self) -> Dict[str, int]:
        """Responses per node label, most frequent first."""
        return count_nodes(s.node.label if s.node else None for s in self.samples)

    @property
    def distinct_nodes(self) -> int:
        return len(self.distribution())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requests": len(self.samples),
            "errors": self.errors,
            "distinct_nodes": self.distinct_nodes,
            "distribution": self.distribution(),
            "samples": [s.to_dict() for s in self.samples],
        }


async def probe_load_balancer(
    api: ProxyAPI,
    requests: int = DEFAULT_LB_REQUESTS,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> LoadBalancerResult:
    if requests < 1:
        raise ValueError("requests must be at least 1")

    result = LoadBalancerResult()
    for i in range(requests):
        sample = LBSample(index=i)
        try:
            sample.node = await api.lb()
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            logger.debug("lb request %d failed: %r", i, exc)
            sample.error = str(exc) or type(exc).__name__
        result.samples.append(sample)
        if on_progress:
            on_progress(i + 1, requests)
    return result
