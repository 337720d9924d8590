"""
Failover routing of inference calls across configured providers.

Each provider carries a small health record. After ``failure_threshold``
consecutive failures it is taken out of rotation for ``cooldown_seconds``,
then given another chance. Calls walk the healthy providers in routing order
until one answers.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..core.config import settings
from ..errors import GatewayError
from ..models import CallOptions, GatewayResponse
from .base import InferenceGateway
from .client import ChatCompletionsGateway
from .providers import get_provider_config, parse_provider, validate_provider_config

logger = logging.getLogger(__name__)


class RoutingStrategy(str, Enum):
    FAILOVER = "failover"   # Configured order
    LATENCY = "latency"     # Fastest observed provider first


@dataclass
class ProviderHealth:
    """Rolling health of one provider."""
    name: str
    consecutive_failures: int = 0
    suspended_at: Optional[float] = None
    avg_latency_ms: float = 0.0
    request_count: int = 0
    error_count: int = 0

    def record_success(self, latency_ms: float):
        self.consecutive_failures = 0
        self.suspended_at = None
        self.request_count += 1
        # Exponential moving average
        alpha = 0.3
        if self.request_count == 1:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = alpha * latency_ms + (1 - alpha) * self.avg_latency_ms

    def record_error(self, now: float, failure_threshold: int):
        self.error_count += 1
        self.consecutive_failures += 1
        if self.consecutive_failures >= failure_threshold and self.suspended_at is None:
            self.suspended_at = now
            logger.warning(f"Provider {self.name} suspended after {self.consecutive_failures} consecutive failures")

    def is_available(self, now: float, cooldown_seconds: float) -> bool:
        if self.suspended_at is None:
            return True
        if now - self.suspended_at >= cooldown_seconds:
            self.suspended_at = None
            self.consecutive_failures = 0
            return True
        return False


class RoutedGateway:
    """Inference gateway that fails over across providers."""

    def __init__(
        self,
        gateways: Dict[str, InferenceGateway],
        strategy: RoutingStrategy = RoutingStrategy.FAILOVER,
        failure_threshold: int = 3,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateways = gateways
        self.strategy = strategy
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self.health: Dict[str, ProviderHealth] = {name: ProviderHealth(name=name) for name in gateways}

    @property
    def providers(self) -> List[str]:
        return list(self.gateways)

    def route(self) -> List[str]:
        """Healthy providers in the order they should be tried."""
        now = self._clock()
        available = [
            name for name in self.gateways
            if self.health[name].is_available(now, self.cooldown_seconds)
        ]
        if self.strategy is RoutingStrategy.LATENCY:
            # Providers without a measurement go last, in configured order
            available.sort(key=lambda name: self.health[name].avg_latency_ms or float("inf"))
        return available

    async def call(self, prompt: str, options: Optional[CallOptions] = None) -> GatewayResponse:
        """
        Send the call to the first provider that answers.

        Raises:
            GatewayError: If no provider is available or every one failed
        """
        route = self.route()
        if not route:
            raise GatewayError("No inference provider is available")

        last_error: Optional[Exception] = None
        for name in route:
            start = time.time()
            try:
                response = await self.gateways[name].call(prompt, options)
            except Exception as e:
                logger.warning(f"Provider {name} failed: {e}")
                self.health[name].record_error(self._clock(), self.failure_threshold)
                last_error = e
                continue

            self.health[name].record_success((time.time() - start) * 1000)
            return response

        raise GatewayError(f"All providers failed. Last error: {last_error}")

    def get_health_status(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            name: {
                "available": health.is_available(now, self.cooldown_seconds),
                "avg_latency_ms": round(health.avg_latency_ms, 2),
                "consecutive_failures": health.consecutive_failures,
                "error_count": health.error_count,
                "request_count": health.request_count,
            }
            for name, health in self.health.items()
        }


def build_gateway(strategy: RoutingStrategy = RoutingStrategy.FAILOVER) -> RoutedGateway:
    """Routed gateway over every configured provider, primary first."""
    names: List[str] = []
    for requested in [settings.MODEL_PROVIDER, *settings.FALLBACK_PROVIDERS]:
        provider = parse_provider(requested)
        if provider is None:
            logger.warning(f"Ignoring unknown provider '{requested}'")
            continue
        if provider.value not in names and validate_provider_config(provider.value)["valid"]:
            names.append(provider.value)

    if not names:
        logger.warning("No inference provider is configured; calls will fail")

    return RoutedGateway(
        {name: ChatCompletionsGateway(get_provider_config(name)) for name in names},
        strategy,
    )
