"""HTTP client for OpenAI-compatible chat completion APIs."""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from ..models import CallOptions, Complexity, GatewayResponse
from .providers import ProviderConfig


logger = logging.getLogger(__name__)


TEMPERATURE = {
    Complexity.light: 0.7,
    Complexity.medium: 0.4,
    Complexity.heavy: 0.2,
}


def estimate_cost(config: ProviderConfig, usage: Dict[str, Any]) -> float:
    """Spend in USD for a completion's token usage."""
    prompt_tokens = usage.get("prompt_tokens") or 0
    completion_tokens = usage.get("completion_tokens") or 0
    return (
        prompt_tokens / 1000 * config.input_cost_per_1k
        + completion_tokens / 1000 * config.output_cost_per_1k
    )


class ChatCompletionsGateway:
    """Inference gateway for a single OpenAI-compatible provider."""

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        self.config = config
        self.timeout = timeout
        self._client = client

    @property
    def name(self) -> str:
        return self.config.provider.value

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        url = f"{(self.config.base_url or '').rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        if self._client is not None:
            return await self._client.post(url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=payload, headers=headers)

    async def call(self, prompt: str, options: Optional[CallOptions] = None) -> GatewayResponse:
        """
        Send a single-message chat completion.

        Args:
            prompt: Full prompt text
            options: Complexity/priority hints, model override and caller id

        Returns:
            GatewayResponse with the generated text and its cost

        Raises:
            httpx.HTTPError: On transport or HTTP status errors
            ValueError: If the response has no completion
        """
        options = options or CallOptions()
        model = options.model or self.config.model_name
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": TEMPERATURE[options.complexity],
        }
        if options.user_id:
            payload["user"] = options.user_id

        start = time.time()
        response = await self._post(payload)
        response.raise_for_status()
        data = response.json()

        choices = data.get("choices") or []
        if not choices:
            raise ValueError(f"{self.name} returned no choices")
        content = (choices[0].get("message") or {}).get("content") or ""

        duration_ms = (time.time() - start) * 1000
        cost = estimate_cost(self.config, data.get("usage") or {})
        logger.debug(f"{self.name}/{model} completed in {duration_ms:.0f}ms (${cost:.5f})")

        return GatewayResponse(
            result=content,
            model=data.get("model") or model,
            cost=cost,
            tier=self.name,
            duration=duration_ms,
        )
