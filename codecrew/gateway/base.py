from typing import Optional, Protocol

from ..models import CallOptions, GatewayResponse


class InferenceGateway(Protocol):
    """Anything that turns a prompt into generated text.

    Implementations must be safe to call concurrently.
    """

    async def call(self, prompt: str, options: Optional[CallOptions] = None) -> GatewayResponse:
        ...
