"""Client for the external AI assistant endpoint (``POST /chat``)."""

import logging

import httpx

from chatgenius.core.exceptions import AssistantError

logger = logging.getLogger(__name__)


class AssistantClient:
    """Asks the assistant about a channel member's message history."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        """Initialize the client.

        Args:
            base_url: Endpoint root; ``/chat`` is appended.
            timeout: Overall request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout, connect=min(timeout, 10.0))

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def ask(self, query: str, target_user_id: str) -> str:
        """Send a question about ``target_user_id`` and return the answer.

        Raises:
            AssistantError: If the endpoint is unconfigured, unreachable, or
                answers with a non-2xx status or an unexpected body.
        """
        if not self.is_configured:
            raise AssistantError("AI assistant endpoint is not configured")

        url = f"{self.base_url}/chat"
        logger.info(f"Asking assistant about user {target_user_id}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    json={"query": query, "targetUserId": target_user_id},
                )
        except httpx.HTTPError as e:
            logger.error(f"Assistant request to {url} failed: {e}")
            raise AssistantError() from e

        if not response.is_success:
            logger.error(f"Assistant returned {response.status_code}: {response.text[:200]}")
            raise AssistantError(status_code=response.status_code)

        try:
            answer = response.json()["response"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Assistant returned an unexpected body: {e}")
            raise AssistantError(status_code=response.status_code) from e

        return str(answer)
