import httpx
import json
import logging
from typing import Any, Dict, List, Optional
from config.settings import (
    OPENROUTER_API_KEY,
    OPENROUTER_BASE_URL,
    OPENROUTER_REFERER,
    OPENROUTER_TIMEOUT,
    APP_NAME
)
from utils.error_handler import CompletionAPIError

logger = logging.getLogger(__name__)


class OpenRouterClient:
    """OpenRouter chat-completions client (Async)"""

    def __init__(
        self,
        api_key: Optional[str] = OPENROUTER_API_KEY,
        base_url: str = OPENROUTER_BASE_URL,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": OPENROUTER_REFERER,
            "X-Title": APP_NAME
        }
        self.client = client or httpx.AsyncClient(timeout=OPENROUTER_TIMEOUT)

    async def chat_completion(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict[str, str]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Request a chat completion (async)

        Args:
            model: OpenRouter model slug
            messages: List of {role, content} messages
            temperature: Sampling temperature
            max_tokens: Output token ceiling
            response_format: Optional response format, e.g. {"type": "json_object"}

        Returns:
            dict: Parsed completion payload, or None if the body is not valid JSON

        Raises:
            CompletionAPIError: On a non-2xx status or a network failure. Calls are
                not retried here; retrying is left to the caller.
        """
        url = f"{self.base_url}/chat/completions"

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if response_format is not None:
            payload["response_format"] = response_format

        try:
            response = await self.client.post(url, headers=self.headers, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ OpenRouter {e.response.status_code} for model {model}")
            raise CompletionAPIError(
                message=f"OpenRouter {e.response.status_code}: {e.response.text[:500]}",
                status_code=e.response.status_code,
                details={"model": model, "response": e.response.text[:500]}
            )
        except httpx.RequestError as e:
            logger.error(f"❌ Error calling OpenRouter for model {model}: {e}")
            raise CompletionAPIError(
                message="Failed to reach the completion API",
                details={"model": model, "error": str(e)}
            )

        try:
            return response.json()
        except json.JSONDecodeError:
            logger.warning(f"⚠️ OpenRouter returned a non-JSON body for model {model}")
            return None

    async def close(self):
        await self.client.aclose()
