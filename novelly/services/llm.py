"""
Client for the Perplexity chat-completions API.

`send` never raises: network, auth and rate-limit problems come back as
LLMResponse(success=False, error=...). The HTTP call itself is blocking
(requests), so it runs in a worker thread.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel

from novelly.core.config import settings

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE = "You are a helpful book recommendation assistant."

# USD per million tokens: (prompt, completion)
MODEL_PRICING: Dict[str, tuple[float, float]] = {
    "sonar": (1.0, 1.0),
    "sonar-pro": (3.0, 15.0),
    "sonar-reasoning": (1.0, 5.0),
    "sonar-reasoning-pro": (2.0, 8.0),
}


class LLMResponse(BaseModel):
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


def calculate_cost(model: str, usage: Optional[Dict[str, Any]]) -> float:
    """Dollar cost of one call, from the token usage the API reports. Unknown models are priced as sonar-pro."""
    if not usage:
        return 0.0
    prompt_price, completion_price = MODEL_PRICING.get(model, MODEL_PRICING["sonar-pro"])
    prompt_tokens = usage.get("prompt_tokens") or 0
    completion_tokens = usage.get("completion_tokens") or 0
    return (prompt_tokens * prompt_price + completion_tokens * completion_price) / 1_000_000


def _error_message(resp: Optional[requests.Response], exc: Exception) -> str:
    """Prefer the API's own error message over the transport exception text."""
    if resp is not None:
        try:
            body = resp.json()
            message = (body.get("error") or {}).get("message")
            if message:
                return message
        except (ValueError, AttributeError):
            pass
    return str(exc)


class PerplexityClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.PERPLEXITY_API_KEY
        self.model = model or settings.PERPLEXITY_MODEL
        self.api_url = api_url or settings.PERPLEXITY_API_URL
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS

    async def send(self, prompt: str, model: Optional[str] = None, api_key: Optional[str] = None) -> LLMResponse:
        key = api_key or self.api_key
        if not key:
            return LLMResponse(success=False, error="Perplexity API key not configured")
        return await asyncio.to_thread(self._post, prompt, model or self.model, key)

    def _post(self, prompt: str, model: str, api_key: str) -> LLMResponse:
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": prompt},
            ],
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        resp = None
        try:
            resp = requests.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except Exception as e:
            message = _error_message(resp, e)
            logger.warning("Perplexity API error (model=%s): %s", model, message)
            return LLMResponse(success=False, error=message)

        return LLMResponse(success=True, content=content, usage=data.get("usage"))
