"""
OpenAI client shared by the semantic and vision tiers.

All requests ask for a JSON object. Authentication, permission, unknown
model and rate-limit errors are fatal for the run and are never retried;
connection and server errors are retried with backoff.
"""

import json
from typing import Any, Dict, List, Optional

from loguru import logger
from openai import (
    APIConnectionError,
    AsyncOpenAI,
    AuthenticationError,
    InternalServerError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
)

from flowpilot.config import LLMConfig
from flowpilot.errors import FatalApiFailure, TransientActionFailure
from flowpilot.utils.resilience import model_rate_limiter, retry_with_backoff

FATAL_API_ERRORS = (AuthenticationError, PermissionDeniedError, NotFoundError, RateLimitError)


class LLMClient:
    """
    Thin JSON-mode wrapper around ``AsyncOpenAI.chat.completions``.
    """

    def __init__(self, config: LLMConfig, client: Optional[AsyncOpenAI] = None):
        """
        Initialize the client.

        Args:
            config: Language model configuration
            client: Preconfigured OpenAI client (built from config when omitted)
        """
        if client is None and (not config.api_key or "YOUR_" in config.api_key):
            raise ValueError("OpenAI API key not configured")

        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.request_timeout,
        )

    async def complete_json(
        self,
        system_prompt: str,
        prompt: str,
        screenshot_base64: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a prompt (optionally with a screenshot) and return the parsed JSON answer.

        Raises:
            FatalApiFailure: Authentication, permission, model or rate-limit failure
            TransientActionFailure: Empty or non-JSON answer
        """
        if screenshot_base64:
            user_content: Any = [
                {"type": "text", "text": prompt},
                {
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:image/png;base64,{screenshot_base64}",
                        "detail": "high"
                    }
                }
            ]
        else:
            user_content = prompt

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]
        model = model or self.config.model

        try:
            content = await self._create(model, messages)
        except FATAL_API_ERRORS as e:
            logger.error(f"❌ Model API refused the request ({type(e).__name__}): {e}")
            raise FatalApiFailure(f"{type(e).__name__}: {e}") from e

        if not content or not content.strip():
            raise TransientActionFailure("No object generated: empty model response")

        try:
            return json.loads(content)
        except json.JSONDecodeError:
            raise TransientActionFailure("Model response did not match schema: invalid JSON")

    @retry_with_backoff(max_retries=2, base_delay=1.0, exceptions=(APIConnectionError, InternalServerError))
    async def _create(self, model: str, messages: List[Dict[str, Any]]) -> Optional[str]:
        await model_rate_limiter.acquire()
        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            response_format={"type": "json_object"},
        )
        if not response.choices:
            return None
        return response.choices[0].message.content
