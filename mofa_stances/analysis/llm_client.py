"""OpenAI chat-completion wrapper that requests strict JSON output."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    text: str
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0


class LLMClient:
    """Single-request JSON completions; no retries."""

    def __init__(
        self,
        api_key: str,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 10_000,
        client: Optional[Any] = None,
    ):
        if client is None:
            from openai import OpenAI
            client = OpenAI(api_key=api_key)
        self._client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def complete_json(self, system_prompt: str, user_prompt: str) -> CompletionResult:
        """Send system + user messages, return the raw response text ('{}' if empty)."""
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )

        result = CompletionResult(
            text=response.choices[0].message.content or "{}",
            model=getattr(response, "model", "") or self.model,
        )
        usage = getattr(response, "usage", None)
        if usage is not None:
            result.prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
            result.completion_tokens = getattr(usage, "completion_tokens", 0) or 0
            logger.info(
                "Tokens: input=%d output=%d total=%d",
                result.prompt_tokens, result.completion_tokens,
                result.prompt_tokens + result.completion_tokens,
            )
        logger.info("Model response length: %d", len(result.text))
        return result
