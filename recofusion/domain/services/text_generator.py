# recofusion/domain/services/text_generator.py
from __future__ import annotations

import logging
from time import monotonic as _now
from typing import Optional

from openai import APIError, AsyncOpenAI

from recofusion.core.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class OpenAITextGenerator:
    """TextGenerator backed by OpenAI chat completions."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        timeout_s: float = 30,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ):
        self.client = client
        self.model = model
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        t0 = _now()
        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                timeout=self.timeout_s,
            )
        except APIError as e:
            raise UpstreamUnavailableError(f"chat completion failed: {e}") from e
        dt = _now() - t0
        u = getattr(resp, "usage", None)
        if u is not None:
            logger.info(
                f"LLM call model={getattr(resp, 'model', self.model)} duration={dt:.3f}s "
                f"tokens(prompt={u.prompt_tokens}, completion={u.completion_tokens}, total={u.total_tokens})"
            )
        else:
            logger.info(f"LLM call model={self.model} duration={dt:.3f}s (usage unavailable)")
        return resp.choices[0].message.content or ""
