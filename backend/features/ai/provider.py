"""
Completion provider protocol.

AI features talk to the model through this interface so the vendor (Groq)
can be swapped or mocked without touching metering logic.
"""
import logging
import os
from typing import Optional, Protocol

import groq

from backend.core.config import settings
from backend.core.errors import ProviderError


logger = logging.getLogger("inkwell")


class CompletionProvider(Protocol):
    def complete(self, prompt: str, max_tokens: int = 300, temperature: float = 0.7) -> str:
        """
        Return the model's text for a prompt.

        Raises:
            ProviderError: If the provider fails or returns nothing
        """
        ...


class GroqCompletionProvider:
    """Groq chat-completions implementation of CompletionProvider."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, system_prompt: Optional[str] = None):
        self.api_key = api_key or os.getenv("GROQ_API_KEY") or settings.GROQ_API_KEY
        self.model = model or settings.GROQ_MODEL
        self.system_prompt = system_prompt
        if not self.api_key:
            raise ProviderError("GROQ_API_KEY not configured")
        self._client = groq.Groq(api_key=self.api_key)

    def complete(self, prompt: str, max_tokens: int = 300, temperature: float = 0.7) -> str:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = self._client.chat.completions.create(
                messages=messages,
                model=self.model,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except groq.GroqError as e:
            logger.error(f"Groq completion failed: {e.__class__.__name__}")
            raise ProviderError(f"Completion provider failed: {e.__class__.__name__}")

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError("Completion provider returned no content")
        return content
