"""Text completion backend using an OpenAI-compatible chat API."""

import logging

import openai
from openai import OpenAI

from riskloop.errors import ProviderUnavailable
from riskloop.interfaces import TextCompletionProvider

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are a disciplined crypto perpetual-futures trading analyst. "
    "You respond with a single JSON object and nothing else."
)


class OpenAICompletionProvider(TextCompletionProvider):
    """Chat completion provider for DeepSeek or any OpenAI-compatible endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.deepseek.com",
        model: str = "deepseek-chat",
        timeout: float = 30.0,
    ):
        """
        Initialize the completion provider.

        Args:
            api_key: API key for the endpoint
            base_url: OpenAI-compatible base URL (default: DeepSeek)
            model: Chat model name
            timeout: Request timeout in seconds
        """
        self.model = model
        self.client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    def complete(self, prompt: str, temperature: float = 0.7, max_tokens: int = 800) -> str:
        """
        Request a completion for the prompt.

        Args:
            prompt: User prompt
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Returns:
            Raw response text (may be empty)

        Raises:
            ProviderUnavailable: On connection, timeout, rate limit or API errors
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APIError as e:
            logger.warning(f"LLM request failed ({type(e).__name__}): {e}")
            raise ProviderUnavailable("llm", str(e)) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
