"""Text classification using the OpenAI Chat Completions API."""

import logging
import socket
from typing import Optional

import openai
from openai import OpenAI

import config
from ai.base_classifier import BaseTextClassifier, SYSTEM_PROMPT, retry_with_backoff

logger = logging.getLogger(__name__)


class OpenAIClassifier(BaseTextClassifier):
    """
    Uses OpenAI chat models in JSON mode to extract approved websites,
    judge distractions and write check-in questions.

    Without an API key every call returns its fallback value.
    """

    provider_name = "OpenAI"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        """
        Initialize the classifier.

        Args:
            api_key: OpenAI API key (defaults to config.OPENAI_API_KEY)
            model: Model name (defaults to config.OPENAI_MODEL)
            client: Pre-built OpenAI client (tests)
        """
        self.api_key = api_key or config.OPENAI_API_KEY
        self.model = model or config.OPENAI_MODEL

        if client is not None:
            self.client = client
        elif not self.api_key:
            logger.warning("OpenAI API key not found. Classification will use fallback values.")
            self.client = None
        else:
            self.client = OpenAI(api_key=self.api_key)

    def is_available(self) -> bool:
        return self.client is not None

    def _complete(self, prompt: str) -> str:
        def make_api_call():
            return self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0.3,
                max_tokens=300,
                timeout=config.CLASSIFIER_TIMEOUT,
            )

        try:
            response = retry_with_backoff(
                make_api_call,
                max_retries=config.CLASSIFIER_MAX_RETRIES,
                initial_delay=1.0,
                retryable_exceptions=(
                    openai.APIConnectionError,
                    openai.APITimeoutError,
                    openai.RateLimitError,
                    openai.InternalServerError,
                    ConnectionError,
                    TimeoutError,
                    socket.timeout,
                    socket.gaierror,
                )
            )
        except openai.AuthenticationError as e:
            logger.error(f"OpenAI API authentication error - check API key: {e}")
            raise

        content = response.choices[0].message.content
        logger.debug(f"OpenAI raw response: {content[:200] if content else 'EMPTY'}")

        if not content or not content.strip():
            raise ValueError("Empty response from OpenAI API")
        return content
