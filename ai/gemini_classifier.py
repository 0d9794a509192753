"""Text classification using the Google Gemini API."""

import logging
import socket
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

import config
from ai.base_classifier import BaseTextClassifier, SYSTEM_PROMPT, retry_with_backoff

logger = logging.getLogger(__name__)


class GeminiClassifier(BaseTextClassifier):
    """
    Gemini counterpart of OpenAIClassifier.

    Requests JSON output via response_mime_type and treats safety blocks
    as failures (the caller falls back to neutral values).
    """

    provider_name = "Gemini"

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None, model=None):
        """
        Initialize the Gemini classifier.

        Args:
            api_key: Gemini API key (defaults to config.GEMINI_API_KEY)
            model_name: Model to use (defaults to config.GEMINI_MODEL)
            model: Pre-built GenerativeModel (tests)
        """
        self.api_key = api_key or config.GEMINI_API_KEY
        self.model_name = model_name or config.GEMINI_MODEL
        self.request_timeout = config.CLASSIFIER_TIMEOUT

        if model is not None:
            self.model = model
        elif not self.api_key:
            logger.warning("Gemini API key not found. Classification will use fallback values.")
            self.model = None
        else:
            genai.configure(api_key=self.api_key)
            self.model = genai.GenerativeModel(
                model_name=self.model_name,
                system_instruction=SYSTEM_PROMPT,
                generation_config=genai.GenerationConfig(
                    temperature=0.3,
                    max_output_tokens=300,
                    response_mime_type="application/json",
                )
            )
            logger.info(f"Gemini classifier initialized with {self.model_name}")

    def is_available(self) -> bool:
        return self.model is not None

    def _complete(self, prompt: str) -> str:
        def make_api_call():
            return self.model.generate_content(
                prompt,
                request_options={"timeout": self.request_timeout}
            )

        response = retry_with_backoff(
            make_api_call,
            max_retries=config.CLASSIFIER_MAX_RETRIES,
            initial_delay=1.0,
            max_delay=5.0,
            retryable_exceptions=(
                ConnectionError,
                TimeoutError,
                socket.timeout,
                socket.gaierror,
                google_exceptions.ResourceExhausted,
                google_exceptions.ServiceUnavailable,
                google_exceptions.DeadlineExceeded,
                google_exceptions.InternalServerError,
            )
        )

        feedback = getattr(response, 'prompt_feedback', None)
        if feedback is not None and getattr(feedback, 'block_reason', None):
            raise ValueError(f"Gemini response blocked by safety filter: {feedback.block_reason}")

        candidates = getattr(response, 'candidates', None)
        if candidates:
            finish_reason = str(getattr(candidates[0], 'finish_reason', ''))
            if 'SAFETY' in finish_reason or 'BLOCKED' in finish_reason:
                raise ValueError(f"Gemini candidate blocked: {finish_reason}")

        # response.text raises ValueError if there is no valid candidate
        content = response.text
        logger.debug(f"Gemini raw response: {content[:200] if content else 'EMPTY'}")

        if not content or not content.strip():
            raise ValueError("Empty response from Gemini API")
        return content
