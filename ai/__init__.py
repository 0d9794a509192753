"""
Text classification gateway with provider-agnostic classifiers.

Supports multiple providers (OpenAI, Gemini) via factory pattern.
"""

import logging
from typing import TYPE_CHECKING

import config

if TYPE_CHECKING:
    from ai.base_classifier import TextClassifierProtocol

logger = logging.getLogger(__name__)


def create_classifier() -> "TextClassifierProtocol":
    """
    Create a text classifier based on the configured provider.

    Uses CLASSIFIER_PROVIDER from config. Supported providers: "openai"
    (default), "gemini". Unknown providers fall back to OpenAI.

    Returns:
        TextClassifierProtocol: The classifier instance
    """
    provider = config.CLASSIFIER_PROVIDER.lower()

    if provider == "gemini":
        from ai.gemini_classifier import GeminiClassifier
        logger.info("Using Gemini classification provider")
        return GeminiClassifier()

    if provider != "openai":
        logger.warning(f"Unknown classifier provider '{provider}', defaulting to OpenAI. "
                       f"Supported providers: 'openai', 'gemini'")

    from ai.openai_classifier import OpenAIClassifier
    logger.info("Using OpenAI classification provider")
    return OpenAIClassifier()
