"""Google Gemini text backend for the classifier gateway."""
import logging
from typing import Optional

import google.generativeai as genai
from google.api_core.exceptions import ResourceExhausted, ServiceUnavailable

from zbrain_mcp.config import BrainConfig
from zbrain_mcp.exceptions import ClassifierError, ErrorCode, RateLimitError

logger = logging.getLogger(__name__)


class GeminiBackend:
    """Sends prompts to a Gemini model and returns the reply text."""

    def __init__(self, api_key: str, model_name: str = "gemini-2.0-flash"):
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self.model = genai.GenerativeModel(model_name)
        logger.info(f"Gemini backend initialized with model {model_name}")

    def generate(self, prompt: str) -> str:
        try:
            response = self.model.generate_content(prompt)
        except (ResourceExhausted, ServiceUnavailable) as e:
            # Retried by the gateway
            raise RateLimitError(f"Gemini rate limited: {e}", original_error=e) from e
        try:
            return response.text.strip()
        except ValueError as e:
            # Raised by the SDK when the reply was blocked or has no text part
            raise ClassifierError(
                f"Gemini returned no text: {e}",
                operation="generate",
                original_error=e,
            ) from e


class UnconfiguredBackend:
    """Stand-in used when no API key is set; every call fails clearly."""

    def generate(self, prompt: str) -> str:
        raise ClassifierError(
            "Classifier is not configured: set ZBRAIN_GEMINI_API_KEY",
            operation="generate",
            code=ErrorCode.CLASSIFIER_NOT_CONFIGURED,
        )


def create_backend(cfg: BrainConfig, api_key: Optional[str] = None):
    """Build the text backend described by the configuration."""
    api_key = api_key or cfg.gemini_api_key
    if not api_key:
        logger.warning("No Gemini API key configured; classifier calls will fail")
        return UnconfiguredBackend()
    return GeminiBackend(api_key, cfg.gemini_model)
