"""
Provider client for OpenAI-compatible chat-completion endpoints.

Groq and Gemini both serve the OpenAI chat-completions API, so one client
class covers every configured vendor; only ``base_url``, model and key
differ. SDK exceptions are translated into classified ProviderErrors.
"""

import logging
import os
from typing import Optional

import openai
from openai import OpenAI

from ai_usage_governor.config.loader import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_PROVIDER_TIMEOUT,
    DEFAULT_TEMPERATURE,
    ProviderConfig,
)
from ai_usage_governor.core.errors import ProviderError, ProviderErrorKind

logger = logging.getLogger(__name__)


class OpenAICompatibleClient:
    """Stateless text-generation client for one vendor.

    Safe to share between threads; the SDK's own retries are disabled so
    that failover timing stays bounded by one call per provider.
    """

    def __init__(
        self,
        name: str,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_PROVIDER_TIMEOUT,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        credential_error: Optional[str] = None
    ):
        """Initialize provider client.

        Args:
            name: Provider identity used in logs and results (required)
            model: Model name on the vendor side (required)
            api_key: API key; the SDK falls back to OPENAI_API_KEY if omitted
            base_url: Vendor endpoint; the SDK default if omitted
            timeout: Seconds before a call counts as timed out
            credential_error: Why no usable key exists; every call then fails
                with an AUTH error so failover moves on to the next vendor

        Raises:
            ValueError: If name or model is missing/empty
        """
        if not name or not name.strip():
            raise ValueError("name is required and cannot be empty")
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.name = name
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.credential_error = credential_error
        if credential_error:
            self.client = None
            return
        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "OpenAICompatibleClient":
        """Build a client, reading the API key from the configured env var.

        An unset env var does not fail here; the client reports it as an
        AUTH error on each call instead.
        """
        api_key = None
        credential_error = None
        if config.api_key_env:
            api_key = os.getenv(config.api_key_env)
            if not api_key:
                credential_error = (
                    f"Environment variable {config.api_key_env} is not set "
                    f"for provider '{config.name}'"
                )
                logger.warning("%s", credential_error)
        return cls(
            name=config.name,
            model=config.model,
            api_key=api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            credential_error=credential_error,
        )

    def complete(self, prompt: str, timeout: Optional[float] = None) -> str:
        """Generate text for a single-turn prompt.

        Args:
            prompt: Free-form prompt text
            timeout: Per-call override of the configured timeout

        Returns:
            The generated text

        Raises:
            ProviderError: Classified failure of this call
        """
        if not prompt:
            raise ProviderError(self.name, ProviderErrorKind.INVALID_REQUEST, "prompt is empty")
        if self.credential_error:
            raise ProviderError(self.name, ProviderErrorKind.AUTH, self.credential_error)

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=timeout or self.timeout,
            )
        except openai.APIError as e:
            raise ProviderError(self.name, classify_error(e), str(e)) from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise ProviderError(
                self.name, ProviderErrorKind.MALFORMED_RESPONSE, f"unexpected response shape: {e}"
            ) from e
        if not isinstance(content, str) or not content.strip():
            raise ProviderError(self.name, ProviderErrorKind.MALFORMED_RESPONSE, "empty completion")
        return content


def classify_error(error: openai.APIError) -> ProviderErrorKind:
    """Map an SDK exception to a provider error kind.

    Only request-shape rejections (400, 422) are permanent; auth and
    not-found errors are vendor-specific and worth failing over.
    """
    if isinstance(error, openai.APITimeoutError):
        return ProviderErrorKind.TIMEOUT
    if isinstance(error, openai.APIConnectionError):
        return ProviderErrorKind.NETWORK
    if isinstance(error, (openai.BadRequestError, openai.UnprocessableEntityError)):
        return ProviderErrorKind.INVALID_REQUEST
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderErrorKind.AUTH
    if isinstance(error, openai.RateLimitError):
        return ProviderErrorKind.RATE_LIMITED
    if isinstance(error, openai.APIResponseValidationError):
        return ProviderErrorKind.MALFORMED_RESPONSE
    return ProviderErrorKind.SERVER_ERROR
