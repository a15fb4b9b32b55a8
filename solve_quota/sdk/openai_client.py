"""
Quota-gated OpenAI client wrapper.

Charges one unit of the caller's daily allowance before each chat
completion, so free-tier identities cannot spend tokens past their cap.
"""

import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..core.identity import Identity
from ..core.ledger import UseResult
from ..factory import QuotaService

logger = logging.getLogger(__name__)


class QuotaExhausted(Exception):
    """Raised when the daily allowance for a feature is used up."""
    def __init__(self, message: str, result: UseResult):
        super().__init__(message)
        self.result = result


class QuotaGatedOpenAI:
    """OpenAI client wrapper that consumes quota before each request.

    The unit is consumed first and the request made second. If the ledger
    cannot be reached the error propagates and no request is made.
    """

    def __init__(self, model: str, feature: str, service: QuotaService, client: Optional[OpenAI] = None):
        """Initialize the gated client.

        Args:
            model: OpenAI model name (required)
            feature: Metered feature the requests are charged to (required)
            service: Wired quota service
            client: OpenAI client, created from the environment if omitted

        Raises:
            ValueError: If model or feature is missing/empty, or the
                feature is not metered
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not feature or not feature.strip():
            raise ValueError("feature is required and cannot be empty")
        service.config.get_feature_config(feature)

        self.model = model
        self.feature = feature
        self.service = service
        self.client = client or OpenAI()

    def chat(
        self,
        identity: Identity,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create a chat completion on behalf of an identity.

        Args:
            identity: Identity the request is charged to
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty
            QuotaExhausted: If the identity has no allowance left today
            DependencyUnavailable: If the quota stores cannot be reached
            OpenAI API errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        result = self.service.cache.use(identity, self.feature)
        if not result.success:
            raise QuotaExhausted(
                f"Daily {self.feature} limit of {result.cap} reached for {identity.kind.value} identity",
                result
            )

        logger.debug(f"{self.feature} unit granted to {identity.key}, remaining={result.remaining}")

        return self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )
