"""
SDK for Solve Quota.

Provides quota-gated access to LLM inference for calling code.
"""

from .openai_client import QuotaExhausted, QuotaGatedOpenAI

__all__ = ["QuotaExhausted", "QuotaGatedOpenAI"]
