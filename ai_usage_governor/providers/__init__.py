"""
Provider clients for remote text-generation endpoints.
"""

from .openai_client import OpenAICompatibleClient, classify_error

__all__ = ["OpenAICompatibleClient", "classify_error"]
