"""
SDK for Token Ledger.

Provides API clients that record usage automatically.
"""

from .openai_client import TrackedOpenAI

__all__ = ["TrackedOpenAI"]
