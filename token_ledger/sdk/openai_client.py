"""
Tracked OpenAI client wrapper.

Records token usage against a ledger source without modifying behavior.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..storage.db import DEFAULT_DB_PATH
from ..storage.models import UsageEvent
from ..storage.repository import UsageRepository


class TrackedOpenAI:
    """OpenAI client wrapper that logs usage to the ledger.

    Each successful chat completion adds its total token count to the
    source's row for today. All failures are loud so usage is never
    silently lost.
    """

    def __init__(
        self,
        source_id: str,
        model: str,
        db_path: Optional[str] = None,
        api_key: Optional[str] = None
    ):
        """Initialize tracked OpenAI client.

        Args:
            source_id: Ledger source the usage is recorded against (required)
            model: OpenAI model name (required)
            db_path: Database file path (defaults to "token_ledger.db")
            api_key: Key passed to the OpenAI client; falls back to the
                OPENAI_API_KEY environment variable

        Raises:
            ValueError: If source_id or model is missing/empty
        """
        if not source_id or not source_id.strip():
            raise ValueError("source_id is required and cannot be empty")
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.source_id = source_id
        self.model = model
        self.db_path = db_path or DEFAULT_DB_PATH
        self.repository = UsageRepository(self.db_path)
        self.client = OpenAI(api_key=api_key) if api_key else OpenAI()
        self.last_event: Optional[UsageEvent] = None

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion and record its token usage.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty, the response has no usage,
                or the source is not registered
            OpenAI API errors: Propagated without modification
            Database errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )

        usage = response.usage
        if not usage:
            raise ValueError("OpenAI response missing usage information")

        self.last_event = self.repository.record_usage(
            self.source_id,
            date.today(),
            usage.total_tokens
        )
        return response
