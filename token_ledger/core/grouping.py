"""
Provider classification for sources.

Assigns a group tag from keywords found in a source's name or model.
Used by the store when a source is registered, never by the engine.
"""

from typing import Dict, Sequence

OTHER_GROUP = "Other"

# Checked in declaration order; the first provider with a matching
# keyword wins.
DEFAULT_PROVIDERS: Dict[str, Sequence[str]] = {
    "OpenAI": ("openai", "gpt"),
    "Gemini": ("gemini", "google"),
    "Claude": ("claude", "anthropic"),
    "Deepseek": ("deepseek",),
    "Grok": ("grok", "xai"),
}


def classify_source(
    name: str,
    model: str = "",
    providers: Dict[str, Sequence[str]] = DEFAULT_PROVIDERS
) -> str:
    """Return the provider a source belongs to.

    Matching is a case-insensitive substring check against both the
    display name and the model.

    Args:
        name: Source display name
        model: Model identifier the source is used with
        providers: Provider name to keywords, in priority order

    Returns:
        Provider name, or "Other" if no keyword matches
    """
    haystacks = (name.lower(), (model or "").lower())
    for provider, keywords in providers.items():
        for keyword in keywords:
            keyword = keyword.lower()
            if keyword and any(keyword in text for text in haystacks):
                return provider
    return OTHER_GROUP
