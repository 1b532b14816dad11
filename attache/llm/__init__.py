"""LLM abstraction layer - provider-agnostic interface for completion streams.

Re-exports the public API so consumers can write:
    from attache.llm import CompletionAdapter, TextDelta, ToolCallRequest, create_adapter
"""

from config import ProviderConfig

from .base import (
    CompletionAdapter,
    FunctionSchema,
    SamplingParams,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCallRequest,
)


def create_adapter(provider: ProviderConfig) -> CompletionAdapter:
    """Build the adapter flavor for a provider section.

    Raises:
        ValueError: if ``provider.type`` is not a known flavor.
    """
    if provider.type == "claude":
        from .anthropic_adapter import AnthropicAdapter
        return AnthropicAdapter(provider.api_key, provider.model, base_url=provider.api_url or None)
    if provider.type == "openai":
        from .openai_adapter import OpenAIAdapter
        return OpenAIAdapter(provider.api_key, provider.model, base_url=provider.api_url or None)
    if provider.type == "custom-openai":
        from .openai_adapter import OpenAIAdapter
        if not provider.api_url:
            raise ValueError(f"Provider {provider.name!r} of type custom-openai needs an api_url")
        return OpenAIAdapter(
            provider.api_key, provider.model,
            base_url=provider.api_url, provider_type="custom-openai",
        )
    raise ValueError(f"Unknown provider type: {provider.type!r}")
