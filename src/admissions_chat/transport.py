from admissions_chat.streaming import ChatTransport


def create_transport(
    provider_name: str,
    api_key: str,
    *,
    model: str,
    max_tokens: int,
    temperature: float,
    system_prompt: str,
    web_search: bool = False,
) -> ChatTransport:
    """Factory: create a ChatTransport by provider name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from admissions_chat.providers.anthropic_transport import AnthropicTransport
        return AnthropicTransport(
            api_key,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system_prompt=system_prompt,
            web_search=web_search,
        )
    if name == "openai":
        from admissions_chat.providers.openai_transport import OpenAITransport
        return OpenAITransport(
            api_key,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system_prompt=system_prompt,
        )
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")
