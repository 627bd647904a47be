"""LiteLLM client wrapper with retry, backoff, and API key validation.

All LLM + embedding calls route through this module.
LiteLLM's built-in retry is used (num_retries=3, exponential backoff).
"""

from __future__ import annotations

import os

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 2048,
    temperature: float = 0.0,
    num_retries: int = 3,
) -> str:
    """Call litellm.completion() with retry/backoff. Returns content string.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
    )
    return response.choices[0].message.content or ""


def embed_many(model: str, texts: list[str], num_retries: int = 3) -> list[list | None]:
    """Embed a batch in one litellm.embedding() call.

    Returns one entry per returned item, placed by the item's ``index`` when
    the provider reports it. Entries the provider left out are None.
    """
    response = litellm.embedding(model=model, input=texts, num_retries=num_retries)
    vectors: list[list | None] = [None] * len(texts)
    for position, item in enumerate(response.data or []):
        index = _field(item, "index")
        slot = index if isinstance(index, int) and 0 <= index < len(texts) else position
        if slot < len(texts):
            vectors[slot] = _field(item, "embedding")
    return vectors


def _field(item: object, name: str) -> object:
    try:
        return item[name]  # type: ignore[index]
    except (KeyError, TypeError):
        return getattr(item, name, None)
