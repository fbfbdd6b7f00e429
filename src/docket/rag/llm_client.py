"""LiteLLM client wrapper for chat completions and embeddings.

Every provider call in docket routes through this module. Calls are made
once: retries default to zero because the batch jobs are re-runnable and
retry at the job level. API key presence is validated before any job
starts talking to a provider.
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
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
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
    max_tokens: int = 16,
    temperature: float = 0.0,
    num_retries: int = 0,
) -> str:
    """Call litellm.completion() and return the first choice's content.

    Args:
        model: LiteLLM model string (provider/model format).
        messages: OpenAI-style role-tagged message list.
        max_tokens: Maximum output tokens.
        temperature: Sampling temperature (0 = as deterministic as the provider allows).
        num_retries: LiteLLM retries on transient errors.

    Returns:
        The text content of the first choice ("" if the provider sent none).
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
    )
    if not response.choices:
        return ""
    return response.choices[0].message.content or ""


def embed_batch(model: str, texts: list[str], num_retries: int = 0) -> list[list[float] | None]:
    """Embed *texts* in one litellm.embedding() call.

    The result is aligned with *texts*: position ``i`` holds the vector for
    ``texts[i]``, or None when the provider left that input out.

    Raises:
        litellm.exceptions.APIError: On provider failure; the whole batch fails.
    """
    if not texts:
        return []
    response = litellm.embedding(model=model, input=texts, num_retries=num_retries)

    vectors: list[list[float] | None] = [None] * len(texts)
    for position, item in enumerate(response.data):
        index = item.get("index", position)
        if index is None or not 0 <= index < len(texts):
            continue
        vectors[index] = list(item["embedding"])
    return vectors
