"""Registry mapping configured provider kinds to backend factories."""

from __future__ import annotations

from typing import Callable

import httpx

from codecompass.config import AppConfig, ProviderKind
from codecompass.embedding.base import EmbeddingProvider, GenerationProvider
from codecompass.embedding.encoder import EmbeddingConfig, LocalEmbeddingProvider
from codecompass.embedding.gemini import GeminiEmbeddingProvider, GeminiGenerationProvider
from codecompass.embedding.ollama import OllamaEmbeddingProvider, OllamaGenerationProvider
from codecompass.embedding.openrouter import OpenRouterGenerationProvider

EmbeddingFactory = Callable[[AppConfig, "httpx.Client | None"], EmbeddingProvider]
GenerationFactory = Callable[[AppConfig, "httpx.Client | None"], GenerationProvider]


def _http_options(config: AppConfig, client: httpx.Client | None) -> dict:
    return {
        "timeout": config.request_timeout,
        "probe_timeout": config.probe_timeout,
        "retry_policy": config.retry_policy(),
        "client": client,
    }


EMBEDDING_PROVIDERS: dict[ProviderKind, EmbeddingFactory] = {
    ProviderKind.OLLAMA: lambda config, client: OllamaEmbeddingProvider(
        config.ollama_embedding_model, config.ollama_url, **_http_options(config, client)
    ),
    ProviderKind.GEMINI: lambda config, client: GeminiEmbeddingProvider(
        config.gemini_api_key,
        config.gemini_embedding_model,
        base_url=config.gemini_url,
        **_http_options(config, client),
    ),
    ProviderKind.LOCAL: lambda config, client: LocalEmbeddingProvider(
        EmbeddingConfig(model_name=config.local_model)
    ),
}

GENERATION_PROVIDERS: dict[ProviderKind, GenerationFactory] = {
    ProviderKind.OLLAMA: lambda config, client: OllamaGenerationProvider(
        config.ollama_generation_model, config.ollama_url, **_http_options(config, client)
    ),
    ProviderKind.GEMINI: lambda config, client: GeminiGenerationProvider(
        config.gemini_api_key,
        config.gemini_generation_model,
        base_url=config.gemini_url,
        **_http_options(config, client),
    ),
    ProviderKind.OPENROUTER: lambda config, client: OpenRouterGenerationProvider(
        config.openrouter_api_key,
        config.openrouter_model,
        config.openrouter_url,
        **_http_options(config, client),
    ),
}


def build_embedding_provider(
    config: AppConfig, client: httpx.Client | None = None
) -> EmbeddingProvider:
    try:
        factory = EMBEDDING_PROVIDERS[config.embedding_provider]
    except KeyError:
        raise ValueError(f"No embedding backend for provider '{config.embedding_provider.value}'") from None
    return factory(config, client)


def build_generation_provider(
    config: AppConfig, client: httpx.Client | None = None
) -> GenerationProvider:
    try:
        factory = GENERATION_PROVIDERS[config.generation_provider]
    except KeyError:
        raise ValueError(f"No generation backend for provider '{config.generation_provider.value}'") from None
    return factory(config, client)
