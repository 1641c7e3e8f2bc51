"""Factory returning configured LLM client implementation."""

from __future__ import annotations

from config.settings import get_settings
from llm.base import BaseLLMClient
from llm.openai_client import OpenAIClient
from llm.vllm_client import VLLMClient


def build_llm_client(provider: str | None = None) -> BaseLLMClient:
    """Instantiate the requested LLM connector, defaulting to the configured one."""

    provider = provider or get_settings().llm_provider
    if provider == "self_hosted_vllm":
        return VLLMClient()
    if provider == "openai":
        return OpenAIClient()
    if provider == "deepseek":
        return OpenAIClient.for_deepseek()
    if provider == "groq":
        return OpenAIClient.for_groq()
    raise ValueError(f"Unsupported llm_provider: {provider}")
