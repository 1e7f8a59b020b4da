"""
Chat Model Factory

Picks the LangChain chat model that writes AI replies. The provider is
read off the model identifier; credentials come from the provider's usual
environment variables.

Model identifiers:
- Google Gemini: "gemini/gemini-2.0-flash" (default)
- OpenAI: "gpt-4o-mini", "gpt-4o"
- Azure OpenAI: "azure/<deployment>"
- Anthropic: "claude-sonnet-4-5-20250929"
- Ollama: "ollama/llama3.2"
"""

import logging
import os
from typing import Any, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini/gemini-2.0-flash"


class LLMConfig(BaseModel):
    """Which chat model answers AI messages, and how it is called."""

    model: str = Field(
        default=DEFAULT_MODEL,
        description="Model identifier (e.g., 'gemini/gemini-2.0-flash', 'gpt-4o-mini')",
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for replies",
    )
    max_tokens: Optional[int] = Field(
        default=None,
        description="Maximum tokens to generate in a reply",
    )
    timeout: Optional[float] = Field(
        default=30.0,
        description="Request timeout in seconds",
    )
    max_retries: int = Field(
        default=0,
        description="Provider-level retries; failures surface to the room instead",
    )

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """
        Read configuration from environment variables.

        Reads:
        - CHATBUS_LLM_MODEL
        - CHATBUS_LLM_TEMPERATURE
        - CHATBUS_LLM_MAX_TOKENS
        - CHATBUS_LLM_TIMEOUT
        - CHATBUS_LLM_MAX_RETRIES
        """
        max_tokens = os.getenv("CHATBUS_LLM_MAX_TOKENS")
        return cls(
            model=os.getenv("CHATBUS_LLM_MODEL", DEFAULT_MODEL),
            temperature=float(os.getenv("CHATBUS_LLM_TEMPERATURE", "0.7")),
            max_tokens=int(max_tokens) if max_tokens else None,
            timeout=float(os.getenv("CHATBUS_LLM_TIMEOUT", "30.0")),
            max_retries=int(os.getenv("CHATBUS_LLM_MAX_RETRIES", "0")),
        )


def _require_env(name: str, provider: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"{provider} requires {name} environment variable")
    return value


def create_llm(config: LLMConfig | None = None, **kwargs: Any) -> Any:
    """
    Create a LangChain chat model for the configured provider.

    Args:
        config: Model configuration (defaults to LLMConfig())
        **kwargs: Additional provider-specific parameters

    Returns:
        Chat model instance (ChatGoogleGenerativeAI, ChatOpenAI, ...)

    Raises:
        ImportError: If the provider package is not installed
        ValueError: If required environment variables are missing
    """
    config = config or LLMConfig()
    model = config.model

    try:
        if model.startswith("gemini/"):
            from langchain_google_genai import ChatGoogleGenerativeAI

            logger.info(f"Creating Google Gemini LLM with model: {model}")
            return ChatGoogleGenerativeAI(
                model=model.removeprefix("gemini/"),
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=config.timeout,
                max_retries=config.max_retries,
                google_api_key=_require_env("GOOGLE_API_KEY", "Google Gemini"),
                **kwargs,
            )

        if model.startswith("azure/"):
            from langchain_openai import AzureChatOpenAI

            endpoint = _require_env("AZURE_OPENAI_ENDPOINT", "Azure OpenAI")
            logger.info(f"Creating Azure OpenAI LLM with deployment: {model}, endpoint: {endpoint}")
            return AzureChatOpenAI(
                azure_deployment=model.removeprefix("azure/"),
                azure_endpoint=endpoint,
                api_key=_require_env("AZURE_OPENAI_API_KEY", "Azure OpenAI"),
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=config.timeout,
                max_retries=config.max_retries,
                **kwargs,
            )

        if model.startswith("ollama/"):
            from langchain_ollama import ChatOllama

            logger.info(f"Creating Ollama LLM with model: {model}")
            return ChatOllama(
                model=model.removeprefix("ollama/"),
                temperature=config.temperature,
                num_predict=config.max_tokens,
                **kwargs,
            )

        if model.startswith("claude"):
            from langchain_anthropic import ChatAnthropic

            logger.info(f"Creating Anthropic LLM with model: {model}")
            return ChatAnthropic(
                model=model,
                temperature=config.temperature,
                max_tokens=config.max_tokens or 1024,
                timeout=config.timeout,
                max_retries=config.max_retries,
                anthropic_api_key=_require_env("ANTHROPIC_API_KEY", "Anthropic"),
                **kwargs,
            )

        from langchain_openai import ChatOpenAI

        logger.info(f"Creating OpenAI LLM with model: {model}")
        return ChatOpenAI(
            model=model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
            max_retries=config.max_retries,
            openai_api_key=_require_env("OPENAI_API_KEY", "OpenAI"),
            **kwargs,
        )

    except ImportError as e:
        error_msg = (
            f"LangChain provider package missing for {config.model}: {e}\n"
            f"Install the matching extra:\n"
            f"  - For Google Gemini: pip install langchain-google-genai\n"
            f"  - For OpenAI / Azure OpenAI: pip install langchain-openai\n"
            f"  - For Anthropic: pip install langchain-anthropic\n"
            f"  - For Ollama: pip install langchain-ollama"
        )
        logger.error(error_msg)
        raise ImportError(error_msg) from e


def create_llm_from_env() -> Any:
    """Create a chat model using configuration from environment variables."""
    config = LLMConfig.from_env()
    logger.info(f"Creating LLM from environment: model={config.model}")
    return create_llm(config)
