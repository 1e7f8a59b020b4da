"""
LLM Integration for chatbus

Chat model factory and the generation service used for AI replies.
"""

from .factory import create_llm, create_llm_from_env, LLMConfig
from .generation import (
    ConversationTurn,
    GenerationError,
    GenerationService,
    LangChainGenerationService,
    extract_status_code,
)

__all__ = [
    "create_llm",
    "create_llm_from_env",
    "LLMConfig",
    "ConversationTurn",
    "GenerationError",
    "GenerationService",
    "LangChainGenerationService",
    "extract_status_code",
]
