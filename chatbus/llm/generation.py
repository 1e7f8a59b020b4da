"""
Generation Service

Request/response contract for the external text model behind AI replies.

The service receives the whole conversation as a sequence of turns and
returns the reply text. Failures are raised as GenerationError carrying the
upstream HTTP status when the provider exposes one, so callers can map
status codes to user-facing messages without knowing the provider.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from chatbus.llm.factory import LLMConfig, create_llm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationTurn:
    """One turn of conversation context. ``model`` marks the AI's own turns."""
    role: Literal["user", "model"]
    text: str


class GenerationError(Exception):
    """The generation service failed. ``status_code`` is None when unknown."""
    def __init__(self, status_code: int | None, message: str = ""):
        self.status_code = status_code
        super().__init__(message or f"Generation failed (status={status_code})")


def extract_status_code(exc: BaseException) -> int | None:
    """
    Find the HTTP status carried by a provider exception.

    Provider SDKs disagree on where they keep it: ``status_code`` (OpenAI,
    Anthropic), ``code`` (Google API core), or ``response.status_code``
    (httpx-based clients). Wrapped exceptions are followed through
    ``__cause__``.
    """
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        for attr in ("status_code", "code", "http_status"):
            value = getattr(current, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
        response = getattr(current, "response", None)
        status = getattr(response, "status_code", None)
        if isinstance(status, int):
            return status
        current = current.__cause__
    return None


def _content_text(content: Any) -> str:
    """LangChain content is a string or a list of typed parts."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class GenerationService(ABC):
    """External text generation."""

    @abstractmethod
    async def generate(self, turns: list[ConversationTurn]) -> str:
        """
        Generate the next model turn.

        Raises:
            GenerationError: On any upstream failure
        """
        ...


class LangChainGenerationService(GenerationService):
    """
    Generation backed by a LangChain chat model.

    The chat model is created on first use so a process can start without
    provider credentials; a missing key then surfaces as a failed reply.
    """

    def __init__(
        self,
        llm: Any = None,
        config: LLMConfig | None = None,
        system_prompt: str | None = None,
    ):
        self._llm = llm
        self._config = config
        self._system_prompt = system_prompt

    def _model(self) -> Any:
        if self._llm is None:
            self._llm = create_llm(self._config)
        return self._llm

    def to_messages(self, turns: list[ConversationTurn]) -> list[BaseMessage]:
        messages: list[BaseMessage] = []
        if self._system_prompt:
            messages.append(SystemMessage(content=self._system_prompt))
        for turn in turns:
            if turn.role == "model":
                messages.append(AIMessage(content=turn.text))
            else:
                messages.append(HumanMessage(content=turn.text))
        return messages

    async def generate(self, turns: list[ConversationTurn]) -> str:
        try:
            response = await self._model().ainvoke(self.to_messages(turns))
        except Exception as e:
            status = extract_status_code(e)
            logger.warning(f"Generation failed (status={status}): {e}")
            raise GenerationError(status, str(e)) from e

        text = _content_text(response.content).strip()
        if not text:
            raise GenerationError(None, "Model returned an empty reply")
        return text
