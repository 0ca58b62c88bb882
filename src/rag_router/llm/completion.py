"""Generative completion provider used by the few-shot routing tier."""

from __future__ import annotations

from typing import Any, Protocol

from langchain_core.messages import BaseMessage

from rag_router.config import ProviderSettings


class CompletionProvider(Protocol):
    """Minimal chat-completion contract."""

    async def complete(
        self,
        messages: list[BaseMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Return the assistant text for `messages`."""


class OpenAIChatCompletionProvider:
    """OpenAI chat models through `langchain_openai.ChatOpenAI`.

    One chat model is built per (model, temperature, max_tokens) combination
    and reused across calls.
    """

    def __init__(self, settings: ProviderSettings) -> None:
        self._api_key = settings.require_api_key()
        self._models: dict[tuple[str, float, int], Any] = {}

    async def complete(
        self,
        messages: list[BaseMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        llm = self._model(model, temperature, max_tokens)
        response = await llm.ainvoke(messages)
        return _message_text(response)

    def _model(self, model: str, temperature: float, max_tokens: int) -> Any:
        key = (model, temperature, max_tokens)
        llm = self._models.get(key)
        if llm is None:
            from langchain_openai import ChatOpenAI

            llm = ChatOpenAI(
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                api_key=self._api_key,
            )
            self._models[key] = llm
        return llm


def _message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content).strip()
