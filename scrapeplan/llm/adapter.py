"""Completion adapter: the one place that talks to a chat model.

Resolvers never build LangChain objects themselves; they hand a
:class:`CompletionRequest` to :meth:`CompletionAdapter.complete` and get a
:class:`CompletionResponse` (or a :class:`CompletionError`) back.  The
adapter picks the configured provider, enforces the timeout and, when the
primary provider fails, retries once on the fallback provider.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from loguru import logger

from scrapeplan.config import settings

# Bounds for the per-call timeout, in seconds.
_MIN_TIMEOUT = 5.0
_MAX_TIMEOUT = 30.0


class CompletionError(RuntimeError):
    """Raised when no provider produced a completion.

    ``attempts`` lists the ``(provider, model)`` pairs that were tried.
    """

    def __init__(self, message: str, attempts: Sequence[tuple[str, str]] = ()) -> None:
        super().__init__(message)
        self.attempts = list(attempts)


@dataclass
class CompletionRequest:
    prompt: str
    system_message: str = ""
    response_format: str = "json"
    temperature: float = 0.1
    max_tokens: int = 1000


@dataclass
class CompletionResponse:
    content: str
    provider: str
    model: str
    tokens_used: int = 0
    # (provider, model) pairs that failed before this answer.
    failed_attempts: list[tuple[str, str]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# LLM helper
# ---------------------------------------------------------------------------

def _model_name(provider: str) -> str:
    if provider == "openai":
        return settings.openai_chat_model
    return settings.ollama_chat_model


def _get_llm(provider: str, temperature: float, max_tokens: int, json_mode: bool) -> Any:
    """Return a configured LangChain chat model for *provider*."""
    if provider == "openai":
        from langchain_openai import ChatOpenAI

        llm = ChatOpenAI(
            model=settings.openai_chat_model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if json_mode:
            return llm.bind(response_format={"type": "json_object"})
        return llm

    from langchain_ollama import ChatOllama

    kwargs: dict[str, Any] = {
        "model": settings.ollama_chat_model,
        "base_url": settings.ollama_base_url,
        "temperature": temperature,
        "num_predict": max_tokens,
    }
    if json_mode:
        kwargs["format"] = "json"
    return ChatOllama(**kwargs)


def _tokens_used(message: Any) -> int:
    usage = getattr(message, "usage_metadata", None)
    if isinstance(usage, dict):
        return int(usage.get("total_tokens", 0) or 0)
    return 0


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class CompletionAdapter:
    """Send prompts to the configured chat model with timeout and fallback.

    Args:
        provider: Primary provider (``"ollama"`` or ``"openai"``).  Defaults
            to ``settings.llm_provider``.
        fallback_provider: Provider tried when the primary fails.  Empty
            disables the fallback.
        timeout: Seconds per call, clamped to 5..30.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        fallback_provider: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.provider = provider or settings.llm_provider
        fallback = settings.llm_fallback_provider if fallback_provider is None else fallback_provider
        self.fallback_provider = fallback if fallback and fallback != self.provider else ""
        raw_timeout = settings.completion_timeout if timeout is None else timeout
        self.timeout = max(_MIN_TIMEOUT, min(float(raw_timeout), _MAX_TIMEOUT))

    async def _call(self, provider: str, request: CompletionRequest) -> CompletionResponse:
        from langchain_core.messages import HumanMessage, SystemMessage

        llm = _get_llm(
            provider,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            json_mode=request.response_format == "json",
        )
        messages: list[Any] = []
        if request.system_message:
            messages.append(SystemMessage(content=request.system_message))
        messages.append(HumanMessage(content=request.prompt))

        message = await asyncio.wait_for(llm.ainvoke(messages), timeout=self.timeout)
        content = message.content if hasattr(message, "content") else str(message)
        if not isinstance(content, str):
            content = str(content)
        return CompletionResponse(
            content=content,
            provider=provider,
            model=_model_name(provider),
            tokens_used=_tokens_used(message),
        )

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Run *request* on the primary provider, then on the fallback.

        Raises:
            CompletionError: If every configured provider failed or timed out.
        """
        providers = [self.provider] + ([self.fallback_provider] if self.fallback_provider else [])
        last_error: Optional[BaseException] = None
        failed: list[tuple[str, str]] = []
        for provider in providers:
            try:
                response = await self._call(provider, request)
            except asyncio.TimeoutError as exc:
                logger.warning(f"[LLM] {provider} timed out after {self.timeout:.0f}s")
                last_error = exc
                failed.append((provider, _model_name(provider)))
                continue
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"[LLM] {provider} failed: {exc}")
                last_error = exc
                failed.append((provider, _model_name(provider)))
                continue
            logger.debug(
                f"[LLM] {response.provider}/{response.model} answered "
                f"({len(response.content)} chars, {response.tokens_used} tokens)"
            )
            response.failed_attempts = failed
            return response

        raise CompletionError(
            f"All completion providers failed ({', '.join(providers)}): {last_error}",
            attempts=failed,
        ) from last_error
