"""Content Generator transport for OpenAI and Anthropic.

Usage:
    from mastery_engine.services.ai_client import ai_chat

    text = await ai_chat(
        messages=[
            {"role": "system", "content": "You are a math assessment author."},
            {"role": "user", "content": "Write 8 questions on quadratics."},
        ],
        use_case="generation",   # "generation", "analysis", "judge", or None for default
        temperature=0.7,
        json_mode=True,
    )

The provider is picked per call from the resolved model name: "claude-*"
models go to Anthropic, everything else follows AI_PROVIDER (default OpenAI).
So JUDGE_MODEL=gpt-4o-mini and GENERATION_MODEL=claude-sonnet-4-20250514
can be mixed freely.
"""

import logging
from enum import Enum

from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from mastery_engine.config import settings

logger = logging.getLogger(__name__)


class AIProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


_ANTHROPIC_PREFIXES = ("claude-",)

_USE_CASE_MODELS = {
    "generation": lambda: settings.generation_model,
    "analysis": lambda: settings.analysis_model,
    "judge": lambda: settings.judge_model,
}


def _resolve_model(use_case: str | None) -> str:
    """Pick the model for a use case, falling back to model_name."""
    override = _USE_CASE_MODELS.get(use_case)
    if override is not None and override():
        return override()
    return settings.model_name


def _detect_provider(model: str) -> AIProvider:
    if model.lower().startswith(_ANTHROPIC_PREFIXES):
        return AIProvider.ANTHROPIC
    try:
        return AIProvider(settings.ai_provider.lower())
    except ValueError:
        return AIProvider.OPENAI


async def ai_chat(
    messages: list[dict],
    *,
    use_case: str | None = None,
    temperature: float = 0.7,
    json_mode: bool = False,
    max_tokens: int = 4096,
) -> str:
    """Send a chat completion and return the assistant text."""
    model = _resolve_model(use_case)
    provider = _detect_provider(model)
    logger.debug(f"ai_chat use_case={use_case} model={model} provider={provider.value}")

    if provider == AIProvider.ANTHROPIC:
        return await _anthropic_chat(messages, model, temperature, json_mode, max_tokens)
    return await _openai_chat(messages, model, temperature, json_mode, max_tokens)


def _log_retry(provider: str):
    def _before_sleep(retry_state):
        logger.warning(
            "%s call failed (attempt %d), retrying: %s",
            provider,
            retry_state.attempt_number,
            retry_state.outcome.exception(),
        )
    return _before_sleep


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type(Exception),
    before_sleep=_log_retry("OpenAI"),
    reraise=True,
)
async def _openai_chat(
    messages: list[dict],
    model: str,
    temperature: float,
    json_mode: bool,
    max_tokens: int,
) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=settings.api_key)
    kwargs: dict = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    response = await client.chat.completions.create(**kwargs)
    return response.choices[0].message.content or ""


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type(Exception),
    before_sleep=_log_retry("Anthropic"),
    reraise=True,
)
async def _anthropic_chat(
    messages: list[dict],
    model: str,
    temperature: float,
    json_mode: bool,
    max_tokens: int,
) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)

    # Anthropic takes the system prompt as a separate parameter
    system_text = ""
    chat_messages = []
    for msg in messages:
        if msg["role"] == "system":
            system_text += msg["content"] + "\n"
        else:
            chat_messages.append({"role": msg["role"], "content": msg["content"]})

    if json_mode:
        system_text += "\nYou MUST respond with valid JSON only. No other text.\n"

    kwargs: dict = {
        "model": model,
        "messages": chat_messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if system_text.strip():
        kwargs["system"] = system_text.strip()

    response = await client.messages.create(**kwargs)
    return response.content[0].text
