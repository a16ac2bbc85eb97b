"""
Ticky Assistant — AI text collaborator.

Two assistant calls share one provider-agnostic chat request:

- ``generate_text(prompt)`` writes coaching text for /ask and the morning
  and evening broadcasts;
- ``lookup_timezone(city)`` resolves a free-text city name to an IANA zone
  for /timezone.

The provider comes from LLM_PROVIDER (openai, gemini, anthropic, cohere)
and is resolved once, on first use. Provider errors propagate; callers wrap
them in ``with_timeout`` and fall back.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

_COACH_SYSTEM_PROMPT = (
    "Ты — персональный помощник по продуктивности в Telegram. "
    "Даёшь короткие практичные советы по-русски, дружелюбно и с мотивацией, "
    "эмодзи используешь умеренно. Форматируй ответ в Markdown, совместимом с "
    "Telegram, и всегда заканчивай мысль, не обрывая пункт на середине."
)

_TIMEZONE_SYSTEM_PROMPT = (
    "Ты определяешь часовой пояс города. Отвечай только JSON без пояснений: "
    '{"timezone": "<IANA, например Europe/Moscow>", "city": "<название города по-русски>"}. '
    "Если город не существует или непонятен, ответь null."
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class EmptyAnswerError(RuntimeError):
    """The provider answered with no text."""


@dataclass(frozen=True)
class ChatRequest:
    system: str
    prompt: str
    max_tokens: int
    temperature: float

    def as_messages(self) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.prompt},
        ]


class CityTimezone(BaseModel):
    timezone: str
    city: str


_AskFn = Callable[[ChatRequest, str, str], Awaitable[str | None]]

# ---------------------------------------------------------------------------
# Providers: (request, api_key, model) -> raw answer text
# ---------------------------------------------------------------------------


async def _ask_openai(request: ChatRequest, api_key: str, model: str) -> str | None:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=request.max_tokens,
        temperature=request.temperature,
        messages=request.as_messages(),
    )
    return response.choices[0].message.content


async def _ask_gemini(request: ChatRequest, api_key: str, model: str) -> str | None:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(model_name=model, system_instruction=request.system)
    response = await gm.generate_content_async(
        request.prompt,
        generation_config=genai.types.GenerationConfig(
            max_output_tokens=request.max_tokens,
            temperature=request.temperature,
        ),
    )
    return response.text


async def _ask_anthropic(request: ChatRequest, api_key: str, model: str) -> str | None:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=request.max_tokens,
        temperature=request.temperature,
        system=request.system,
        messages=[{"role": "user", "content": request.prompt}],
    )
    return "".join(block.text for block in response.content if block.type == "text")


async def _ask_cohere(request: ChatRequest, api_key: str, model: str) -> str | None:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=request.max_tokens,
        temperature=request.temperature,
        messages=request.as_messages(),
    )
    if not response.message.content:
        return None
    return response.message.content[0].text


_PROVIDERS: dict[str, tuple[_AskFn, str]] = {
    "openai":    (_ask_openai,    "gpt-4o-mini"),
    "gemini":    (_ask_gemini,    "gemini-2.0-flash"),
    "anthropic": (_ask_anthropic, "claude-haiku-4-5-20251001"),
    "cohere":    (_ask_cohere,    "command-a-03-2025"),
}


@lru_cache(maxsize=1)
def _backend() -> tuple[_AskFn, str, str]:
    """Resolve (ask_fn, model, api_key) from settings, once per process."""
    from src.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    ask, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return ask, model, settings.LLM_API_KEY


async def chat(request: ChatRequest) -> str:
    """Run one request against the configured provider; blank answers raise."""
    ask, model, api_key = _backend()
    text = (await ask(request, api_key, model) or "").strip()
    if not text:
        raise EmptyAnswerError(f"{model} returned an empty answer")
    return text


# ---------------------------------------------------------------------------
# Assistant calls
# ---------------------------------------------------------------------------


async def generate_text(prompt: str, max_tokens: int = 1500) -> str:
    """One prompt in, coaching text out."""
    return await chat(ChatRequest(_COACH_SYSTEM_PROMPT, prompt, max_tokens, temperature=0.7))


async def lookup_timezone(city: str) -> CityTimezone | None:
    """Ask the model which IANA zone a city is in.

    Returns None when the model does not know the city or its answer is
    not a zone this system's tz database has.
    """
    raw = await chat(ChatRequest(_TIMEZONE_SYSTEM_PROMPT, city, max_tokens=100, temperature=0.1))
    raw = _CODE_FENCE.sub("", raw)
    if raw == "null":
        return None

    try:
        answer = CityTimezone.model_validate_json(raw)
    except ValidationError:
        logger.warning("Unusable timezone answer for %r: %s", city, raw)
        return None

    try:
        ZoneInfo(answer.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Model suggested unknown timezone %r for %r", answer.timezone, city)
        return None
    return answer
