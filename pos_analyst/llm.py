"""
Text generation clients.

Both providers expose the same ``complete`` coroutine so the SQL generator and
the insight composer do not care which one is configured. Every failure mode of
the remote call (missing key, HTTP error, timeout, empty content) surfaces as
UpstreamGenerationError.
"""
import asyncio
import json
import re
from typing import Any, Dict, List, Optional, Protocol

from groq import AsyncGroq, GroqError
from openai import AsyncOpenAI, OpenAIError

from .config import Settings
from .errors import UpstreamGenerationError


class TextGenerationService(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
        temperature: float = 0.1,
        max_tokens: Optional[int] = None,
    ) -> str:
        ...


def _messages(system_prompt: str, user_prompt: str) -> List[Dict[str, str]]:
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})
    return messages


def _request_kwargs(json_mode: bool, temperature: float, max_tokens: Optional[int]) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"temperature": temperature}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    return kwargs


def _content(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        raise UpstreamGenerationError("Text generation returned no choices")
    content = choices[0].message.content
    if not isinstance(content, str) or not content.strip():
        raise UpstreamGenerationError("Text generation returned empty content")
    return content


class GroqTextService:
    def __init__(self, api_key: Optional[str], model: str, timeout: float) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    async def complete(self, system_prompt, user_prompt, *, json_mode=False, temperature=0.1, max_tokens=None) -> str:
        try:
            async with AsyncGroq(api_key=self.api_key, timeout=self.timeout, max_retries=0) as client:
                response = await client.chat.completions.create(
                    model=self.model,
                    messages=_messages(system_prompt, user_prompt),
                    **_request_kwargs(json_mode, temperature, max_tokens),
                )
        except GroqError as e:
            raise UpstreamGenerationError(f"Groq request failed: {e}") from e
        return _content(response)


class OpenAITextService:
    """OpenAI chat completions, or any OpenAI-compatible endpoint via base_url."""

    def __init__(self, api_key: Optional[str], model: str, timeout: float, base_url: Optional[str] = None) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.base_url = base_url

    async def complete(self, system_prompt, user_prompt, *, json_mode=False, temperature=0.1, max_tokens=None) -> str:
        try:
            async with AsyncOpenAI(
                api_key=self.api_key, base_url=self.base_url, timeout=self.timeout, max_retries=0
            ) as client:
                response = await client.chat.completions.create(
                    model=self.model,
                    messages=_messages(system_prompt, user_prompt),
                    **_request_kwargs(json_mode, temperature, max_tokens),
                )
        except OpenAIError as e:
            raise UpstreamGenerationError(f"OpenAI request failed: {e}") from e
        return _content(response)


def build_text_service(settings: Settings) -> TextGenerationService:
    if settings.llm_provider == "openai":
        return OpenAITextService(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            timeout=settings.llm_timeout_seconds,
            base_url=settings.openai_base_url,
        )
    return GroqTextService(
        api_key=settings.groq_api_key,
        model=settings.groq_model,
        timeout=settings.llm_timeout_seconds,
    )


async def complete_within(
    service: TextGenerationService,
    system_prompt: str,
    user_prompt: str,
    *,
    timeout: float,
    **kwargs: Any,
) -> str:
    """Run ``service.complete`` under a caller-side deadline."""
    try:
        return await asyncio.wait_for(service.complete(system_prompt, user_prompt, **kwargs), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise UpstreamGenerationError(f"Text generation timed out after {timeout:g}s") from e


def extract_json_block(text: str) -> Dict[str, Any]:
    # Try to locate the first { ... } JSON block in the response
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            pass
    # Try code fences
    m = re.search(r"```json\s*(\{[\s\S]*?\})\s*```", text)
    if m:
        try:
            return json.loads(m.group(1))
        except json.JSONDecodeError:
            pass
    return {}
