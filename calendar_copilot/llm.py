from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from .config import OPENAI_API_KEY, OPENAI_MODEL
from .utils import _log_debug

DEFAULT_EXTRACTION_SYSTEM_PROMPT = "Return JSON only."


class Extractor:
  """Opaque text-in/text-out NLU call. Output carries no schema guarantee."""

  async def extract(self,
                    prompt: str,
                    system_prompt: str = DEFAULT_EXTRACTION_SYSTEM_PROMPT,
                    max_tokens: int = 800,
                    temperature: float = 0.1) -> str:
    raise NotImplementedError

  async def reply(self, messages: List[Dict[str, str]], max_tokens: int = 1024) -> str:
    raise NotImplementedError


class OpenAIExtractor(Extractor):

  def __init__(self, client: AsyncOpenAI, model: str = OPENAI_MODEL) -> None:
    self._client = client
    self.model = model

  async def _complete(self, kind: str, messages: List[Dict[str, str]],
                      max_tokens: int, temperature: Optional[float]) -> str:
    started = time.perf_counter()
    kwargs: Dict[str, Any] = {
        "model": self.model,
        "messages": messages,
        "max_tokens": max_tokens,
    }
    if temperature is not None:
      kwargs["temperature"] = temperature
    try:
      completion = await self._client.chat.completions.create(**kwargs)
    except Exception as e:
      _log_debug(f"[LLM DEBUG] {kind} exception: {repr(e)}")
      raise
    latency_ms = (time.perf_counter() - started) * 1000.0
    content = completion.choices[0].message.content if completion.choices else None
    raw_content = content.strip() if isinstance(content, str) else ""
    _log_debug(f"[LLM DEBUG] {kind} ({self.model}, {latency_ms:.0f}ms): {raw_content}")
    return raw_content

  async def extract(self,
                    prompt: str,
                    system_prompt: str = DEFAULT_EXTRACTION_SYSTEM_PROMPT,
                    max_tokens: int = 800,
                    temperature: float = 0.1) -> str:
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": prompt},
    ]
    return await self._complete("extract", messages, max_tokens, temperature)

  async def reply(self, messages: List[Dict[str, str]], max_tokens: int = 1024) -> str:
    return await self._complete("reply", messages, max_tokens, None)


class NullExtractor(Extractor):
  """Used without an API key. Empty output sends every caller down its fallback path."""

  async def extract(self,
                    prompt: str,
                    system_prompt: str = DEFAULT_EXTRACTION_SYSTEM_PROMPT,
                    max_tokens: int = 800,
                    temperature: float = 0.1) -> str:
    return ""

  async def reply(self, messages: List[Dict[str, str]], max_tokens: int = 1024) -> str:
    return ""


def build_extractor(api_key: Optional[str] = OPENAI_API_KEY,
                    model: str = OPENAI_MODEL) -> Extractor:
  if not api_key:
    return NullExtractor()
  return OpenAIExtractor(AsyncOpenAI(api_key=api_key), model)

