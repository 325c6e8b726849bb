"""JSON-mode chat completion client on the OpenAI-compatible API."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, InternalServerError, RateLimitError

from app.ai.backoff import DEFAULT_DELAYS, retry_transient
from app.config import Settings
from app.core.exceptions import CompletionError, TransientCompletionError

logger = logging.getLogger(__name__)

_CHAT_COMPLETIONS_SUFFIX = "/chat/completions"


@dataclass(frozen=True)
class CompletionResult:
  """Parsed JSON object plus the raw text and prompt kept for auditing."""

  data: dict[str, Any]
  raw: str
  prompt: str
  usage: dict[str, int] | None = None


class CompletionClient(Protocol):
  """Contract used by the extract and invent pipelines."""

  async def complete_json(self, *, system: str, user: str, temperature: float) -> CompletionResult:
    """Return one JSON object produced by the model."""


def strip_json_fences(content: str) -> str:
  """Remove ```json fences some models wrap around JSON mode output."""
  text = content.strip()
  if text.startswith("```"):
    text = text.split("\n", 1)[1] if "\n" in text else ""
    if text.rstrip().endswith("```"):
      text = text.rstrip()[:-3]
  return text.strip()


def normalize_base_url(endpoint: str | None) -> str | None:
  """Accept a full chat-completions endpoint as well as an API base URL."""
  if not endpoint:
    return None
  trimmed = endpoint.rstrip("/")
  if trimmed.endswith(_CHAT_COMPLETIONS_SUFFIX):
    trimmed = trimmed[: -len(_CHAT_COMPLETIONS_SUFFIX)]
  return trimmed


class OpenAICompletionClient:
  """Completion client with bounded retries for rate limits, timeouts and 5xx responses."""

  def __init__(self, *, api_key: str, model: str, base_url: str | None = None, retry_delays: Sequence[float] = DEFAULT_DELAYS, client: AsyncOpenAI | None = None) -> None:
    self.model = model
    self._retry_delays = tuple(retry_delays)
    # The SDK's own retries would stack with ours.
    self._client = client or AsyncOpenAI(api_key=api_key, base_url=normalize_base_url(base_url), max_retries=0)

  async def complete_json(self, *, system: str, user: str, temperature: float) -> CompletionResult:
    async def _attempt() -> CompletionResult:
      return await self._complete_once(system=system, user=user, temperature=temperature)

    return await retry_transient(_attempt, delays=self._retry_delays)

  async def _complete_once(self, *, system: str, user: str, temperature: float) -> CompletionResult:
    """One request; maps SDK errors onto transient or permanent completion errors."""
    try:
      response = await self._client.chat.completions.create(
        model=self.model,
        temperature=temperature,
        response_format={"type": "json_object"},
        messages=[{"role": "system", "content": system}, {"role": "user", "content": user}],
      )
    except (RateLimitError, APIConnectionError, InternalServerError) as exc:
      raise TransientCompletionError(f"AI request failed transiently: {exc}") from exc
    except APIStatusError as exc:
      raise CompletionError(f"AI request failed: {exc.status_code} {exc.message}") from exc

    content = response.choices[0].message.content or "{}"
    usage = None
    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}
    logger.debug("Completion received model=%s chars=%d usage=%s", self.model, len(content), usage)

    try:
      parsed = json.loads(strip_json_fences(content))
    except json.JSONDecodeError as exc:
      raise CompletionError(f"AI returned invalid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
      raise CompletionError("AI returned JSON that is not an object")
    return CompletionResult(data=parsed, raw=content, prompt=user, usage=usage)


def build_completion_client(settings: Settings) -> OpenAICompletionClient:
  """Create the configured client; fails fast when no API key is set."""
  if not settings.ai_api_key:
    raise ValueError("RECIPES_AI_API_KEY (or AI_API_KEY/OPENAI_API_KEY) must be set for AI workers.")
  return OpenAICompletionClient(api_key=settings.ai_api_key, model=settings.ai_model, base_url=settings.ai_base_url, retry_delays=settings.ai_retry_delays)
