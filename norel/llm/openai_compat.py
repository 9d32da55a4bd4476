"""OpenAI-compatible chat completions implementation of LLMProvider."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from norel.config import Settings
from norel.llm.base import LLMProvider, ProviderError
from norel.models import LLMResponse, ToolInvocation, new_call_id

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [5, 15, 45]


class OpenAICompatibleProvider(LLMProvider):
    """LLM provider for any server exposing the OpenAI chat completions endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": self._settings.llm_model,
            "messages": messages,
            "max_tokens": self._settings.llm_max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        if temperature is not None:
            payload["temperature"] = temperature

        _LOGGER.info("LLM request: messages=%d tools=%d", len(messages), len(tools or []))
        timeout = httpx.Timeout(self._settings.request_timeout_seconds)
        try:
            async with httpx.AsyncClient(base_url=self._settings.openai_base_url, timeout=timeout) as client:
                for attempt in range(_MAX_RETRIES + 1):
                    response = await client.post(
                        "/chat/completions",
                        headers={
                            "Authorization": f"Bearer {self._settings.openai_api_key}",
                            "Content-Type": "application/json",
                        },
                        json=payload,
                    )
                    if response.status_code == 429 and attempt < _MAX_RETRIES:
                        wait = _RETRY_BACKOFF_SECONDS[attempt]
                        _LOGGER.warning(
                            "Provider rate limited (429), retrying in %ds (attempt %d/%d)",
                            wait,
                            attempt + 1,
                            _MAX_RETRIES,
                        )
                        await asyncio.sleep(wait)
                        continue
                    response.raise_for_status()
                    break
                data = response.json()
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            raise ProviderError(f"LLM request failed: {exc}") from exc

        try:
            choice = data["choices"][0]["message"]
            finish_reason = data["choices"][0].get("finish_reason")
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"Malformed LLM response: {str(data)[:200]}") from exc

        content = choice.get("content") or ""
        _LOGGER.info(
            "LLM response: finish_reason=%r content=%r tool_calls=%r",
            finish_reason,
            content[:200] if content else "",
            choice.get("tool_calls"),
        )

        parsed_tool_calls: list[ToolInvocation] = []
        for tool_call in choice.get("tool_calls") or []:
            function_data = tool_call.get("function", {})
            parsed_tool_calls.append(
                ToolInvocation(
                    name=function_data.get("name", ""),
                    arguments=_safe_json_loads(function_data.get("arguments") or "{}"),
                    id=tool_call.get("id") or new_call_id(),
                )
            )

        return LLMResponse(content=content, tool_calls=parsed_tool_calls, raw=data)


def _safe_json_loads(raw: str | dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
