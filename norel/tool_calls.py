"""Tool-call extraction from raw model output.

Some backends return tool calls in the structured ``tool_calls`` field, others
print them inline in one of several textual dialects. The extractor collects
both, removes the markup from the visible text and strips reasoning blocks and
control tokens. Dialects are handled by an ordered list of decoders; a new
dialect is supported by appending a decoder.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Iterable, Sequence

from norel.models import LLMResponse, ToolInvocation, new_call_id

LOGGER = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)
_CONTROL_TOKEN = re.compile(r"<\|[a-zA-Z0-9_]+\|>")


class ToolCallParseError(ValueError):
    """A fragment looked like a tool call but could not be decoded."""


class ToolCallDecoder(ABC):
    """Recognizes one textual tool-call dialect."""

    name: str
    pattern: re.Pattern[str]

    @abstractmethod
    def decode(self, match: re.Match[str]) -> list[ToolInvocation] | None:
        """Turn a match into invocations.

        Returns None when the match is not a tool call after all, in which case
        the text is left untouched.

        Raises:
            ToolCallParseError: when the fragment is a tool call but malformed.
        """

    def try_parse(self, text: str) -> tuple[str, list[ToolInvocation]]:
        """Decode every occurrence in ``text`` and return the text without them."""

        found: list[ToolInvocation] = []

        def _replace(match: re.Match[str]) -> str:
            try:
                decoded = self.decode(match)
            except ToolCallParseError as exc:
                LOGGER.warning("Failed to parse %s tool call %r: %s", self.name, match.group(0)[:200], exc)
                return ""
            if decoded is None:
                return match.group(0)
            found.extend(decoded)
            return ""

        return self.pattern.sub(_replace, text), found


class BracketedFunctionDecoder(ToolCallDecoder):
    """``<function(name)>{"arg": "val"}</function>`` or ``<function(name){...}</function>``."""

    name = "bracketed"
    pattern = re.compile(r"<function\((?P<name>\w+)\)>?(?P<args>.*?)</function>", re.DOTALL)

    def decode(self, match: re.Match[str]) -> list[ToolInvocation]:
        raw = match.group("args").strip()
        arguments = _load_arguments(raw) if raw else {}
        return [ToolInvocation(name=match.group("name"), arguments=arguments, id=new_call_id())]


class WrappedListDecoder(ToolCallDecoder):
    """``<tools>{"name": ..., "arguments": {...}}</tools>``, or a JSON list of such objects."""

    name = "wrapped"
    pattern = re.compile(r"<tools>(?P<body>.*?)</tools>", re.DOTALL)

    def decode(self, match: re.Match[str]) -> list[ToolInvocation]:
        try:
            data = json.loads(match.group("body").strip())
        except json.JSONDecodeError as exc:
            raise ToolCallParseError(str(exc)) from exc

        entries = data if isinstance(data, list) else [data]
        invocations = []
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                raise ToolCallParseError(f"entry without a name: {entry!r}")
            raw_args = entry.get("arguments") or {}
            arguments = _load_arguments(raw_args) if isinstance(raw_args, str) else raw_args
            if not isinstance(arguments, dict):
                raise ToolCallParseError(f"arguments must be an object: {raw_args!r}")
            invocations.append(ToolInvocation(name=entry["name"], arguments=arguments, id=new_call_id()))
        return invocations


class BareCallDecoder(ToolCallDecoder):
    """``search_web(query="cats", limit=3)``, recognized only for known tool names."""

    name = "bare"
    _value = r"(?:\"[^\"]*\"|'[^']*'|-?\d+(?:\.\d+)?)"
    # Quoted values may contain parentheses, so the argument list is matched pair by pair.
    pattern = re.compile(
        rf"\b(?P<name>\w+)\((?P<args>\s*(?:\w+\s*=\s*{_value}\s*(?:,\s*)?)*)\)"
    )
    _argument = re.compile(
        r"(?P<key>\w+)\s*=\s*(?:(?P<quote>[\"'])(?P<text>.*?)(?P=quote)|(?P<number>-?\d+(?:\.\d+)?))"
    )

    def __init__(self, known_tools: Iterable[str]) -> None:
        self._known_tools = frozenset(known_tools)

    def decode(self, match: re.Match[str]) -> list[ToolInvocation] | None:
        name = match.group("name")
        if name not in self._known_tools:
            return None
        arguments: dict[str, Any] = {}
        for arg in self._argument.finditer(match.group("args")):
            if arg.group("number") is not None:
                number = arg.group("number")
                arguments[arg.group("key")] = float(number) if "." in number else int(number)
            else:
                arguments[arg.group("key")] = arg.group("text")
        LOGGER.info("Found bare tool call: %s(%s)", name, match.group("args"))
        return [ToolInvocation(name=name, arguments=arguments, id=new_call_id())]


class ToolCallExtractor:
    """Combines structured and textual tool calls and cleans the visible text."""

    def __init__(self, known_tools: Iterable[str], decoders: Sequence[ToolCallDecoder] | None = None) -> None:
        self._decoders: list[ToolCallDecoder] = list(
            decoders
            if decoders is not None
            else (BracketedFunctionDecoder(), WrappedListDecoder(), BareCallDecoder(known_tools))
        )

    def add_decoder(self, decoder: ToolCallDecoder) -> None:
        self._decoders.append(decoder)

    def extract(self, response: LLMResponse) -> tuple[str, list[ToolInvocation]]:
        invocations = [
            call if call.id else ToolInvocation(name=call.name, arguments=call.arguments)
            for call in response.tool_calls
        ]
        text = _CONTROL_TOKEN.sub("", _THINK_BLOCK.sub("", response.content or ""))
        for decoder in self._decoders:
            text, found = decoder.try_parse(text)
            invocations.extend(found)
        return text.strip(), invocations


def _load_arguments(raw: str) -> dict[str, Any]:
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ToolCallParseError(str(exc)) from exc
    if not isinstance(arguments, dict):
        raise ToolCallParseError(f"arguments must be an object: {raw!r}")
    return arguments
