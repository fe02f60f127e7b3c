"""Intent router: natural language -> plugin + parameters.

The model is asked for a small JSON decision. Its reply is parsed
tolerantly: fenced or embedded JSON and plain ``key: value`` lines are all
accepted, unknown fields are ignored and common field aliases are
understood. The result is always one of three decisions:

    Route       a registered plugin and its parameters
    Clarify     a question for the user (with optional canned answers)
    Unresolved  nothing usable; the request is not executed

A "clarify" reply that lacks its question degrades to a Route when a plugin
was named, so a sloppy reply never turns into a crash.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Union

from dexter.context import RoutingContext
from dexter.fallback import FallbackManager, ModelResponse
from dexter.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

PLUGIN_KEYS = ("plugin_name", "plugin", "plugin_id", "tool", "tool_name")
PARAMETER_KEYS = ("parameters", "params", "args", "arguments")
QUESTION_KEYS = ("question", "clarification", "clarify_question", "clarifying_question")
INTENT_KEYS = ("intent", "action", "decision", "type")
OPTION_KEYS = ("options", "choices")
REASON_KEYS = ("reasoning", "reason", "explanation")

ROUTE_INTENTS = {"route", "execute", "run", "plugin", "command"}
CLARIFY_INTENTS = {"clarify", "clarification", "ask", "question"}
UNSUPPORTED_INTENTS = {"unsupported", "none", "unknown", "reject", "refuse", "unresolved"}

_FENCE_RE = re.compile(r"```[A-Za-z]*\s*(.*?)```", re.DOTALL)
_KV_LINE_RE = re.compile(r"""^\s*["']?([A-Za-z_][\w-]*)["']?\s*[:=]\s*(.*?)\s*,?\s*$""")

SYSTEM_PROMPT = """You are the router for Dexter, a terminal copilot.
Map the user's request to exactly one of the available plugins and fill in
its parameters using only files and values the request or the directory
listing mention. Never invent paths.

Available plugins:
{plugins}

Reply with a single JSON object and nothing else:
{{
  "intent": "route" | "clarify" | "unsupported",
  "plugin_name": "exact plugin id from the list",
  "parameters": {{"name": "value"}},
  "question": "only for clarify: what you need to know",
  "options": [{{"label": "short answer", "resolved_intent": "full request if chosen"}}],
  "confidence": 0.0 to 1.0,
  "reasoning": "one sentence"
}}
Use "clarify" when a required parameter is ambiguous. Use "unsupported" when
no plugin fits the request."""


@dataclass(frozen=True)
class Route:
    plugin_id: str
    parameters: dict[str, Any] = field(default_factory=dict)
    confidence: float | None = None
    reasoning: str = ""


@dataclass(frozen=True)
class ClarifyOption:
    label: str
    resolved_intent: str


@dataclass(frozen=True)
class Clarify:
    question: str
    partial_fields: dict[str, Any] = field(default_factory=dict)
    options: tuple[ClarifyOption, ...] = ()


@dataclass(frozen=True)
class Unresolved:
    reason: str
    raw: str = ""


RoutingDecision = Union[Route, Clarify, Unresolved]


def extract_payload(text: str) -> dict[str, Any] | None:
    """Find a decision object in free model text. Returns None if hopeless."""
    raw = (text or "").strip()
    if not raw:
        return None

    candidates = [raw]
    candidates.extend(m.group(1).strip() for m in _FENCE_RE.finditer(raw))
    first_brace = raw.find("{")
    last_brace = raw.rfind("}")
    if first_brace != -1 and last_brace > first_brace:
        candidates.append(raw[first_brace:last_brace + 1])

    fallback = None
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            if _has_decision_key(data):
                return data
            fallback = fallback or data

    # A bare parameters object inside key: value lines is not the decision
    parsed = _parse_key_values(raw)
    return parsed if parsed is not None else fallback


def _has_decision_key(data: dict[str, Any]) -> bool:
    known = set(PLUGIN_KEYS) | set(QUESTION_KEYS) | set(INTENT_KEYS)
    return any(str(key).lower() in known for key in data)


def _parse_key_values(text: str) -> dict[str, Any] | None:
    """Parse `key: value` lines, e.g. from a model that ignored the JSON request."""
    data: dict[str, Any] = {}
    for line in text.splitlines():
        match = _KV_LINE_RE.match(line)
        if not match:
            continue
        key, value = match.group(1).lower(), match.group(2)
        try:
            data[key] = json.loads(value)
        except json.JSONDecodeError:
            data[key] = value.strip("\"'")
    return data if _has_decision_key(data) else None


def _first(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _parameters(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return {}
    if not isinstance(value, dict):
        return {}
    return {str(k): v for k, v in value.items() if v is not None}


def _options(value: Any) -> tuple[ClarifyOption, ...]:
    if not isinstance(value, list):
        return ()
    options = []
    for item in value:
        if isinstance(item, str) and item.strip():
            options.append(ClarifyOption(item.strip(), item.strip()))
        elif isinstance(item, dict):
            label = item.get("label") or item.get("text")
            resolved = item.get("resolved_intent") or item.get("intent") or item.get("value") or label
            if isinstance(label, str) and isinstance(resolved, str) and label.strip():
                options.append(ClarifyOption(label.strip(), resolved.strip()))
    return tuple(options)


def _confidence(value: Any) -> float | None:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return None


def parse_decision(raw: str, registry: PluginRegistry) -> RoutingDecision:
    """Turn raw model text into a decision. Never raises."""
    data = extract_payload(raw)
    if data is None:
        return Unresolved("model reply contained no decision", raw)
    data = {str(k).lower(): v for k, v in data.items()}

    intent = str(_first(data, INTENT_KEYS) or "").strip().lower()
    plugin_name = _first(data, PLUGIN_KEYS)
    plugin_name = plugin_name.strip() if isinstance(plugin_name, str) else None
    parameters = _parameters(_first(data, PARAMETER_KEYS))
    question = _first(data, QUESTION_KEYS)
    question = question.strip() if isinstance(question, str) and question.strip() else None
    reasoning = str(_first(data, REASON_KEYS) or "")

    if intent in UNSUPPORTED_INTENTS:
        return Unresolved(reasoning or "no plugin supports this request", raw)

    plugin = registry.resolve(plugin_name) if plugin_name else None
    wants_clarify = intent in CLARIFY_INTENTS or (question is not None and plugin_name is None)
    if wants_clarify and question:
        partial = dict(parameters)
        if plugin is not None:
            partial["plugin"] = plugin.id
        return Clarify(question, partial, _options(_first(data, OPTION_KEYS)))

    if plugin_name is None:
        return Unresolved("no plugin or clarification could be recovered", raw)
    if plugin is None:
        return Unresolved(f"model chose unknown plugin '{plugin_name}'", raw)
    return Route(plugin.id, parameters, _confidence(data.get("confidence")), reasoning)


class IntentRouter:
    """Build the routing prompt, ask the model chain, parse the reply."""

    def __init__(self, fallback: FallbackManager, registry: PluginRegistry):
        self.fallback = fallback
        self.registry = registry
        self.last_response: ModelResponse | None = None

    def build_prompt(self, utterance: str, context: RoutingContext) -> tuple[str, str]:
        plugins = "\n".join(cap.prompt_line() for cap in context.capabilities)
        system = SYSTEM_PROMPT.format(plugins=plugins)
        user = f"Request: {utterance}\n\n{context.format_for_prompt()}"
        return system, user

    async def route(self, utterance: str, context: RoutingContext | None = None) -> RoutingDecision:
        """Route one request. FallbackExhausted propagates to the caller."""
        if context is None:
            context = RoutingContext.build(utterance, os.getcwd(), self.registry)
        system, user = self.build_prompt(utterance, context)
        response = await self.fallback.complete(user, system=system)
        self.last_response = response

        decision = parse_decision(response.text, self.registry)
        if isinstance(decision, Route):
            logger.info(f"Routed to {decision.plugin_id} via {response.provider_id}/{response.model}")
        elif isinstance(decision, Clarify):
            logger.info(f"Model asked for clarification: {decision.question}")
        else:
            logger.warning(f"Routing unresolved: {decision.reason}")
        return decision
