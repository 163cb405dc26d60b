"""Provider-specific request transforms.

Session code builds conversations in the OpenAI chat format. This module
converts them for other APIs and maps generic settings, such as the thinking
level, onto each API's request fields.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

THINKING_LEVELS = ("off", "minimal", "low", "medium", "high")

# Anthropic extended-thinking budgets per level.
THINKING_BUDGETS = {
    "minimal": 1024,
    "low": 4096,
    "medium": 10000,
    "high": 32000,
}


class ProviderTransform:
    """Centralized provider transform pipeline."""

    OUTPUT_TOKEN_MAX = 32000

    @staticmethod
    def _parse_json(value: Any) -> Dict[str, Any]:
        if isinstance(value, dict):
            return value
        if isinstance(value, str) and value:
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError:
                return {}
            if isinstance(parsed, dict):
                return parsed
        return {}

    @staticmethod
    def anthropic_tools(tools: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
        """Convert OpenAI function definitions to Anthropic ``input_schema`` tools."""
        if not tools:
            return None
        converted: List[Dict[str, Any]] = []
        for item in tools:
            fn = item.get("function", {}) if isinstance(item, dict) else {}
            name = fn.get("name")
            if not name:
                continue
            converted.append(
                {
                    "name": str(name),
                    "description": str(fn.get("description", "")),
                    "input_schema": dict(fn.get("parameters") or {"type": "object", "properties": {}}),
                }
            )
        return converted

    @classmethod
    def anthropic_messages(cls, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Convert OpenAI-style conversation messages to Anthropic format.

        System messages are dropped (Anthropic takes the system prompt as a
        separate field) and consecutive tool results are merged into one user
        turn.
        """
        out: List[Dict[str, Any]] = []
        for raw in messages:
            role = raw.get("role")
            content = raw.get("content")

            if role == "tool":
                tool_call_id = raw.get("tool_call_id")
                if not tool_call_id:
                    continue
                block = {
                    "type": "tool_result",
                    "tool_use_id": str(tool_call_id),
                    "content": str(content or ""),
                    "is_error": bool(raw.get("is_error", False)),
                }
                if out and out[-1]["role"] == "user" and isinstance(out[-1]["content"], list):
                    out[-1]["content"].append(block)
                else:
                    out.append({"role": "user", "content": [block]})
                continue

            if role == "assistant":
                blocks: List[Dict[str, Any]] = []
                if isinstance(content, str) and content:
                    blocks.append({"type": "text", "text": content})
                for call in raw.get("tool_calls") or []:
                    fn = call.get("function") or {}
                    if not call.get("id") or not fn.get("name"):
                        continue
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": str(call["id"]),
                            "name": str(fn["name"]),
                            "input": cls._parse_json(fn.get("arguments")),
                        }
                    )
                # Anthropic rejects empty assistant content.
                if blocks:
                    out.append({"role": "assistant", "content": blocks})
                continue

            if role == "user" and content:
                out.append({"role": "user", "content": str(content)})

        return out

    @classmethod
    def max_output_tokens(cls, model: Any) -> int:
        output = getattr(getattr(model, "limit", None), "output", None)
        if isinstance(output, int) and output > 0:
            return min(output, cls.OUTPUT_TOKEN_MAX)
        return cls.OUTPUT_TOKEN_MAX

    @staticmethod
    def thinking_options(model: Any, level: Optional[str]) -> Dict[str, Any]:
        """Request fields that select ``level`` for ``model``.

        Models without reasoning support, and the ``off`` level, get no fields.
        """
        if not level or level == "off":
            return {}
        capabilities = getattr(model, "capabilities", None)
        if not getattr(capabilities, "reasoning", False):
            return {}
        if getattr(model, "api_type", "openai") == "anthropic":
            return {"thinking": {"type": "enabled", "budget_tokens": THINKING_BUDGETS[level]}}
        # OpenAI has no "minimal" effort on every model; the API reports that
        # as an unsupported value and the caller downgrades.
        return {"reasoning_effort": level}
