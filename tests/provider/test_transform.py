from types import SimpleNamespace

from moltcore.provider.transform import ProviderTransform


def test_anthropic_messages_merge_tool_results() -> None:
    messages = [
        {"role": "system", "content": "ignored"},
        {"role": "user", "content": "list files"},
        {
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {"id": "call_1", "type": "function", "function": {"name": "bash", "arguments": '{"command":"ls"}'}},
                {"id": "call_2", "type": "function", "function": {"name": "read", "arguments": "not json"}},
            ],
        },
        {"role": "tool", "tool_call_id": "call_1", "content": "a.txt"},
        {"role": "tool", "tool_call_id": "call_2", "content": "boom", "is_error": True},
    ]

    converted = ProviderTransform.anthropic_messages(messages)

    assert [m["role"] for m in converted] == ["user", "assistant", "user"]
    assert converted[1]["content"][0] == {
        "type": "tool_use",
        "id": "call_1",
        "name": "bash",
        "input": {"command": "ls"},
    }
    assert converted[1]["content"][1]["input"] == {}
    results = converted[2]["content"]
    assert [r["tool_use_id"] for r in results] == ["call_1", "call_2"]
    assert results[1]["is_error"] is True


def test_anthropic_messages_skip_empty_assistant() -> None:
    converted = ProviderTransform.anthropic_messages([
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": ""},
    ])
    assert converted == [{"role": "user", "content": "hi"}]


def test_anthropic_tools_use_input_schema() -> None:
    tools = [
        {"type": "function", "function": {"name": "bash", "description": "Run", "parameters": {"type": "object"}}},
        {"type": "function", "function": {"description": "nameless"}},
    ]
    assert ProviderTransform.anthropic_tools(tools) == [
        {"name": "bash", "description": "Run", "input_schema": {"type": "object"}},
    ]
    assert ProviderTransform.anthropic_tools([]) is None


def test_thinking_options_per_api() -> None:
    reasoning = SimpleNamespace(reasoning=True)
    openai_model = SimpleNamespace(api_type="openai", capabilities=reasoning)
    anthropic_model = SimpleNamespace(api_type="anthropic", capabilities=reasoning)
    plain_model = SimpleNamespace(api_type="openai", capabilities=SimpleNamespace(reasoning=False))

    assert ProviderTransform.thinking_options(openai_model, "high") == {"reasoning_effort": "high"}
    assert ProviderTransform.thinking_options(anthropic_model, "low") == {
        "thinking": {"type": "enabled", "budget_tokens": 4096},
    }
    assert ProviderTransform.thinking_options(openai_model, "off") == {}
    assert ProviderTransform.thinking_options(plain_model, "high") == {}


def test_max_output_tokens_is_capped() -> None:
    assert ProviderTransform.max_output_tokens(SimpleNamespace(limit=SimpleNamespace(output=4096))) == 4096
    assert ProviderTransform.max_output_tokens(SimpleNamespace(limit=SimpleNamespace(output=128000))) == 32000
    assert ProviderTransform.max_output_tokens(SimpleNamespace()) == 32000
