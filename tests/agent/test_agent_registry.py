import pytest

from moltcore.agent import AgentRegistry
from moltcore.core.config_schema import Config
from moltcore.permission import evaluate


def test_builtin_agents_and_default() -> None:
    registry = AgentRegistry()

    assert registry.default_agent() == "build"
    assert [a.name for a in registry.list()] == ["build", "explore", "general", "plan"]
    build = registry.get("build")
    assert build is not None
    assert evaluate("bash", "ls", build.permission).action == "allow"
    assert evaluate("doom_loop", "bash", build.permission).action == "ask"
    assert evaluate("read", "/repo/.env", build.permission).action == "ask"
    assert evaluate("read", "/repo/.env.example", build.permission).action == "allow"


def test_plan_and_explore_are_restricted() -> None:
    registry = AgentRegistry()
    plan = registry.get("plan")
    explore = registry.get("explore")
    assert plan is not None and explore is not None

    assert evaluate("edit", "src/app.py", plan.permission).action == "deny"
    assert evaluate("bash", "ls", plan.permission).action == "ask"
    assert evaluate("webfetch", "https://example.com", explore.permission).action == "deny"
    assert evaluate("read", "README.md", explore.permission).action == "allow"


def test_config_overrides_and_custom_agents() -> None:
    config = Config.model_validate({
        "permission": {"bash": {"rm *": "deny"}},
        "agent": {
            "build": {"model": "anthropic/claude-sonnet-4-5", "steps": 5, "thinking": "high"},
            "reviewer": {"prompt": "Review code.", "mode": "primary", "permission": {"edit": "deny"}},
            "general": {"disable": True},
        },
        "default_agent": "reviewer",
    })
    registry = AgentRegistry(config)

    build = registry.get("build")
    assert build is not None
    assert build.model is not None
    assert (build.model.provider_id, build.model.model_id) == ("anthropic", "claude-sonnet-4-5")
    assert build.steps == 5
    assert build.thinking == "high"
    assert evaluate("bash", "rm -rf /", build.permission).action == "deny"

    reviewer = registry.get("reviewer")
    assert reviewer is not None
    assert reviewer.prompt == "Review code."
    assert evaluate("edit", "x.py", reviewer.permission).action == "deny"
    assert registry.get("general") is None
    assert registry.default_agent() == "reviewer"
    assert registry.list()[0].name == "reviewer"


def test_invalid_default_agent() -> None:
    with pytest.raises(ValueError):
        AgentRegistry(Config(default_agent="explore")).default_agent()
    with pytest.raises(ValueError):
        AgentRegistry(Config(default_agent="missing")).default_agent()
