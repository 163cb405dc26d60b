"""Agent definitions.

An agent is a named persona: a system prompt, sampling settings, a step
limit and the permission ruleset its tool calls are checked against.
"""

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..core.config_schema import Config
from ..core.global_paths import GlobalPath
from ..permission import PermissionRule, Ruleset, from_config, from_config_list, merge
from ..util.log import Log

log = Log.create({"service": "agent"})

AgentMode = Literal["subagent", "primary", "all"]


class AgentModel(BaseModel):
    provider_id: str
    model_id: str


class AgentInfo(BaseModel):
    """Agent configuration."""
    name: str
    description: Optional[str] = None
    mode: AgentMode = "all"
    native: bool = False
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    permission: List[PermissionRule] = Field(default_factory=list)
    model: Optional[AgentModel] = None
    prompt: Optional[str] = None
    thinking: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    steps: Optional[int] = None


PROMPT_EXPLORE = (
    "You are a file search specialist. Read files and run read-only shell commands "
    "to answer questions about the codebase quickly and accurately."
)


def default_rules() -> Ruleset:
    """Rules every agent starts from."""
    tool_output_glob = str(Path(GlobalPath.tool_output()) / "*")
    return from_config_list([
        {"permission": "*", "pattern": "*", "action": "allow"},
        {"permission": "doom_loop", "pattern": "*", "action": "ask"},
        {"permission": "external_directory", "pattern": "*", "action": "ask"},
        {"permission": "external_directory", "pattern": tool_output_glob, "action": "allow"},
        {"permission": "read", "pattern": "*.env", "action": "ask"},
        {"permission": "read", "pattern": "*.env.*", "action": "ask"},
        {"permission": "read", "pattern": "*.env.example", "action": "allow"},
    ])


class AgentRegistry:
    """Built-in agents plus overrides and custom agents from config."""

    def __init__(self, config: Optional[Config] = None) -> None:
        self._agents: Dict[str, AgentInfo] = {}
        self._default: Optional[str] = None
        self.load(config or Config())

    def load(self, config: Config) -> None:
        defaults = default_rules()
        user = from_config(config.permission)

        agents: Dict[str, AgentInfo] = {
            "build": AgentInfo(
                name="build",
                description="The default agent. Executes tools based on configured permissions.",
                mode="primary",
                native=True,
                permission=merge(defaults, user),
            ),
            "plan": AgentInfo(
                name="plan",
                description="Plan mode. Disallows edit tools and asks before running commands.",
                mode="primary",
                native=True,
                permission=merge(
                    defaults,
                    from_config_list([
                        {"permission": "edit", "pattern": "*", "action": "deny"},
                        {"permission": "bash", "pattern": "*", "action": "ask"},
                    ]),
                    user,
                ),
            ),
            "general": AgentInfo(
                name="general",
                description="General-purpose agent for researching complex questions and executing multi-step tasks.",
                mode="subagent",
                native=True,
                permission=merge(defaults, user),
            ),
            "explore": AgentInfo(
                name="explore",
                description="Fast agent specialized for exploring codebases.",
                mode="subagent",
                native=True,
                prompt=PROMPT_EXPLORE,
                permission=merge(
                    from_config_list([
                        {"permission": "*", "pattern": "*", "action": "deny"},
                        {"permission": "read", "pattern": "*", "action": "allow"},
                        {"permission": "bash", "pattern": "*", "action": "allow"},
                        {"permission": "doom_loop", "pattern": "*", "action": "ask"},
                    ]),
                    user,
                ),
            ),
        }

        for name, agent_config in config.agent.items():
            if agent_config.disable:
                agents.pop(name, None)
                continue
            agent = agents.get(name)
            if agent is None:
                agent = agents[name] = AgentInfo(name=name, permission=merge(defaults, user))
            if agent_config.model:
                provider_id, sep, model_id = agent_config.model.partition("/")
                if sep:
                    agent.model = AgentModel(provider_id=provider_id, model_id=model_id)
                else:
                    log.warn("ignoring agent model without provider", {"agent": name, "model": agent_config.model})
            if agent_config.prompt:
                agent.prompt = agent_config.prompt
            if agent_config.description:
                agent.description = agent_config.description
            if agent_config.temperature is not None:
                agent.temperature = agent_config.temperature
            if agent_config.top_p is not None:
                agent.top_p = agent_config.top_p
            if agent_config.mode:
                agent.mode = agent_config.mode
            if agent_config.steps is not None:
                agent.steps = agent_config.steps
            if agent_config.thinking:
                agent.thinking = agent_config.thinking
            if agent_config.options:
                agent.options.update(agent_config.options)
            if agent_config.permission:
                agent.permission = merge(agent.permission, from_config(agent_config.permission))

        self._agents = agents
        self._default = config.default_agent
        log.info("loaded agents", {"count": len(agents)})

    def get(self, name: str) -> Optional[AgentInfo]:
        return self._agents.get(name)

    def list(self) -> List[AgentInfo]:
        """Agents sorted by name with the default agent first."""
        default = self.default_agent()
        return sorted(self._agents.values(), key=lambda a: (a.name != default, a.name))

    def default_agent(self) -> str:
        """Name of the agent used when a turn names none.

        Raises:
            ValueError: The configured default is missing or a subagent, or
                no primary agent exists.
        """
        if self._default:
            agent = self._agents.get(self._default)
            if agent is None:
                raise ValueError(f"Default agent '{self._default}' not found")
            if agent.mode == "subagent":
                raise ValueError(f"Default agent '{self._default}' is a subagent")
            return agent.name
        for agent in self._agents.values():
            if agent.mode != "subagent":
                return agent.name
        raise ValueError("No primary agent found")
