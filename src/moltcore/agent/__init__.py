from .agent import AgentInfo, AgentModel, AgentRegistry, default_rules

__all__ = ["AgentInfo", "AgentModel", "AgentRegistry", "default_rules"]
