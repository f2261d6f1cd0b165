from .base import AgentExecutor
from .registry import AgentRegistry, AgentRunner

__all__ = ["AgentExecutor", "AgentRegistry", "AgentRunner"]
