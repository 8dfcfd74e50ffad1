from .coordinator import AgentCoordinator
from .executor import WorkBotExecutor
from .master import MasterCoordinator

__all__ = ["AgentCoordinator", "MasterCoordinator", "WorkBotExecutor"]
