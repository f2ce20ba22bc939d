"""
Agent Studio Runtime - 可视化 AI 工作流执行引擎
"""

__version__ = "0.1.0"

from .core.engine import WorkflowEngine
from .core.parser import WorkflowParser
from .models.workflow import Workflow, Node, Edge, NodeType, NodeStatus
from .models.execution import ExecutionState, ExecutionStatus, ExecutionContext, HistoryEntry

__all__ = [
    "WorkflowEngine",
    "WorkflowParser",
    "Workflow",
    "Node",
    "Edge",
    "NodeType",
    "NodeStatus",
    "ExecutionState",
    "ExecutionStatus",
    "ExecutionContext",
    "HistoryEntry"
]
