"""Workflow and execution models"""

from .workflow import (
    Workflow, Node, Edge, NodeType, NodeStatus, NodeData,
    AIAgentNodeData, ToolNodeData, ConditionNodeData, LoopNodeData,
    TransformNodeData, KnowledgeNodeData, HumanInputNodeData,
    NODE_DATA_MODELS
)
from .execution import (
    ExecutionContext, ExecutionState, ExecutionStatus, HistoryEntry,
    ExecutionEvent, ExecutionEventType, RunRecord
)

__all__ = [
    "Workflow",
    "Node",
    "Edge",
    "NodeType",
    "NodeStatus",
    "NodeData",
    "AIAgentNodeData",
    "ToolNodeData",
    "ConditionNodeData",
    "LoopNodeData",
    "TransformNodeData",
    "KnowledgeNodeData",
    "HumanInputNodeData",
    "NODE_DATA_MODELS",
    "ExecutionContext",
    "ExecutionState",
    "ExecutionStatus",
    "HistoryEntry",
    "ExecutionEvent",
    "ExecutionEventType",
    "RunRecord"
]
