"""Core workflow engine components"""

from .engine import WorkflowEngine
from .executors import NodeExecutor
from .parser import WorkflowParser
from .expressions import evaluate

__all__ = [
    "WorkflowEngine",
    "NodeExecutor",
    "WorkflowParser",
    "evaluate"
]
