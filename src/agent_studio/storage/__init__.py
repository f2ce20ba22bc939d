"""Storage and repository interfaces"""

from .repository import (
    WorkflowRepository,
    ExecutionRepository,
    InMemoryWorkflowRepository,
    InMemoryExecutionRepository,
    JSONFileWorkflowRepository,
    JSONFileExecutionRepository
)

__all__ = [
    "WorkflowRepository",
    "ExecutionRepository",
    "InMemoryWorkflowRepository",
    "InMemoryExecutionRepository",
    "JSONFileWorkflowRepository",
    "JSONFileExecutionRepository"
]
