"""
Pytest 配置和公共 fixtures
"""
import pytest

from agent_studio.models.workflow import Workflow, Node, Edge
from agent_studio.integrations import MockModelClient, LocalToolRegistry
from agent_studio.storage import InMemoryWorkflowRepository, InMemoryExecutionRepository


# 配置 pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


@pytest.fixture
def build_workflow():
    """按 (id, type, data) 和 (source, target, handle) 元组构造工作流"""
    def _build(nodes, edges, name="Test Workflow"):
        return Workflow(
            id="test-workflow",
            name=name,
            nodes=[
                Node(id=spec[0], type=spec[1], data=spec[2] if len(spec) > 2 else None)
                for spec in nodes
            ],
            edges=[
                Edge(
                    id=f"e{index}",
                    source=spec[0],
                    target=spec[1],
                    handle=spec[2] if len(spec) > 2 else None
                )
                for index, spec in enumerate(edges)
            ],
        )
    return _build


@pytest.fixture
def agent_workflow(build_workflow) -> Workflow:
    """开始 -> 智能体 -> 结束"""
    return build_workflow(
        nodes=[
            ("start", "start"),
            ("agent", "ai_agent", {
                "label": "Assistant",
                "model": "gpt-4o-mini",
                "systemPrompt": "You are terse.",
                "temperature": 0.2,
                "maxTokens": 128,
            }),
            ("end", "end"),
        ],
        edges=[("start", "agent"), ("agent", "end")],
    )


@pytest.fixture
def mock_model_client() -> MockModelClient:
    return MockModelClient(fragments=["Hello", ", ", "world"])


@pytest.fixture
def tool_registry() -> LocalToolRegistry:
    return LocalToolRegistry()


@pytest.fixture
def workflow_repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def execution_repository() -> InMemoryExecutionRepository:
    return InMemoryExecutionRepository()


@pytest.fixture
def sample_workflow_document() -> dict:
    """camelCase 格式的工作流文档"""
    return {
        "workflow": {
            "id": "support-flow",
            "name": "Support Flow",
            "version": "1.2.0",
            "description": "Routes support requests",
            "nodes": [
                {"id": "start", "type": "start", "label": "Start", "position": {"x": 0, "y": 0}},
                {
                    "id": "classify",
                    "type": "condition",
                    "data": {"expression": "priority", "operator": "greater", "value": 3},
                },
                {
                    "id": "agent",
                    "type": "ai_agent",
                    "data": {
                        "label": "Escalation Agent",
                        "model": "claude-3-haiku",
                        "systemPrompt": "Summarize the ticket.",
                        "maxTokens": 256,
                    },
                },
                {
                    "id": "lookup",
                    "type": "tool",
                    "config": {
                        "toolId": "text_transform",
                        "parameters": {"operation": "uppercase"},
                        "timeout": 5000,
                    },
                },
                {"id": "end", "type": "end"},
            ],
            "edges": [
                {"id": "e1", "source": "start", "target": "classify"},
                {"id": "e2", "source": "classify", "target": "agent", "sourceHandle": "true"},
                {"id": "e3", "from": "classify", "to": "lookup", "label": "false"},
                {"id": "e4", "source": "agent", "target": "end"},
                {"id": "e5", "source": "lookup", "target": "end"},
            ],
        }
    }
