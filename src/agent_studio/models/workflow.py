"""
工作流定义模型
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Type
from enum import Enum
from uuid import uuid4
from datetime import datetime, timezone
from collections import defaultdict, deque

from pydantic import BaseModel, ConfigDict, Field


class NodeType(Enum):
    """节点类型"""
    START = "start"
    AI_AGENT = "ai_agent"
    TOOL = "tool"
    CONDITION = "condition"
    LOOP = "loop"
    TRANSFORM = "transform"
    MERGE = "merge"
    KNOWLEDGE = "knowledge"
    HUMAN_INPUT = "human"
    END = "end"


class NodeStatus(Enum):
    """节点执行状态"""
    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"
    PAUSED = "paused"


CONDITION_OPERATORS = ("equals", "contains", "greater", "less", "regex")

TRUE_HANDLES = frozenset({"true", "yes"})
FALSE_HANDLES = frozenset({"false", "no"})
LOOP_BODY_HANDLE = "body"
LOOP_EXIT_HANDLE = "exit"


class NodeData(BaseModel):
    """节点配置基类"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    label: str = ""
    description: Optional[str] = None


class StartNodeData(NodeData):
    pass


class EndNodeData(NodeData):
    pass


class MergeNodeData(NodeData):
    pass


class AIAgentNodeData(NodeData):
    """智能体节点配置"""
    model: str = ""
    system_prompt: str = Field("", alias="systemPrompt")
    temperature: float = 0.7
    max_tokens: int = Field(2048, alias="maxTokens")
    tools: List[str] = Field(default_factory=list)


class ToolNodeData(NodeData):
    """工具节点配置，timeout 单位为毫秒"""
    tool_id: str = Field("", alias="toolId")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[int] = None


class ConditionNodeData(NodeData):
    """条件节点配置"""
    expression: str = ""
    operator: str = "equals"
    value: Any = None


class LoopNodeData(NodeData):
    """循环节点配置"""
    iterable_field: str = Field("", alias="iterableField")
    max_iterations: int = Field(100, alias="maxIterations")


class TransformNodeData(NodeData):
    """转换节点配置（沙箱表达式）"""
    code: str = ""
    output_mapping: Dict[str, str] = Field(default_factory=dict, alias="outputMapping")


class KnowledgeNodeData(NodeData):
    """知识检索节点配置"""
    knowledge_base_id: str = Field("", alias="knowledgeBaseId")
    query: str = ""
    top_k: int = Field(5, alias="topK")
    threshold: float = 0.7
    hybrid: bool = False


class HumanInputNodeData(NodeData):
    """人工输入节点配置"""
    prompt: str = ""
    input_type: str = Field("text", alias="inputType")
    options: List[str] = Field(default_factory=list)
    variable_name: str = Field("", alias="variableName")


NODE_DATA_MODELS: Dict[NodeType, Type[NodeData]] = {
    NodeType.START: StartNodeData,
    NodeType.AI_AGENT: AIAgentNodeData,
    NodeType.TOOL: ToolNodeData,
    NodeType.CONDITION: ConditionNodeData,
    NodeType.LOOP: LoopNodeData,
    NodeType.TRANSFORM: TransformNodeData,
    NodeType.MERGE: MergeNodeData,
    NodeType.KNOWLEDGE: KnowledgeNodeData,
    NodeType.HUMAN_INPUT: HumanInputNodeData,
    NodeType.END: EndNodeData,
}


@dataclass
class Node:
    """工作流节点"""
    id: str
    type: NodeType
    data: Optional[NodeData] = None
    status: NodeStatus = NodeStatus.IDLE
    position: Dict[str, float] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """规范化节点类型与配置"""
        if not isinstance(self.type, NodeType):
            self.type = NodeType(self.type)

        model_cls = NODE_DATA_MODELS[self.type]
        if self.data is None:
            self.data = model_cls()
        elif isinstance(self.data, dict):
            self.data = model_cls.model_validate(self.data)
        elif not isinstance(self.data, model_cls):
            raise ValueError(
                f"Node '{self.id}' of type {self.type.value} requires "
                f"{model_cls.__name__}, got {type(self.data).__name__}"
            )

    @property
    def label(self) -> str:
        return self.data.label or self.id


@dataclass
class Edge:
    """工作流边"""
    id: str = field(default_factory=lambda: str(uuid4()))
    source: str = ""  # 源节点ID
    target: str = ""  # 目标节点ID
    handle: Optional[str] = None
    label: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def path(self) -> Optional[str]:
        """有效的分支标识：优先 handle，其次 label"""
        value = self.handle or self.label
        return value.strip().lower() if value else None


@dataclass
class Workflow:
    """工作流定义"""
    id: str = field(default_factory=lambda: str(uuid4()))
    name: str = ""
    version: str = "1.0.0"
    description: Optional[str] = None
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get_node(self, node_id: str) -> Optional[Node]:
        """根据ID获取节点"""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def find_start_nodes(self) -> List[Node]:
        return [node for node in self.nodes if node.type == NodeType.START]

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def incoming_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.target == node_id]

    def condition_edges(self, node_id: str, result: bool) -> List[Edge]:
        """条件节点在给定布尔结果下的出边"""
        handles = TRUE_HANDLES if result else FALSE_HANDLES
        return [edge for edge in self.outgoing_edges(node_id) if edge.path in handles]

    def loop_body_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.outgoing_edges(node_id) if edge.path == LOOP_BODY_HANDLE]

    def loop_exit_edges(self, node_id: str) -> List[Edge]:
        return [
            edge for edge in self.outgoing_edges(node_id)
            if edge.path != LOOP_BODY_HANDLE
        ]

    def validate(self) -> List[str]:
        """验证工作流定义的合法性"""
        errors = []

        # 检查节点ID唯一性
        node_ids = [node.id for node in self.nodes]
        if len(node_ids) != len(set(node_ids)):
            errors.append("Duplicate node IDs found")

        start_nodes = self.find_start_nodes()
        if not start_nodes:
            errors.append("Workflow must have a START node")
        elif len(start_nodes) > 1:
            errors.append(
                f"Workflow can only have one START node, found {len(start_nodes)}"
            )

        # 检查边的合法性
        known_ids = set(node_ids)
        for edge in self.edges:
            if edge.source not in known_ids:
                errors.append(f"Edge source '{edge.source}' not found in nodes")
            if edge.target not in known_ids:
                errors.append(f"Edge target '{edge.target}' not found in nodes")

        for node in self.nodes:
            errors.extend(self._validate_connections(node))
            errors.extend(self._validate_node_config(node))

        if self._has_cycle():
            errors.append("Workflow contains cycles")

        return errors

    def _validate_connections(self, node: Node) -> List[str]:
        """检查节点的连接约束"""
        errors = []
        outgoing = self.outgoing_edges(node.id)

        if node.type == NodeType.START and self.incoming_edges(node.id):
            errors.append(f"START node '{node.id}' should not have incoming connections")

        if node.type == NodeType.END and outgoing:
            errors.append(f"END node '{node.id}' should not have outgoing connections")

        if node.type == NodeType.CONDITION:
            true_edges = self.condition_edges(node.id, True)
            false_edges = self.condition_edges(node.id, False)
            if len(true_edges) != 1:
                errors.append(
                    f"Condition node '{node.id}' must have exactly one 'true' edge, "
                    f"found {len(true_edges)}"
                )
            if len(false_edges) != 1:
                errors.append(
                    f"Condition node '{node.id}' must have exactly one 'false' edge, "
                    f"found {len(false_edges)}"
                )
            unresolved = [
                edge.id for edge in outgoing
                if edge.path not in TRUE_HANDLES and edge.path not in FALSE_HANDLES
            ]
            if unresolved:
                errors.append(
                    f"Condition node '{node.id}' has edges without a true/false handle: {unresolved}"
                )

        if node.type == NodeType.LOOP:
            body_edges = self.loop_body_edges(node.id)
            if len(body_edges) > 1:
                errors.append(f"Loop node '{node.id}' can only have one 'body' edge")
            elif body_edges:
                errors.extend(self._validate_loop_body(node, body_edges[0]))

        return errors

    def _validate_loop_body(self, node: Node, body_edge: Edge) -> List[str]:
        """循环体内的合并节点只能等待循环体内部的边"""
        unreachable = set(self.find_unreachable_nodes())
        body_nodes = set()
        queue = deque([body_edge.target])
        while queue:
            node_id = queue.popleft()
            if node_id in body_nodes or node_id == node.id:
                continue
            body_nodes.add(node_id)
            for edge in self.outgoing_edges(node_id):
                queue.append(edge.target)

        errors = []
        for merge in self.nodes:
            if merge.type != NodeType.MERGE or merge.id not in body_nodes:
                continue
            incoming = self.incoming_edges(merge.id)
            if len(incoming) < 2:
                continue
            outside = [
                edge.source for edge in incoming
                if edge.id != body_edge.id and edge.source not in body_nodes
                and edge.source not in unreachable
            ]
            if outside:
                errors.append(
                    f"Loop node '{node.id}' body reaches merge node '{merge.id}' "
                    f"which also waits on {sorted(set(outside))} outside the loop body"
                )
        return errors

    def _validate_node_config(self, node: Node) -> List[str]:
        """检查节点必需配置"""
        errors = []
        data = node.data

        if node.type == NodeType.AI_AGENT:
            if not data.model:
                errors.append(f"AI Agent '{node.label}' must have a model selected")
            if not 0 <= data.temperature <= 2:
                errors.append(f"AI Agent '{node.label}' temperature must be between 0 and 2")
            if data.max_tokens < 1:
                errors.append(f"AI Agent '{node.label}' max tokens must be at least 1")

        elif node.type == NodeType.TOOL:
            if not data.tool_id:
                errors.append(f"Tool node '{node.label}' must have a tool selected")

        elif node.type == NodeType.CONDITION:
            if not data.expression or not data.operator:
                errors.append(f"Condition node '{node.label}' must have an expression and operator")
            elif data.operator not in CONDITION_OPERATORS:
                errors.append(f"Condition node '{node.label}' has unknown operator '{data.operator}'")

        elif node.type == NodeType.LOOP:
            if data.max_iterations < 1:
                errors.append(f"Loop node '{node.label}' max iterations must be at least 1")

        elif node.type == NodeType.TRANSFORM:
            if not data.code and not data.output_mapping:
                errors.append(f"Transform node '{node.label}' must have a transformation expression")

        elif node.type == NodeType.HUMAN_INPUT:
            if not data.prompt:
                errors.append(f"Human Input node '{node.label}' must have a prompt")

        return errors

    def find_unreachable_nodes(self) -> List[str]:
        """找出从开始节点不可达的节点"""
        start_nodes = self.find_start_nodes()
        if not start_nodes:
            return []

        reachable = set()
        queue = deque([start_nodes[0].id])
        while queue:
            node_id = queue.popleft()
            if node_id in reachable:
                continue
            reachable.add(node_id)
            for edge in self.outgoing_edges(node_id):
                if edge.target not in reachable:
                    queue.append(edge.target)

        return [node.id for node in self.nodes if node.id not in reachable]

    def _has_cycle(self) -> bool:
        """检测是否存在环"""
        # 使用拓扑排序检测环
        adj = defaultdict(list)
        in_degree = {node.id: 0 for node in self.nodes}

        for edge in self.edges:
            if edge.source not in in_degree or edge.target not in in_degree:
                continue
            adj[edge.source].append(edge.target)
            in_degree[edge.target] += 1

        queue = deque([node_id for node_id, degree in in_degree.items() if degree == 0])
        visited = 0

        while queue:
            node_id = queue.popleft()
            visited += 1

            for neighbor in adj[node_id]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        return visited != len(in_degree)
