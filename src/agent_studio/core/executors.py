"""
节点执行器

每种节点类型对应一个执行器，engine 在构造时检查执行器表是否覆盖了全部 NodeType。
"""
import json
import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from ..models.workflow import Node, NodeType
from ..exceptions import NodeExecutionError, ExpressionError
from ..integrations.model_client import ChatCompletionRequest, ChatMessage
from ..knowledge.embeddings import Embedder, SimulatedEmbedder, ModelClientEmbedder
from ..knowledge.search import SemanticSearch, SearchOptions
from .expressions import evaluate

if TYPE_CHECKING:
    from .engine import WorkflowEngine


logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_HUMAN_INPUT_VARIABLE = "human_input"


class NodeExecutor:
    """节点执行器基类"""

    async def execute(self, node: Node, input_data: Any, engine: 'WorkflowEngine') -> Any:
        """执行节点，返回节点输出"""
        raise NotImplementedError


class PassthroughNodeExecutor(NodeExecutor):
    """开始/结束节点，原样传递输入"""

    async def execute(self, node: Node, input_data: Any, engine: 'WorkflowEngine') -> Any:
        return input_data


class AIAgentNodeExecutor(NodeExecutor):
    """智能体节点执行器"""

    async def execute(self, node: Node, input_data: Any, engine: 'WorkflowEngine') -> Any:
        """以流式方式调用模型，拼接全部片段作为输出"""
        if engine.model_client is None:
            raise NodeExecutionError(node.id, "No model client configured")

        data = node.data
        user_content = input_data if isinstance(input_data, str) else json.dumps(input_data, default=str)
        request = ChatCompletionRequest(
            model=data.model or engine.settings.default_model,
            messages=[
                ChatMessage(role="system", content=data.system_prompt or DEFAULT_SYSTEM_PROMPT),
                ChatMessage(role="user", content=user_content),
            ],
            temperature=data.temperature,
            max_tokens=data.max_tokens,
        )

        fragments = []
        async for fragment in engine.model_client.stream_chat_completion(request):
            engine.check_cancelled()
            fragments.append(fragment)

        logger.debug(f"Agent node {node.id} received {len(fragments)} fragments")
        return "".join(fragments)


class ToolNodeExecutor(NodeExecutor):
    """工具节点执行器"""

    async def execute(self, node: Node, input_data: Any, engine: 'WorkflowEngine') -> Any:
        """执行工具节点"""
        if engine.tool_registry is None:
            raise NodeExecutionError(node.id, "No tool registry configured")

        tool_id = node.data.tool_id
        tool = await engine.tool_registry.get_tool(tool_id)
        if tool is None:
            raise NodeExecutionError(node.id, f"Tool not found: {tool_id}")

        runtime = input_data if isinstance(input_data, dict) else {"input": input_data}
        params = {**node.data.parameters, **runtime}

        result = await engine.tool_registry.invoke_tool(tool_id, params, node.data.timeout)

        return {
            "tool": tool_id,
            "tool_name": tool.name,
            "result": result,
            "input": params,
            "executed_at": datetime.now(timezone.utc).isoformat(),
        }


def extract_path(data: Any, path: str) -> Any:
    """按点分路径从字典中取值，非字典输入原样返回"""
    if not isinstance(data, dict):
        return data

    value = data
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
    return value


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def compare(actual: Any, operator: str, expected: Any) -> bool:
    """条件比较"""
    if operator == "equals":
        if actual == expected:
            return True
        left, right = _to_number(actual), _to_number(expected)
        return left is not None and right is not None and left == right

    if operator == "contains":
        if isinstance(actual, (list, tuple, set)):
            return expected in actual
        if actual is None:
            return False
        return str(expected) in str(actual)

    if operator in ("greater", "less"):
        left, right = _to_number(actual), _to_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == "greater" else left < right

    if operator == "regex":
        if actual is None:
            return False
        return re.search(str(expected), str(actual)) is not None

    raise ValueError(f"Unknown condition operator: {operator}")


class ConditionNodeExecutor(NodeExecutor):
    """条件节点执行器，输出中附带 condition_result 供 engine 选择分支"""

    async def execute(self, node: Node, input_data: Any, engine: 'WorkflowEngine') -> Any:
        data = node.data
        actual = extract_path(input_data, data.expression)

        try:
            result = compare(actual, data.operator, data.value)
        except re.error as e:
            raise NodeExecutionError(node.id, f"Invalid regex '{data.value}': {e}", e) from e

        base = dict(input_data) if isinstance(input_data, dict) else {"value": input_data}
        base["condition_result"] = result
        base["condition_path"] = "true" if result else "false"
        logger.debug(f"Condition {node.id}: {actual!r} {data.operator} {data.value!r} -> {result}")
        return base


class LoopNodeExecutor(NodeExecutor):
    """循环节点执行器，按顺序对每个元素执行 body 分支"""

    async def execute(self, node: Node, input_data: Any, engine: 'WorkflowEngine') -> Any:
        data = node.data
        if data.iterable_field:
            items = extract_path(input_data, data.iterable_field)
        else:
            items = input_data

        if not isinstance(items, list):
            raise NodeExecutionError(
                node.id,
                f"Loop input must be a list, got {type(items).__name__}"
            )

        body_edges = engine.workflow.loop_body_edges(node.id)
        if not body_edges:
            return items

        limit = min(data.max_iterations, engine.settings.max_loop_iterations)
        if len(items) > limit:
            logger.warning(f"Loop {node.id} truncated to {limit} of {len(items)} items")

        results: List[Any] = []
        for item in items[:limit]:
            results.append(await engine.follow_edge(body_edges[0], item))
        return results


class TransformNodeExecutor(NodeExecutor):
    """转换节点执行器

    code 的结果作为 output_mapping 中表达式的 input；只有 output_mapping 时直接使用节点输入。
    """

    async def execute(self, node: Node, input_data: Any, engine: 'WorkflowEngine') -> Any:
        data = node.data
        names = {
            "input": input_data,
            "variables": engine.context.variables,
            "outputs": engine.context.latest_outputs(),
        }

        try:
            result = input_data
            if data.code:
                result = evaluate(data.code, names)

            if data.output_mapping:
                mapped_names = dict(names, input=result)
                return {
                    key: evaluate(expression, mapped_names)
                    for key, expression in data.output_mapping.items()
                }
            return result
        except ExpressionError as e:
            raise NodeExecutionError(node.id, str(e), e) from e


class MergeNodeExecutor(NodeExecutor):
    """合并节点执行器，读取未失效入边上游节点的最新输出"""

    async def execute(self, node: Node, input_data: Any, engine: 'WorkflowEngine') -> Any:
        sources: List[str] = []
        for edge in engine.workflow.incoming_edges(node.id):
            if engine.is_edge_dead(edge.id) or edge.source in sources:
                continue
            if engine.context.has_output(edge.source):
                sources.append(edge.source)
        return merge_outputs([engine.context.get_node_output(source) for source in sources])


def merge_outputs(outputs: List[Any]) -> Any:
    """全为字典时浅合并，否则拼接列表、追加标量"""
    if outputs and all(isinstance(output, dict) for output in outputs):
        merged: Dict[str, Any] = {}
        for output in outputs:
            merged.update(output)
        return merged

    merged_list: List[Any] = []
    for output in outputs:
        if isinstance(output, list):
            merged_list.extend(output)
        else:
            merged_list.append(output)
    return merged_list


class KnowledgeNodeExecutor(NodeExecutor):
    """知识检索节点执行器"""

    async def execute(self, node: Node, input_data: Any, engine: 'WorkflowEngine') -> Any:
        data = node.data
        query = input_data if isinstance(input_data, str) and input_data.strip() else data.query
        if not query:
            raise NodeExecutionError(node.id, "Knowledge node requires a query")

        documents = []
        if engine.knowledge_store is not None:
            documents = await engine.knowledge_store.get_all_documents()
        if data.knowledge_base_id:
            documents = [doc for doc in documents if doc.knowledge_base_id == data.knowledge_base_id]

        if not documents:
            return {"query": query, "results": [], "message": "No documents in knowledge base"}

        embedder = self._resolve_embedder(engine)
        chunks = []
        for doc in documents:
            for chunk in doc.chunks:
                if not chunk.embedding:
                    chunk = replace(chunk, embedding=await embedder.embed(chunk.content))
                chunks.append(chunk)

        search = SemanticSearch(embedder)
        options = SearchOptions(top_k=data.top_k, threshold=data.threshold)
        if data.hybrid:
            results = await search.hybrid_search(query, chunks, documents, options)
        else:
            results = await search.search(query, chunks, documents, options)

        return {"query": query, "results": [result.to_dict() for result in results]}

    @staticmethod
    def _resolve_embedder(engine: 'WorkflowEngine') -> Embedder:
        """查询向量与分块向量必须来自同一个 embedder"""
        if engine.embedder is not None:
            return engine.embedder
        if engine.knowledge_store is not None and engine.knowledge_store.embedder is not None:
            return engine.knowledge_store.embedder
        if engine.model_client is not None:
            return ModelClientEmbedder(engine.model_client, engine.settings.embedding_model)
        return SimulatedEmbedder()


class HumanInputNodeExecutor(NodeExecutor):
    """人工输入节点执行器，暂停执行直到 resume 提供输入"""

    async def execute(self, node: Node, input_data: Any, engine: 'WorkflowEngine') -> Any:
        gate = await engine.pause(node.id)
        value = await gate

        engine.context.set_variable(node.data.variable_name or DEFAULT_HUMAN_INPUT_VARIABLE, value)
        return value


def default_executors() -> Dict[NodeType, NodeExecutor]:
    """默认执行器表"""
    passthrough = PassthroughNodeExecutor()
    return {
        NodeType.START: passthrough,
        NodeType.AI_AGENT: AIAgentNodeExecutor(),
        NodeType.TOOL: ToolNodeExecutor(),
        NodeType.CONDITION: ConditionNodeExecutor(),
        NodeType.LOOP: LoopNodeExecutor(),
        NodeType.TRANSFORM: TransformNodeExecutor(),
        NodeType.MERGE: MergeNodeExecutor(),
        NodeType.KNOWLEDGE: KnowledgeNodeExecutor(),
        NodeType.HUMAN_INPUT: HumanInputNodeExecutor(),
        NodeType.END: passthrough,
    }
