"""
工作流执行引擎测试
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from agent_studio.core.engine import WorkflowEngine
from agent_studio.core.executors import PassthroughNodeExecutor
from agent_studio.exceptions import (
    WorkflowEngineError, GraphError, NodeExecutionError,
    WorkflowCancelledError, StateTransitionError, ToolValidationError
)
from agent_studio.models.workflow import NodeType, NodeStatus
from agent_studio.models.execution import ExecutionStatus
from agent_studio.integrations import MockModelClient, BuiltinTools, EventBus
from agent_studio.integrations.event_bus import EXECUTION_TOPIC, NODE_TOPIC
from agent_studio.knowledge import InMemoryKnowledgeStore, ModelClientEmbedder


def node_ids(engine):
    return [entry.node_id for entry in engine.history]


class TestLinearExecution:
    """顺序执行测试"""

    @pytest.mark.asyncio
    async def test_agent_workflow_streams_response(self, agent_workflow, mock_model_client):
        """测试智能体节点拼接流式片段"""
        engine = WorkflowEngine(agent_workflow, model_client=mock_model_client)

        result = await engine.start("Hi there")

        assert result == "Hello, world"
        state = engine.get_state()
        assert state.status == ExecutionStatus.COMPLETED
        assert node_ids(engine) == ["start", "agent", "end"]
        assert all(status == NodeStatus.COMPLETED for status in state.node_statuses.values())
        assert engine.context.get_node_output("agent") == "Hello, world"

        request = mock_model_client.requests[0]
        assert request.model == "gpt-4o-mini"
        assert request.temperature == 0.2
        assert request.max_tokens == 128
        assert [m.role for m in request.messages] == ["system", "user"]
        assert request.messages[0].content == "You are terse."
        assert request.messages[1].content == "Hi there"

    @pytest.mark.asyncio
    async def test_agent_serializes_structured_input(self, agent_workflow, mock_model_client):
        engine = WorkflowEngine(agent_workflow, model_client=mock_model_client)

        await engine.start({"question": "status", "count": 2})

        assert mock_model_client.requests[0].messages[1].content == '{"question": "status", "count": 2}'

    @pytest.mark.asyncio
    async def test_agent_uses_default_prompt(self, build_workflow):
        workflow = build_workflow(
            nodes=[("start", "start"), ("agent", "ai_agent", {"model": "gpt-4o"})],
            edges=[("start", "agent")],
        )
        client = MockModelClient()
        engine = WorkflowEngine(workflow, model_client=client)

        result = await engine.start("ping")

        assert result == "Echo: ping"
        assert client.requests[0].messages[0].content == "You are a helpful assistant."

    @pytest.mark.asyncio
    async def test_input_seeds_variables(self, agent_workflow, mock_model_client):
        engine = WorkflowEngine(agent_workflow, model_client=mock_model_client)

        await engine.start("Hi there")

        assert engine.context.get_variable("input") == "Hi there"
        assert engine.get_state().variables["input"] == "Hi there"

    @pytest.mark.asyncio
    async def test_history_entries_have_timing(self, agent_workflow, mock_model_client):
        engine = WorkflowEngine(agent_workflow, model_client=mock_model_client)

        await engine.start("Hi there")

        for entry in engine.history:
            assert entry.finished_at is not None
            assert entry.duration_ms >= 0
            assert entry.error is None
        assert engine.history[1].input == "Hi there"
        assert engine.history[1].output == "Hello, world"


class TestConditionRouting:
    """条件分支测试"""

    @pytest.fixture
    def condition_workflow(self, build_workflow):
        return build_workflow(
            nodes=[
                ("start", "start"),
                ("check", "condition", {"expression": "value", "operator": "equals", "value": 5}),
                ("yes", "transform", {"code": "'matched'"}),
                ("no", "transform", {"code": "'other'"}),
                ("end", "end"),
            ],
            edges=[
                ("start", "check"),
                ("check", "yes", "true"),
                ("check", "no", "false"),
                ("yes", "end"),
                ("no", "end"),
            ],
        )

    @pytest.mark.asyncio
    async def test_true_branch(self, condition_workflow):
        engine = WorkflowEngine(condition_workflow)

        result = await engine.start({"value": 5})

        assert result == "matched"
        assert node_ids(engine) == ["start", "check", "yes", "end"]
        assert engine.get_state().node_statuses["no"] == NodeStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_false_branch(self, condition_workflow):
        engine = WorkflowEngine(condition_workflow)

        result = await engine.start({"value": 6})

        assert result == "other"
        assert engine.get_state().node_statuses["yes"] == NodeStatus.SKIPPED
        assert engine.get_state().node_statuses["end"] == NodeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_numeric_string_equals(self, condition_workflow):
        engine = WorkflowEngine(condition_workflow)

        assert await engine.start({"value": "5"}) == "matched"

    @pytest.mark.asyncio
    async def test_condition_output_shape(self, condition_workflow):
        engine = WorkflowEngine(condition_workflow)

        await engine.start({"value": 5, "user": "ada"})

        output = engine.context.get_node_output("check")
        assert output == {
            "value": 5,
            "user": "ada",
            "condition_result": True,
            "condition_path": "true",
        }

    @pytest.mark.asyncio
    async def test_skip_propagates_downstream(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("check", "condition", {"expression": "n", "operator": "greater", "value": 10}),
                ("big", "transform", {"code": "'big'"}),
                ("small", "transform", {"code": "'small'"}),
                ("small_end", "end"),
                ("big_end", "end"),
            ],
            edges=[
                ("start", "check"),
                ("check", "big", "yes"),
                ("check", "small", "no"),
                ("small", "small_end"),
                ("big", "big_end"),
            ],
        )
        engine = WorkflowEngine(workflow)

        assert await engine.start({"n": 42}) == "big"

        statuses = engine.get_state().node_statuses
        assert statuses["small"] == NodeStatus.SKIPPED
        assert statuses["small_end"] == NodeStatus.SKIPPED
        assert statuses["big_end"] == NodeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_skipped_branch_does_not_block_merge(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("check", "condition", {"expression": "vip", "operator": "equals", "value": True}),
                ("a", "transform", {"code": "{'path': 'vip'}"}),
                ("b", "transform", {"code": "{'path': 'standard'}"}),
                ("merge", "merge"),
                ("end", "end"),
            ],
            edges=[
                ("start", "check"),
                ("check", "a", "true"),
                ("check", "b", "false"),
                ("a", "merge"),
                ("b", "merge"),
                ("merge", "end"),
            ],
        )
        engine = WorkflowEngine(workflow)

        result = await engine.start({"vip": True})

        assert result == {"path": "vip"}
        assert engine.get_state().node_statuses["b"] == NodeStatus.SKIPPED
        assert node_ids(engine).count("merge") == 1


class TestLoopExecution:
    """循环节点测试"""

    @pytest.mark.asyncio
    async def test_loop_respects_max_iterations(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("loop", "loop", {"maxIterations": 5}),
                ("double", "transform", {"code": "input * 2"}),
                ("end", "end"),
            ],
            edges=[("start", "loop"), ("loop", "double", "body"), ("loop", "end")],
        )
        engine = WorkflowEngine(workflow)

        result = await engine.start(list(range(12)))

        assert result == [0, 2, 4, 6, 8]
        assert node_ids(engine).count("double") == 5
        assert engine.context.get_node_outputs("double") == [0, 2, 4, 6, 8]

    @pytest.mark.asyncio
    async def test_loop_reads_iterable_field(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("loop", "loop", {"iterableField": "order.items"}),
                ("label", "transform", {"code": "input['sku'].upper()"}),
            ],
            edges=[("start", "loop"), ("loop", "label", "body")],
        )
        engine = WorkflowEngine(workflow)

        result = await engine.start({"order": {"items": [{"sku": "a1"}, {"sku": "b2"}]}})

        assert result == ["A1", "B2"]

    @pytest.mark.asyncio
    async def test_loop_without_body_returns_items(self, build_workflow):
        workflow = build_workflow(
            nodes=[("start", "start"), ("loop", "loop", {"iterableField": "items"}), ("end", "end")],
            edges=[("start", "loop"), ("loop", "end", "exit")],
        )
        engine = WorkflowEngine(workflow)

        assert await engine.start({"items": [1, 2, 3]}) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_loop_rejects_non_list(self, build_workflow):
        workflow = build_workflow(
            nodes=[("start", "start"), ("loop", "loop")],
            edges=[("start", "loop")],
        )
        engine = WorkflowEngine(workflow)

        with pytest.raises(NodeExecutionError) as exc_info:
            await engine.start("not a list")

        assert exc_info.value.node_id == "loop"
        assert engine.get_state().status == ExecutionStatus.ERROR


class TestFanOutAndMerge:
    """并发分支与合并测试"""

    @pytest.fixture
    def diamond_workflow(self, build_workflow):
        return build_workflow(
            nodes=[
                ("start", "start"),
                ("a", "transform", {"code": "{'x': 1}"}),
                ("b", "transform", {"code": "{'y': 2}"}),
                ("merge", "merge"),
                ("end", "end"),
            ],
            edges=[
                ("start", "a"),
                ("start", "b"),
                ("a", "merge"),
                ("b", "merge"),
                ("merge", "end"),
            ],
        )

    @pytest.mark.asyncio
    async def test_merge_runs_once(self, diamond_workflow):
        engine = WorkflowEngine(diamond_workflow)

        result = await engine.start(None)

        assert result == {"x": 1, "y": 2}
        assert node_ids(engine).count("merge") == 1
        assert node_ids(engine).count("end") == 1
        assert node_ids(engine)[0] == "start"

    @pytest.mark.asyncio
    async def test_merge_concatenates_lists(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("a", "transform", {"code": "[1, 2]"}),
                ("b", "transform", {"code": "3"}),
                ("merge", "merge"),
            ],
            edges=[("start", "a"), ("start", "b"), ("a", "merge"), ("b", "merge")],
        )
        engine = WorkflowEngine(workflow)

        assert await engine.start(None) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_independent_leaves_return_list(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("a", "transform", {"code": "'left'"}),
                ("b", "transform", {"code": "'right'"}),
            ],
            edges=[("start", "a"), ("start", "b")],
        )
        engine = WorkflowEngine(workflow)

        assert await engine.start(None) == ["left", "right"]

    @pytest.mark.asyncio
    async def test_branch_failure_cancels_siblings(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("broken", "transform", {"code": "1 / 0"}),
                ("slow", "ai_agent", {"model": "gpt-4o-mini"}),
                ("end", "end"),
            ],
            edges=[("start", "broken"), ("start", "slow"), ("slow", "end")],
        )
        client = MockModelClient(fragments=["x"] * 50, delay=0.01)
        engine = WorkflowEngine(workflow, model_client=client)

        with pytest.raises(NodeExecutionError) as exc_info:
            await engine.start("go")

        assert exc_info.value.node_id == "broken"
        assert engine.get_state().status == ExecutionStatus.ERROR
        assert "end" not in node_ids(engine)

    @pytest.mark.asyncio
    async def test_merge_ignores_unreachable_inputs(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("a", "transform", {"code": "{'x': 1}"}),
                ("orphan", "transform", {"code": "{'y': 2}"}),
                ("merge", "merge"),
                ("end", "end"),
            ],
            edges=[("start", "a"), ("a", "merge"), ("orphan", "merge"), ("merge", "end")],
        )
        assert workflow.validate() == []
        engine = WorkflowEngine(workflow)

        result = await asyncio.wait_for(engine.start("x"), 2)

        assert result == {"x": 1}
        assert "orphan" not in node_ids(engine)
        assert engine.get_state().node_statuses["merge"] == NodeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_loop_body_joining_exit_path_is_rejected(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("loop", "loop"),
                ("body", "transform", {"code": "input * 2"}),
                ("merge", "merge"),
                ("end", "end"),
            ],
            edges=[
                ("start", "loop"),
                ("loop", "body", "body"),
                ("body", "merge"),
                ("loop", "merge", "exit"),
                ("merge", "end"),
            ],
        )
        engine = WorkflowEngine(workflow)

        with pytest.raises(GraphError) as exc_info:
            await asyncio.wait_for(engine.start([1, 2, 3]), 2)

        assert any("body reaches merge node 'merge'" in error for error in exc_info.value.errors)
        assert engine.history == []

    @pytest.mark.asyncio
    async def test_merge_inside_loop_body_runs_per_item(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("loop", "loop"),
                ("fork", "transform", {"code": "input"}),
                ("double", "transform", {"code": "{'double': input * 2}"}),
                ("square", "transform", {"code": "{'square': input * input}"}),
                ("merge", "merge"),
            ],
            edges=[
                ("start", "loop"),
                ("loop", "fork", "body"),
                ("fork", "double"),
                ("fork", "square"),
                ("double", "merge"),
                ("square", "merge"),
            ],
        )
        engine = WorkflowEngine(workflow)

        result = await asyncio.wait_for(engine.start([1, 2]), 2)

        assert result == [{"double": 2, "square": 1}, {"double": 4, "square": 4}]
        assert node_ids(engine).count("merge") == 2


class TestHumanInput:
    """人工输入暂停与恢复测试"""

    @pytest.fixture
    def approval_workflow(self, build_workflow):
        return build_workflow(
            nodes=[
                ("start", "start"),
                ("approve", "human", {"prompt": "Approve?", "variableName": "approval"}),
                ("format", "transform", {"code": "str(variables['approval']) + '!'"}),
                ("end", "end"),
            ],
            edges=[("start", "approve"), ("approve", "format"), ("format", "end")],
        )

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, approval_workflow, execution_repository):
        engine = WorkflowEngine(approval_workflow, execution_repository=execution_repository)

        run = asyncio.create_task(engine.start("draft"))
        await engine.wait_until_paused()

        state = engine.get_state()
        assert state.status == ExecutionStatus.PAUSED
        assert state.node_statuses["approve"] == NodeStatus.PAUSED
        record = await execution_repository.get(state.execution_id)
        assert record.checkpoint == "paused"

        result = await engine.resume("yes")

        assert result == "yes!"
        assert await run == "yes!"
        assert engine.get_state().status == ExecutionStatus.COMPLETED
        assert node_ids(engine).count("start") == 1
        assert engine.context.get_variable("approval") == "yes"

    @pytest.mark.asyncio
    async def test_resume_merges_dict_into_variables(self, build_workflow):
        workflow = build_workflow(
            nodes=[("start", "start"), ("ask", "human", {"prompt": "Details?"})],
            edges=[("start", "ask")],
        )
        engine = WorkflowEngine(workflow)

        run = asyncio.create_task(engine.start(None))
        await engine.wait_until_paused()
        result = await engine.resume({"approved": True, "reviewer": "sam"})

        assert result == {"approved": True, "reviewer": "sam"}
        assert await run == result
        assert engine.context.get_variable("approved") is True
        assert engine.context.get_variable("human_input") == result

    @pytest.mark.asyncio
    async def test_stop_during_pause(self, approval_workflow, execution_repository):
        engine = WorkflowEngine(approval_workflow, execution_repository=execution_repository)

        run = asyncio.create_task(engine.start("draft"))
        await engine.wait_until_paused()
        await engine.stop()

        with pytest.raises(WorkflowCancelledError):
            await run

        state = engine.get_state()
        assert state.status == ExecutionStatus.IDLE
        assert "format" not in node_ids(engine)
        record = await execution_repository.get(state.execution_id)
        assert record.checkpoint == "stopped"

    @pytest.mark.asyncio
    async def test_resume_requires_paused_state(self, approval_workflow):
        engine = WorkflowEngine(approval_workflow)

        with pytest.raises(StateTransitionError):
            await engine.resume("yes")


class TestLifecycle:
    """执行生命周期测试"""

    @pytest.mark.asyncio
    async def test_second_start_rejected_while_running(self, agent_workflow):
        client = MockModelClient(fragments=["a", "b"], delay=0.05)
        engine = WorkflowEngine(agent_workflow, model_client=client)

        run = asyncio.create_task(engine.start("first"))
        await asyncio.sleep(0.01)

        with pytest.raises(StateTransitionError):
            await engine.start("second")

        assert await run == "ab"

    @pytest.mark.asyncio
    async def test_engine_can_run_again_after_completion(self, agent_workflow, mock_model_client):
        engine = WorkflowEngine(agent_workflow, model_client=mock_model_client)

        await engine.start("one")
        first_id = engine.get_state().execution_id
        await engine.start("two")

        assert engine.get_state().execution_id != first_id
        assert node_ids(engine) == ["start", "agent", "end"]

    @pytest.mark.asyncio
    async def test_stop_while_streaming(self, agent_workflow):
        client = MockModelClient(fragments=["x"] * 100, delay=0.01)
        engine = WorkflowEngine(agent_workflow, model_client=client)

        run = asyncio.create_task(engine.start("go"))
        await asyncio.sleep(0.05)
        await engine.stop()

        with pytest.raises(WorkflowCancelledError):
            await run
        assert engine.get_state().status == ExecutionStatus.IDLE
        assert "end" not in node_ids(engine)

    @pytest.mark.asyncio
    async def test_missing_start_node(self, build_workflow):
        workflow = build_workflow(nodes=[("end", "end")], edges=[])
        engine = WorkflowEngine(workflow)

        with pytest.raises(GraphError) as exc_info:
            await engine.start("x")

        assert "Workflow must have a START node" in exc_info.value.errors
        assert engine.get_state().status == ExecutionStatus.IDLE

    def test_executor_table_must_cover_all_node_types(self, agent_workflow):
        with pytest.raises(WorkflowEngineError):
            WorkflowEngine(agent_workflow, node_executors={NodeType.START: PassthroughNodeExecutor()})

    @pytest.mark.asyncio
    async def test_wait_until_finished(self, agent_workflow, mock_model_client):
        engine = WorkflowEngine(agent_workflow, model_client=mock_model_client)

        run = asyncio.create_task(engine.start("Hi"))
        await asyncio.sleep(0)

        assert await engine.wait_until_finished() == "Hello, world"
        await run


class TestErrorHandling:
    """错误处理测试"""

    @pytest.mark.asyncio
    async def test_model_error_becomes_node_error(self, agent_workflow, execution_repository):
        client = MockModelClient(error=RuntimeError("model down"))
        engine = WorkflowEngine(agent_workflow, model_client=client,
                                execution_repository=execution_repository)

        with pytest.raises(NodeExecutionError) as exc_info:
            await engine.start("Hi")

        error = exc_info.value
        assert error.node_id == "agent"
        assert isinstance(error.cause, RuntimeError)

        state = engine.get_state()
        assert state.status == ExecutionStatus.ERROR
        assert "model down" in state.error
        assert state.node_statuses["agent"] == NodeStatus.ERROR
        assert state.node_statuses["end"] == NodeStatus.IDLE
        assert [entry.node_id for entry in state.history] == ["start", "agent"]
        assert state.history[0].error is None
        assert "model down" in state.history[1].error

        record = await execution_repository.get(state.execution_id)
        assert record.checkpoint == "error"
        assert record.status == "error"

    @pytest.mark.asyncio
    async def test_missing_model_client(self, agent_workflow):
        engine = WorkflowEngine(agent_workflow)

        with pytest.raises(NodeExecutionError, match="No model client configured"):
            await engine.start("Hi")

    @pytest.mark.asyncio
    async def test_unknown_tool(self, build_workflow, tool_registry):
        workflow = build_workflow(
            nodes=[("start", "start"), ("tool", "tool", {"toolId": "missing"}), ("end", "end")],
            edges=[("start", "tool"), ("tool", "end")],
        )
        engine = WorkflowEngine(workflow, tool_registry=tool_registry)

        with pytest.raises(NodeExecutionError, match="Tool not found: missing"):
            await engine.start({})

    @pytest.mark.asyncio
    async def test_transform_expression_error(self, build_workflow):
        workflow = build_workflow(
            nodes=[("start", "start"), ("calc", "transform", {"code": "missing_name + 1"})],
            edges=[("start", "calc")],
        )
        engine = WorkflowEngine(workflow)

        with pytest.raises(NodeExecutionError) as exc_info:
            await engine.start(1)

        assert exc_info.value.node_id == "calc"
        assert engine.history[-1].error is not None


class TestToolNodes:
    """工具节点测试"""

    @pytest.mark.asyncio
    async def test_calculator_tool(self, build_workflow, tool_registry):
        await BuiltinTools.register_all(tool_registry)
        workflow = build_workflow(
            nodes=[("start", "start"), ("calc", "tool", {"toolId": "calculator"}), ("end", "end")],
            edges=[("start", "calc"), ("calc", "end")],
        )
        engine = WorkflowEngine(workflow, tool_registry=tool_registry)

        result = await engine.start({"expression": "2 + 3 * 4"})

        assert result["tool"] == "calculator"
        assert result["tool_name"] == "Calculator"
        assert result["result"] == 14
        assert result["input"] == {"expression": "2 + 3 * 4"}
        assert "executed_at" in result

    @pytest.mark.asyncio
    async def test_static_parameters_merge_with_input(self, build_workflow, tool_registry):
        await BuiltinTools.register_all(tool_registry)
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("upper", "tool", {"toolId": "text_transform", "parameters": {"operation": "uppercase"}}),
            ],
            edges=[("start", "upper")],
        )
        engine = WorkflowEngine(workflow, tool_registry=tool_registry)

        result = await engine.start({"text": "hello"})

        assert result["result"] == "HELLO"

    @pytest.mark.asyncio
    async def test_invalid_parameters_fail_before_tool_runs(self, build_workflow, tool_registry):
        await BuiltinTools.register_all(tool_registry)
        handler = AsyncMock()
        tool = await tool_registry.get_tool("text_transform")
        tool.handler = handler
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("upper", "tool", {"toolId": "text_transform", "parameters": {"operation": "shout"}}),
            ],
            edges=[("start", "upper")],
        )
        engine = WorkflowEngine(workflow, tool_registry=tool_registry)

        with pytest.raises(ToolValidationError) as exc_info:
            await engine.start({"text": "hello"})

        assert any("Invalid value for operation" in e for e in exc_info.value.errors)
        handler.assert_not_called()
        assert engine.get_state().status == ExecutionStatus.ERROR


class TestTransformAndKnowledge:
    """转换与知识检索节点测试"""

    @pytest.mark.asyncio
    async def test_output_mapping(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("map", "transform", {"outputMapping": {
                    "total": "input['a'] + input['b']",
                    "first": "variables['input']['a']",
                }}),
            ],
            edges=[("start", "map")],
        )
        engine = WorkflowEngine(workflow)

        assert await engine.start({"a": 2, "b": 3}) == {"total": 5, "first": 2}

    @pytest.mark.asyncio
    async def test_transform_reads_upstream_outputs(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("first", "transform", {"code": "input + 1"}),
                ("second", "transform", {"code": "outputs['first'] * 10 + outputs['start']"}),
            ],
            edges=[("start", "first"), ("first", "second")],
        )
        engine = WorkflowEngine(workflow)

        assert await engine.start(4) == 54

    @pytest.mark.asyncio
    async def test_knowledge_search(self, build_workflow):
        store = InMemoryKnowledgeStore()
        text = "Refunds are accepted within 30 days of purchase."
        await store.add_document("policy.txt", text, knowledge_base_id="kb1")
        await store.add_document("shipping.txt", "Shipping takes five business days.", knowledge_base_id="kb1")
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("search", "knowledge", {"knowledgeBaseId": "kb1", "topK": 3, "threshold": 0.5}),
            ],
            edges=[("start", "search")],
        )
        engine = WorkflowEngine(workflow, knowledge_store=store)

        result = await engine.start(text)

        assert result["query"] == text
        top = result["results"][0]
        assert top["content"] == text
        assert top["document_name"] == "policy.txt"
        assert top["score"] == pytest.approx(1.0)
        assert set(top) == {"content", "score", "document_id", "document_name", "chunk_id"}

    @pytest.mark.asyncio
    async def test_knowledge_empty_base(self, build_workflow):
        store = InMemoryKnowledgeStore()
        await store.add_document("policy.txt", "Some text", knowledge_base_id="kb1")
        workflow = build_workflow(
            nodes=[("start", "start"), ("search", "knowledge", {"knowledgeBaseId": "other"})],
            edges=[("start", "search")],
        )
        engine = WorkflowEngine(workflow, knowledge_store=store)

        result = await engine.start("anything")

        assert result == {"query": "anything", "results": [], "message": "No documents in knowledge base"}

    @pytest.mark.asyncio
    async def test_knowledge_uses_configured_query(self, build_workflow):
        store = InMemoryKnowledgeStore()
        await store.add_document("faq.txt", "Opening hours are nine to five.")
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("search", "knowledge", {"query": "Opening hours are nine to five.", "threshold": 0.0}),
            ],
            edges=[("start", "search")],
        )
        engine = WorkflowEngine(workflow, knowledge_store=store)

        result = await engine.start({"unused": True})

        assert result["query"] == "Opening hours are nine to five."
        assert len(result["results"]) == 1

    @pytest.mark.asyncio
    async def test_knowledge_uses_store_embedder(self, build_workflow):
        client = MockModelClient(embedding_dimensions=64)
        store = InMemoryKnowledgeStore(embedder=ModelClientEmbedder(client))
        await store.add_document("faq.txt", "Opening hours are nine to five.")
        workflow = build_workflow(
            nodes=[("start", "start"), ("search", "knowledge", {"threshold": 0.9})],
            edges=[("start", "search")],
        )
        engine = WorkflowEngine(workflow, model_client=MockModelClient(), knowledge_store=store)

        result = await engine.start("Opening hours are nine to five.")

        assert result["results"][0]["score"] == pytest.approx(1.0)
        assert client.embedding_requests[-1] == "Opening hours are nine to five."

    @pytest.mark.asyncio
    async def test_knowledge_embeds_missing_chunks_with_model_client(self, build_workflow):
        client = MockModelClient(embedding_dimensions=32)
        store = InMemoryKnowledgeStore()
        document = await store.add_document("faq.txt", "Opening hours are nine to five.")
        workflow = build_workflow(
            nodes=[("start", "start"), ("search", "knowledge", {"threshold": 0.9})],
            edges=[("start", "search")],
        )
        engine = WorkflowEngine(workflow, model_client=client, knowledge_store=store)

        result = await engine.start("Opening hours are nine to five.")

        assert result["results"][0]["score"] == pytest.approx(1.0)
        assert client.embedding_requests == ["Opening hours are nine to five."] * 2
        assert document.chunks[0].embedding is None


class TestNotifications:
    """回调、事件与检查点测试"""

    @pytest.mark.asyncio
    async def test_callbacks_and_events(self, agent_workflow, mock_model_client):
        node_changes = []
        on_state_change = AsyncMock()
        event_bus = EventBus()
        execution_events = []
        node_events = []
        await event_bus.subscribe(EXECUTION_TOPIC, lambda event: execution_events.append(event.payload))
        await event_bus.subscribe(NODE_TOPIC, lambda event: node_events.append(event.payload))

        engine = WorkflowEngine(
            agent_workflow,
            model_client=mock_model_client,
            event_bus=event_bus,
            on_state_change=on_state_change,
            on_node_status_change=lambda node_id, status, error: node_changes.append((node_id, status)),
        )

        await engine.start("Hi")

        assert node_changes == [
            ("start", NodeStatus.RUNNING), ("start", NodeStatus.COMPLETED),
            ("agent", NodeStatus.RUNNING), ("agent", NodeStatus.COMPLETED),
            ("end", NodeStatus.RUNNING), ("end", NodeStatus.COMPLETED),
        ]

        states = [call.args[0].status for call in on_state_change.await_args_list]
        assert states == [ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED]

        assert [event.event_type for event in execution_events] == [
            "workflow_started", "workflow_completed"
        ]
        agent_events = [event.event_type for event in node_events if event.node_id == "agent"]
        assert agent_events == ["node_started", "node_completed"]
        assert all(event.execution_id == engine.state.execution_id for event in node_events)

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_abort_run(self, agent_workflow, mock_model_client):
        def broken_callback(node_id, status, error):
            raise RuntimeError("host bug")

        engine = WorkflowEngine(agent_workflow, model_client=mock_model_client,
                                on_node_status_change=broken_callback)

        assert await engine.start("Hi") == "Hello, world"

    @pytest.mark.asyncio
    async def test_checkpoints(self, agent_workflow, mock_model_client,
                               workflow_repository, execution_repository):
        engine = WorkflowEngine(
            agent_workflow,
            model_client=mock_model_client,
            workflow_repository=workflow_repository,
            execution_repository=execution_repository,
        )

        await engine.start("Hi")

        assert await workflow_repository.get("test-workflow") is agent_workflow
        record = await execution_repository.get(engine.state.execution_id)
        assert record.checkpoint == "completed"
        assert record.status == "completed"
        assert [entry["node_id"] for entry in record.state["history"]] == ["start", "agent", "end"]
        assert record.context["node_outputs"]["agent"] == ["Hello, world"]

    @pytest.mark.asyncio
    async def test_snapshot_is_isolated(self, agent_workflow, mock_model_client):
        engine = WorkflowEngine(agent_workflow, model_client=mock_model_client)
        await engine.start("Hi")

        snapshot = engine.get_state()
        snapshot.history.clear()
        snapshot.node_statuses["agent"] = NodeStatus.ERROR

        assert len(engine.history) == 3
        assert engine.get_state().node_statuses["agent"] == NodeStatus.COMPLETED
