"""
工作流执行引擎
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Callable, Set

from ..config import Settings
from ..models.workflow import Workflow, Node, NodeType, NodeStatus, Edge
from ..models.execution import (
    ExecutionContext, ExecutionState, ExecutionStatus, HistoryEntry,
    ExecutionEvent, ExecutionEventType, RunRecord
)
from ..exceptions import (
    WorkflowEngineError, GraphError, NodeExecutionError,
    WorkflowCancelledError, StateTransitionError
)
from ..integrations.event_bus import EventBus, EXECUTION_TOPIC, NODE_TOPIC
from .executors import NodeExecutor, default_executors


logger = logging.getLogger(__name__)

_NODE_EVENTS = {
    NodeStatus.RUNNING: ExecutionEventType.NODE_STARTED,
    NodeStatus.COMPLETED: ExecutionEventType.NODE_COMPLETED,
    NodeStatus.ERROR: ExecutionEventType.NODE_FAILED,
    NodeStatus.SKIPPED: ExecutionEventType.NODE_SKIPPED,
    NodeStatus.PAUSED: ExecutionEventType.NODE_PAUSED,
}


class _Joined:
    """分支已汇入合并节点，由其他分支继续执行"""

    def __repr__(self):
        return "<joined>"


JOINED = _Joined()
_RUN = object()


@dataclass
class _MergeJoin:
    """合并节点的到达记录"""
    arrived: Set[str] = field(default_factory=set)
    waiters: List[asyncio.Future] = field(default_factory=list)


def check_executor_table(executors: Dict[NodeType, NodeExecutor]):
    """执行器表必须覆盖全部节点类型"""
    missing = [node_type.value for node_type in NodeType if node_type not in executors]
    if missing:
        raise WorkflowEngineError(f"No executor registered for node types: {missing}")


class WorkflowEngine:
    """
    工作流执行引擎

    从开始节点递归执行，多个后继分支并发执行，合并节点等待所有存活的入边。
    一个引擎实例同一时间只运行一次执行。
    """

    def __init__(
        self,
        workflow: Workflow,
        model_client=None,
        tool_registry=None,
        knowledge_store=None,
        embedder=None,
        workflow_repository=None,
        execution_repository=None,
        event_bus: Optional[EventBus] = None,
        on_state_change: Optional[Callable] = None,
        on_node_status_change: Optional[Callable] = None,
        settings: Optional[Settings] = None,
        node_executors: Optional[Dict[NodeType, NodeExecutor]] = None
    ):
        self.workflow = workflow
        self.model_client = model_client
        self.tool_registry = tool_registry
        self.knowledge_store = knowledge_store
        self.embedder = embedder
        self.workflow_repository = workflow_repository
        self.execution_repository = execution_repository
        self.event_bus = event_bus
        self.on_state_change = on_state_change
        self.on_node_status_change = on_node_status_change
        self.settings = settings or Settings()

        self.node_executors = node_executors if node_executors is not None else default_executors()
        check_executor_table(self.node_executors)

        self.state = ExecutionState(workflow_id=workflow.id)
        self._context = ExecutionContext(workflow_id=workflow.id, execution_id=self.state.execution_id)
        self._cancel_event = asyncio.Event()
        self._paused_event = asyncio.Event()
        self._pause_future: Optional[asyncio.Future] = None
        self._finished: Optional[asyncio.Future] = None
        self._dead_edges: Set[str] = set()
        self._joins: Dict[str, _MergeJoin] = {}

    @property
    def context(self) -> ExecutionContext:
        return self._context

    @property
    def history(self) -> List[HistoryEntry]:
        return list(self.state.history)

    def get_state(self) -> ExecutionState:
        """当前执行状态的快照"""
        return self.state.snapshot()

    def check_cancelled(self):
        if self._cancel_event.is_set():
            raise WorkflowCancelledError("Workflow execution was stopped")

    async def start(self, input_data: Any = None) -> Any:
        """
        执行工作流

        Returns:
            终止节点的输出；多个终止分支时为结果列表

        Raises:
            GraphError: 工作流结构非法
            StateTransitionError: 已有执行在进行中
            WorkflowCancelledError: 执行被 stop() 终止
        """
        if self.state.is_active():
            raise StateTransitionError(
                self.state.status.value,
                ExecutionStatus.RUNNING.value,
                "Workflow is already running"
            )

        errors = self.workflow.validate()
        if errors:
            raise GraphError("Workflow validation failed", errors)
        start_node = self.workflow.find_start_nodes()[0]

        self._reset(input_data)
        self.state.start()
        logger.info(f"Starting workflow {self.workflow.name or self.workflow.id} "
                    f"(execution {self.state.execution_id})")

        if self.workflow_repository is not None:
            await self.workflow_repository.save(self.workflow)
        await self._notify_state()
        await self._publish_execution_event(
            ExecutionEventType.WORKFLOW_STARTED, {"input": input_data}
        )

        try:
            output = await self.execute_node(start_node, input_data)
            self.check_cancelled()
        except Exception as e:
            error = e
            if self._cancel_event.is_set() and not isinstance(e, WorkflowCancelledError):
                error = WorkflowCancelledError("Workflow execution was stopped")
            await self._finish_with_error(error)
            if error is e:
                raise
            raise error from e

        self.state.complete()
        logger.info(f"Workflow execution completed: {self.state.execution_id}")
        await self._notify_state()
        await self._publish_execution_event(
            ExecutionEventType.WORKFLOW_COMPLETED, {"duration": self.state.duration}
        )
        await self._checkpoint("completed")
        self._finished.set_result(output)
        return output

    async def _finish_with_error(self, error: Exception):
        if isinstance(error, WorkflowCancelledError):
            logger.info(f"Workflow execution stopped: {self.state.execution_id}")
        else:
            self.state.fail(str(error))
            logger.error(f"Workflow execution failed: {self.state.execution_id}: {error}")
            await self._notify_state()
            await self._publish_execution_event(
                ExecutionEventType.WORKFLOW_FAILED, {"error": str(error)}
            )
            await self._checkpoint("error")

        self._finished.set_exception(error)
        # 标记异常已被读取
        self._finished.exception()

    def _reset(self, input_data: Any):
        self.state = ExecutionState(workflow_id=self.workflow.id)
        self._context = ExecutionContext(
            workflow_id=self.workflow.id,
            execution_id=self.state.execution_id,
            variables={"input": input_data},
        )
        self.state.variables = self._context.variables
        self.state.node_statuses = {node.id: NodeStatus.IDLE for node in self.workflow.nodes}
        self._cancel_event = asyncio.Event()
        self._paused_event = asyncio.Event()
        self._pause_future = None
        self._finished = asyncio.get_running_loop().create_future()
        # 从开始节点不可达的源节点永远不会交付，其出边从一开始就失效
        unreachable = set(self.workflow.find_unreachable_nodes())
        self._dead_edges = {edge.id for edge in self.workflow.edges if edge.source in unreachable}
        self._joins = {}

    async def execute_node(self, node: Node, input_data: Any) -> Any:
        """执行单个节点，然后沿出边继续执行"""
        self.check_cancelled()

        self.state.current_node_id = node.id
        entry = HistoryEntry(node_id=node.id, node_type=node.type.value, input=input_data)
        self.state.history.append(entry)
        await self._set_node_status(node.id, NodeStatus.RUNNING)
        logger.debug(f"Executing node {node.id} ({node.type.value})")

        executor = self.node_executors[node.type]
        try:
            output = await executor.execute(node, input_data, self)
        except WorkflowCancelledError as e:
            entry.finish(error=str(e))
            await self._set_node_status(node.id, NodeStatus.IDLE)
            raise
        except asyncio.CancelledError:
            entry.finish(error="Branch cancelled")
            raise
        except WorkflowEngineError as e:
            await self._node_failed(node, entry, e)
            raise
        except Exception as e:
            error = NodeExecutionError(node.id, str(e), e)
            await self._node_failed(node, entry, error)
            raise error from e

        entry.finish(output=output)
        self._context.set_node_output(node.id, output)
        await self._set_node_status(node.id, NodeStatus.COMPLETED)

        return await self._follow_edges(await self._next_edges(node, output), output)

    async def _node_failed(self, node: Node, entry: HistoryEntry, error: Exception):
        entry.finish(error=str(error))
        logger.error(f"Node {node.id} failed: {error}", exc_info=True)
        await self._set_node_status(node.id, NodeStatus.ERROR, str(error))

    async def _next_edges(self, node: Node, output: Any) -> List[Edge]:
        """计算需要继续执行的出边"""
        if node.type == NodeType.CONDITION:
            result = bool(output.get("condition_result")) if isinstance(output, dict) else bool(output)
            selected = self.workflow.condition_edges(node.id, result)
            if len(selected) != 1:
                path = "true" if result else "false"
                raise GraphError(
                    f"Condition node '{node.id}' must have exactly one '{path}' edge, "
                    f"found {len(selected)}"
                )
            for edge in self.workflow.outgoing_edges(node.id):
                if edge.id != selected[0].id:
                    await self._mark_dead(edge)
            return selected

        if node.type == NodeType.LOOP:
            return self.workflow.loop_exit_edges(node.id)

        return self.workflow.outgoing_edges(node.id)

    async def _follow_edges(self, edges: List[Edge], output: Any) -> Any:
        if not edges:
            return output

        if len(edges) == 1:
            return await self.follow_edge(edges[0], output)

        tasks = [asyncio.create_task(self.follow_edge(edge, output)) for edge in edges]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            if task in done and task.exception() is not None:
                raise task.exception()

        results = [task.result() for task in tasks if task.result() is not JOINED]
        if not results:
            return JOINED
        if len(results) == 1:
            return results[0]
        return results

    async def follow_edge(self, edge: Edge, output: Any) -> Any:
        """沿一条边执行目标节点；合并节点在所有入边到达或失效后执行一次"""
        self._dead_edges.discard(edge.id)
        target = self.workflow.get_node(edge.target)

        if target.type != NodeType.MERGE or len(self.workflow.incoming_edges(target.id)) < 2:
            return await self.execute_node(target, output)

        join = self._joins.setdefault(target.id, _MergeJoin())
        join.arrived.add(edge.id)

        if self._join_ready(target.id):
            self._fire_join(target.id)
            return await self.execute_node(target, output)

        waiter = asyncio.get_running_loop().create_future()
        join.waiters.append(waiter)
        signal = await waiter
        if signal is _RUN:
            return await self.execute_node(target, output)
        return JOINED

    def is_edge_dead(self, edge_id: str) -> bool:
        return edge_id in self._dead_edges

    def _join_ready(self, node_id: str) -> bool:
        join = self._joins.get(node_id)
        if join is None or not join.arrived:
            return False
        return all(
            edge.id in join.arrived or edge.id in self._dead_edges
            for edge in self.workflow.incoming_edges(node_id)
        )

    def _fire_join(self, node_id: str, run_waiter: bool = False):
        """重置到达记录并唤醒等待的分支；run_waiter 时由第一个等待分支执行合并节点"""
        join = self._joins.pop(node_id)
        for index, waiter in enumerate(join.waiters):
            if not waiter.done():
                waiter.set_result(_RUN if run_waiter and index == 0 else JOINED)

    async def _mark_dead(self, edge: Edge):
        """标记失效的边，所有入边都失效的节点被跳过并继续向下传播"""
        self._dead_edges.add(edge.id)
        target_id = edge.target

        if self._join_ready(target_id):
            self._fire_join(target_id, run_waiter=True)
            return

        incoming = self.workflow.incoming_edges(target_id)
        if all(e.id in self._dead_edges for e in incoming):
            await self._set_node_status(target_id, NodeStatus.SKIPPED)
            for downstream in self.workflow.outgoing_edges(target_id):
                await self._mark_dead(downstream)

    async def pause(self, node_id: Optional[str] = None) -> asyncio.Future:
        """
        暂停执行，返回在 resume() 时完成的 Future

        Raises:
            StateTransitionError: 已有一个待处理的人工输入
        """
        if self._pause_future is not None:
            raise StateTransitionError(
                self.state.status.value,
                ExecutionStatus.PAUSED.value,
                "Only one pending human input is allowed per execution"
            )

        self.state.pause()
        self._pause_future = asyncio.get_running_loop().create_future()
        self._pause_future.add_done_callback(self._clear_pause)
        if node_id is not None:
            await self._set_node_status(node_id, NodeStatus.PAUSED)

        logger.info(f"Workflow execution paused: {self.state.execution_id}")
        await self._notify_state()
        await self._publish_execution_event(
            ExecutionEventType.WORKFLOW_PAUSED, {"node_id": node_id}
        )
        await self._checkpoint("paused")
        self._paused_event.set()
        return self._pause_future

    def _clear_pause(self, future: asyncio.Future):
        if self._pause_future is future:
            self._pause_future = None

    async def resume(self, input_data: Any = None, wait: bool = True) -> Any:
        """
        恢复暂停的执行

        字典输入会合并到上下文变量中，并作为人工输入节点的值。

        Returns:
            wait 为 True 时，执行结束则返回最终输出，再次暂停则返回 None

        Raises:
            StateTransitionError: 当前不处于暂停状态
        """
        if self.state.status != ExecutionStatus.PAUSED or self._pause_future is None:
            raise StateTransitionError(self.state.status.value, ExecutionStatus.RUNNING.value)

        if isinstance(input_data, dict):
            self._context.update_variables(input_data)

        self.state.resume()
        self._paused_event.clear()
        logger.info(f"Workflow execution resumed: {self.state.execution_id}")
        await self._notify_state()
        await self._publish_execution_event(ExecutionEventType.WORKFLOW_RESUMED)

        self._pause_future.set_result(input_data)
        if not wait:
            return None
        return await self._wait_for_settle()

    async def _wait_for_settle(self) -> Any:
        paused = asyncio.ensure_future(self._paused_event.wait())
        try:
            await asyncio.wait({paused, self._finished}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            paused.cancel()

        if self._finished.done():
            return self._finished.result()
        return None

    async def stop(self):
        """停止执行，已产生的副作用不会回滚"""
        if not self.state.is_active():
            return

        self._cancel_event.set()
        self.state.stop()
        self._paused_event.clear()
        if self._pause_future is not None and not self._pause_future.done():
            self._pause_future.set_exception(
                WorkflowCancelledError("Workflow stopped while waiting for input")
            )

        logger.info(f"Stopping workflow execution: {self.state.execution_id}")
        await self._notify_state()
        await self._publish_execution_event(ExecutionEventType.WORKFLOW_CANCELLED)
        await self._checkpoint("stopped")

    async def wait_until_paused(self):
        await self._paused_event.wait()

    async def wait_until_finished(self) -> Any:
        """等待执行结束，返回最终输出或抛出执行错误"""
        if self._finished is None:
            raise StateTransitionError(self.state.status.value, ExecutionStatus.COMPLETED.value,
                                       "Workflow has not been started")
        return await asyncio.shield(self._finished)

    async def _set_node_status(self, node_id: str, status: NodeStatus, error: Optional[str] = None):
        self.state.node_statuses[node_id] = status
        await self._notify_node_status(node_id, status, error)

    async def _notify_node_status(self, node_id: str, status: NodeStatus, error: Optional[str] = None):
        if self.on_node_status_change is not None:
            await self._invoke_callback(self.on_node_status_change, node_id, status, error)

        event_type = _NODE_EVENTS.get(status)
        if event_type is not None:
            data = {"status": status.value}
            if error:
                data["error"] = error
            await self._publish_node_event(node_id, event_type, data)

    async def _notify_state(self):
        if self.on_state_change is not None:
            await self._invoke_callback(self.on_state_change, self.get_state())

    async def _invoke_callback(self, callback: Callable, *args):
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error in state callback: {e}", exc_info=True)

    async def _checkpoint(self, name: str):
        """保存执行检查点"""
        if self.execution_repository is None:
            return

        record = RunRecord(
            execution_id=self.state.execution_id,
            workflow_id=self.workflow.id,
            checkpoint=name,
            state=self.state.to_dict(),
            context=self._context.to_dict(),
        )
        await self.execution_repository.save(record)
        logger.debug(f"Saved checkpoint '{name}' for execution {self.state.execution_id}")

    async def _publish_execution_event(
        self,
        event_type: ExecutionEventType,
        data: Dict[str, Any] = None
    ):
        """发布执行事件"""
        if self.event_bus is None:
            return

        event = ExecutionEvent(
            execution_id=self.state.execution_id,
            event_type=event_type.value,
            data=data or {}
        )
        await self.event_bus.publish(EXECUTION_TOPIC, event)

    async def _publish_node_event(
        self,
        node_id: str,
        event_type: ExecutionEventType,
        data: Dict[str, Any] = None
    ):
        """发布节点事件"""
        if self.event_bus is None:
            return

        event = ExecutionEvent(
            execution_id=self.state.execution_id,
            node_id=node_id,
            event_type=event_type.value,
            data=data or {}
        )
        await self.event_bus.publish(NODE_TOPIC, event)
