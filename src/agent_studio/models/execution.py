"""
工作流执行模型
"""
import copy
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List
from enum import Enum
from datetime import datetime, timezone
from uuid import uuid4

from ..exceptions import StateTransitionError
from .workflow import NodeStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(Enum):
    """工作流执行状态"""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


# 合法的状态转换
_TRANSITIONS = {
    ExecutionStatus.IDLE: {ExecutionStatus.RUNNING},
    ExecutionStatus.RUNNING: {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.ERROR,
        ExecutionStatus.PAUSED,
        ExecutionStatus.IDLE,
    },
    ExecutionStatus.PAUSED: {ExecutionStatus.RUNNING, ExecutionStatus.IDLE, ExecutionStatus.ERROR},
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.ERROR: set(),
}


@dataclass
class ExecutionContext:
    """执行上下文

    node_outputs 中每个节点对应一个只追加的输出列表，最后一个元素即该节点的输出。
    """
    workflow_id: str
    execution_id: str
    variables: Dict[str, Any] = field(default_factory=dict)
    node_outputs: Dict[str, List[Any]] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_variable(self, key: str, default: Any = None) -> Any:
        """获取变量值"""
        return self.variables.get(key, default)

    def set_variable(self, key: str, value: Any):
        """设置变量值"""
        self.variables[key] = value

    def update_variables(self, values: Dict[str, Any]):
        self.variables.update(values)

    def has_output(self, node_id: str) -> bool:
        return bool(self.node_outputs.get(node_id))

    def get_node_output(self, node_id: str, default: Any = None) -> Any:
        """获取节点最近一次的输出"""
        outputs = self.node_outputs.get(node_id)
        if not outputs:
            return default
        return outputs[-1]

    def get_node_outputs(self, node_id: str) -> List[Any]:
        return list(self.node_outputs.get(node_id, []))

    def set_node_output(self, node_id: str, output: Any):
        """追加节点输出"""
        self.node_outputs.setdefault(node_id, []).append(output)

    def latest_outputs(self) -> Dict[str, Any]:
        """每个节点的最新输出"""
        return {node_id: outputs[-1] for node_id, outputs in self.node_outputs.items() if outputs}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "execution_id": self.execution_id,
            "variables": copy.deepcopy(self.variables),
            "node_outputs": copy.deepcopy(self.node_outputs),
            "metadata": copy.deepcopy(self.metadata),
        }


@dataclass
class HistoryEntry:
    """节点执行记录，每次执行尝试一条"""
    node_id: str
    node_type: str
    input: Any = None
    output: Any = None
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    error: Optional[str] = None

    def finish(self, output: Any = None, error: Optional[str] = None):
        self.output = output
        self.error = error
        self.finished_at = utcnow()
        self.duration_ms = (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type,
            "input": self.input,
            "output": self.output,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass
class ExecutionState:
    """工作流执行状态"""
    execution_id: str = field(default_factory=lambda: str(uuid4()))
    workflow_id: str = ""
    status: ExecutionStatus = ExecutionStatus.IDLE
    current_node_id: Optional[str] = None
    node_statuses: Dict[str, NodeStatus] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    history: List[HistoryEntry] = field(default_factory=list)
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def transition(self, target: ExecutionStatus):
        """执行状态转换"""
        if target not in _TRANSITIONS[self.status]:
            raise StateTransitionError(self.status.value, target.value)
        self.status = target

    def start(self):
        """开始执行"""
        self.transition(ExecutionStatus.RUNNING)
        self.start_time = utcnow()
        self.error = None

    def complete(self):
        """完成执行"""
        self.transition(ExecutionStatus.COMPLETED)
        self.current_node_id = None
        self.end_time = utcnow()

    def fail(self, error_message: str):
        """执行失败"""
        self.transition(ExecutionStatus.ERROR)
        self.error = error_message
        self.end_time = utcnow()

    def pause(self):
        """暂停执行"""
        self.transition(ExecutionStatus.PAUSED)

    def resume(self):
        """恢复执行"""
        self.transition(ExecutionStatus.RUNNING)

    def stop(self):
        """停止执行，回到空闲状态"""
        self.transition(ExecutionStatus.IDLE)
        self.current_node_id = None
        self.end_time = utcnow()

    @property
    def duration(self) -> Optional[float]:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    def is_active(self) -> bool:
        return self.status in (ExecutionStatus.RUNNING, ExecutionStatus.PAUSED)

    def snapshot(self) -> 'ExecutionState':
        """只读快照（深拷贝）"""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "current_node_id": self.current_node_id,
            "node_statuses": {k: v.value for k, v in self.node_statuses.items()},
            "variables": copy.deepcopy(self.variables),
            "history": [entry.to_dict() for entry in self.history],
            "error": self.error,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


class ExecutionEventType(Enum):
    """执行事件类型"""
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"
    WORKFLOW_PAUSED = "workflow_paused"
    WORKFLOW_RESUMED = "workflow_resumed"
    WORKFLOW_CANCELLED = "workflow_cancelled"

    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"
    NODE_SKIPPED = "node_skipped"
    NODE_PAUSED = "node_paused"


@dataclass
class ExecutionEvent:
    """执行事件"""
    id: str = field(default_factory=lambda: str(uuid4()))
    execution_id: str = ""
    node_id: Optional[str] = None
    event_type: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RunRecord:
    """执行检查点记录"""
    execution_id: str
    workflow_id: str
    checkpoint: str
    state: Dict[str, Any] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)
    saved_at: datetime = field(default_factory=utcnow)

    @property
    def status(self) -> str:
        return self.state.get("status", "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "checkpoint": self.checkpoint,
            "state": self.state,
            "context": self.context,
            "saved_at": self.saved_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RunRecord':
        saved_at = data.get("saved_at")
        return cls(
            execution_id=data["execution_id"],
            workflow_id=data.get("workflow_id", ""),
            checkpoint=data.get("checkpoint", ""),
            state=data.get("state", {}),
            context=data.get("context", {}),
            saved_at=datetime.fromisoformat(saved_at) if saved_at else utcnow(),
        )
