"""
存储仓库接口定义
"""
import json
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import Optional, List, Dict, Any, Union

import aiofiles

from ..models.workflow import Workflow
from ..models.execution import RunRecord, ExecutionStatus, utcnow
from ..core.parser import WorkflowParser


logger = logging.getLogger(__name__)

_TERMINAL_STATUSES = (
    ExecutionStatus.COMPLETED.value,
    ExecutionStatus.ERROR.value,
    ExecutionStatus.IDLE.value,
)


class WorkflowRepository(ABC):
    """工作流存储仓库接口"""

    @abstractmethod
    async def save(self, workflow: Workflow) -> str:
        """保存工作流"""
        pass

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[Workflow]:
        """获取工作流"""
        pass

    @abstractmethod
    async def get_by_name(self, name: str, version: str = None) -> Optional[Workflow]:
        """根据名称和版本获取工作流"""
        pass

    @abstractmethod
    async def list(self, offset: int = 0, limit: int = 100) -> List[Workflow]:
        """列出工作流"""
        pass

    @abstractmethod
    async def delete(self, workflow_id: str) -> bool:
        """删除工作流"""
        pass


class ExecutionRepository(ABC):
    """执行检查点存储仓库接口，每个执行保留最近一次检查点"""

    @abstractmethod
    async def save(self, record: RunRecord) -> str:
        """保存检查点"""
        pass

    @abstractmethod
    async def get(self, execution_id: str) -> Optional[RunRecord]:
        """获取执行的最近检查点"""
        pass

    @abstractmethod
    async def list_by_workflow(
        self,
        workflow_id: str,
        status: ExecutionStatus = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[RunRecord]:
        """根据工作流ID列出执行记录"""
        pass

    @abstractmethod
    async def list_by_status(
        self,
        status: ExecutionStatus,
        offset: int = 0,
        limit: int = 100
    ) -> List[RunRecord]:
        """根据状态列出执行记录"""
        pass

    @abstractmethod
    async def delete(self, execution_id: str) -> bool:
        """删除执行记录"""
        pass

    async def cleanup_old_executions(self, days: int = 30) -> int:
        """清理已结束且早于 days 天的执行记录"""
        cutoff = utcnow() - timedelta(days=days)
        removed = 0
        for record in await self._all_records():
            if record.saved_at < cutoff and record.status in _TERMINAL_STATUSES:
                if await self.delete(record.execution_id):
                    removed += 1
        return removed

    @abstractmethod
    async def _all_records(self) -> List[RunRecord]:
        pass


def _filter_records(
    records: List[RunRecord],
    workflow_id: Optional[str] = None,
    status: Optional[ExecutionStatus] = None
) -> List[RunRecord]:
    results = []
    for record in records:
        if workflow_id is not None and record.workflow_id != workflow_id:
            continue
        if status is not None and record.status != status.value:
            continue
        results.append(record)
    results.sort(key=lambda record: record.saved_at)
    return results


# 内存实现（用于测试）
class InMemoryWorkflowRepository(WorkflowRepository):
    """内存工作流仓库实现"""

    def __init__(self):
        self.workflows: Dict[str, Workflow] = {}

    async def save(self, workflow: Workflow) -> str:
        self.workflows[workflow.id] = workflow
        return workflow.id

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        return self.workflows.get(workflow_id)

    async def get_by_name(self, name: str, version: str = None) -> Optional[Workflow]:
        for workflow in self.workflows.values():
            if workflow.name == name:
                if version is None or workflow.version == version:
                    return workflow
        return None

    async def list(self, offset: int = 0, limit: int = 100) -> List[Workflow]:
        workflows = list(self.workflows.values())
        return workflows[offset:offset + limit]

    async def delete(self, workflow_id: str) -> bool:
        if workflow_id in self.workflows:
            del self.workflows[workflow_id]
            return True
        return False


class InMemoryExecutionRepository(ExecutionRepository):
    """内存执行仓库实现"""

    def __init__(self):
        self.records: Dict[str, RunRecord] = {}

    async def save(self, record: RunRecord) -> str:
        self.records[record.execution_id] = record
        return record.execution_id

    async def get(self, execution_id: str) -> Optional[RunRecord]:
        return self.records.get(execution_id)

    async def list_by_workflow(
        self,
        workflow_id: str,
        status: ExecutionStatus = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[RunRecord]:
        results = _filter_records(list(self.records.values()), workflow_id, status)
        return results[offset:offset + limit]

    async def list_by_status(
        self,
        status: ExecutionStatus,
        offset: int = 0,
        limit: int = 100
    ) -> List[RunRecord]:
        results = _filter_records(list(self.records.values()), status=status)
        return results[offset:offset + limit]

    async def delete(self, execution_id: str) -> bool:
        if execution_id in self.records:
            del self.records[execution_id]
            return True
        return False

    async def _all_records(self) -> List[RunRecord]:
        return list(self.records.values())


class _JSONFileStore:
    """目录中每个对象一个 JSON 文件"""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        safe_key = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self.directory / f"{safe_key}.json"

    async def write(self, key: str, data: Dict[str, Any]):
        async with aiofiles.open(self.path_for(key), 'w', encoding='utf-8') as f:
            await f.write(json.dumps(data, indent=2, ensure_ascii=False, default=str))

    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        if not path.exists():
            return None
        return await self._read_path(path)

    async def read_all(self) -> List[Dict[str, Any]]:
        return [await self._read_path(path) for path in sorted(self.directory.glob("*.json"))]

    async def _read_path(self, path: Path) -> Dict[str, Any]:
        async with aiofiles.open(path, 'r', encoding='utf-8') as f:
            return json.loads(await f.read())

    def remove(self, key: str) -> bool:
        path = self.path_for(key)
        if path.exists():
            path.unlink()
            return True
        return False


class JSONFileWorkflowRepository(WorkflowRepository):
    """JSON 文件工作流仓库，目录默认为 <storage_path>/workflows"""

    def __init__(self, directory: Union[str, Path], parser: Optional[WorkflowParser] = None):
        self.store = _JSONFileStore(directory)
        self.parser = parser or WorkflowParser()

    async def save(self, workflow: Workflow) -> str:
        await self.store.write(workflow.id, self.parser.to_dict(workflow))
        logger.debug(f"Saved workflow {workflow.id} to {self.store.path_for(workflow.id)}")
        return workflow.id

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        data = await self.store.read(workflow_id)
        return self.parser.parse(data) if data is not None else None

    async def get_by_name(self, name: str, version: str = None) -> Optional[Workflow]:
        for workflow in await self.list(limit=None):
            if workflow.name == name:
                if version is None or workflow.version == version:
                    return workflow
        return None

    async def list(self, offset: int = 0, limit: Optional[int] = 100) -> List[Workflow]:
        workflows = [self.parser.parse(data) for data in await self.store.read_all()]
        end = None if limit is None else offset + limit
        return workflows[offset:end]

    async def delete(self, workflow_id: str) -> bool:
        return self.store.remove(workflow_id)


class JSONFileExecutionRepository(ExecutionRepository):
    """JSON 文件执行仓库，目录默认为 <storage_path>/executions"""

    def __init__(self, directory: Union[str, Path]):
        self.store = _JSONFileStore(directory)

    async def save(self, record: RunRecord) -> str:
        await self.store.write(record.execution_id, record.to_dict())
        return record.execution_id

    async def get(self, execution_id: str) -> Optional[RunRecord]:
        data = await self.store.read(execution_id)
        return RunRecord.from_dict(data) if data is not None else None

    async def list_by_workflow(
        self,
        workflow_id: str,
        status: ExecutionStatus = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[RunRecord]:
        results = _filter_records(await self._all_records(), workflow_id, status)
        return results[offset:offset + limit]

    async def list_by_status(
        self,
        status: ExecutionStatus,
        offset: int = 0,
        limit: int = 100
    ) -> List[RunRecord]:
        results = _filter_records(await self._all_records(), status=status)
        return results[offset:offset + limit]

    async def delete(self, execution_id: str) -> bool:
        return self.store.remove(execution_id)

    async def _all_records(self) -> List[RunRecord]:
        return [RunRecord.from_dict(data) for data in await self.store.read_all()]
