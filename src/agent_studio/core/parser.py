"""
工作流解析器
"""
import yaml
import json
from datetime import datetime
from typing import Dict, Any, Union
from pathlib import Path

from pydantic import ValidationError

from ..models.workflow import Workflow, Node, Edge, NodeType
from ..exceptions import WorkflowParseError


class WorkflowParser:
    """工作流解析器

    只负责文档到模型的转换，结构校验由 Workflow.validate() 完成。
    """

    def __init__(self):
        self.parsers = {
            'yaml': self._parse_yaml,
            'yml': self._parse_yaml,
            'json': self._parse_json
        }

    def parse(self, source: Union[str, Path, Dict[str, Any]]) -> Workflow:
        """
        解析工作流定义

        Args:
            source: 工作流定义来源，可以是文件路径、字符串或字典

        Returns:
            Workflow: 解析后的工作流对象
        """
        if isinstance(source, dict):
            return self._parse_dict(source)

        if isinstance(source, Path):
            return self.parse_file(source)

        if isinstance(source, str):
            path = Path(source)
            if '\n' not in source and path.suffix.lower().lstrip('.') in self.parsers and path.is_file():
                return self.parse_file(path)
            return self.parse_string(source)

        raise WorkflowParseError(f"Unsupported source type: {type(source)}")

    def parse_file(self, file_path: Union[str, Path]) -> Workflow:
        """解析工作流文件"""
        file_path = Path(file_path)
        suffix = file_path.suffix.lower().lstrip('.')
        if suffix not in self.parsers:
            raise WorkflowParseError(f"Unsupported file format: {suffix}")

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                content = f.read()
        except OSError as e:
            raise WorkflowParseError(f"Failed to read workflow file {file_path}: {e}") from e

        data = self.parsers[suffix](content)
        return self._parse_dict(data)

    def parse_string(self, content: str) -> Workflow:
        """解析工作流字符串（YAML 是 JSON 的超集）"""
        return self._parse_dict(self._parse_yaml(content))

    def _parse_yaml(self, content: str) -> Dict[str, Any]:
        """解析YAML格式"""
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise WorkflowParseError(f"Failed to parse YAML: {e}") from e
        return self._ensure_mapping(data)

    def _parse_json(self, content: str) -> Dict[str, Any]:
        """解析JSON格式"""
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise WorkflowParseError(f"Failed to parse JSON: {e}") from e
        return self._ensure_mapping(data)

    @staticmethod
    def _ensure_mapping(data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise WorkflowParseError(
                f"Workflow document must be a mapping, got {type(data).__name__}"
            )
        return data

    def _parse_dict(self, data: Dict[str, Any]) -> Workflow:
        """解析字典格式的工作流定义"""
        if 'workflow' in data and isinstance(data['workflow'], dict):
            data = data['workflow']

        workflow = Workflow(
            name=data.get('name', ''),
            version=str(data.get('version', '1.0.0')),
            description=data.get('description'),
            metadata=data.get('metadata', {}) or {}
        )
        if data.get('id'):
            workflow.id = str(data['id'])
        for key in ('created_at', 'updated_at'):
            value = data.get(key) or data.get(_camel(key))
            if value:
                setattr(workflow, key, self._parse_datetime(value))

        # 解析节点
        for node_data in data.get('nodes', []) or []:
            workflow.nodes.append(self._parse_node(node_data))

        # 解析边
        for edge_data in data.get('edges', []) or []:
            workflow.edges.append(self._parse_edge(edge_data))

        return workflow

    @staticmethod
    def _parse_datetime(value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(str(value))
        except ValueError as e:
            raise WorkflowParseError(f"Invalid timestamp: {value}") from e

    def _parse_node(self, data: Dict[str, Any]) -> Node:
        """解析节点"""
        if not isinstance(data, dict) or not data.get('id'):
            raise WorkflowParseError(f"Node definition must have an id: {data}")

        try:
            node_type = NodeType(data.get('type'))
        except ValueError as e:
            raise WorkflowParseError(
                f"Unknown node type '{data.get('type')}' for node '{data['id']}'"
            ) from e

        payload = dict(data.get('data') or data.get('config') or {})
        if data.get('label') and not payload.get('label'):
            payload['label'] = data['label']

        try:
            return Node(
                id=str(data['id']),
                type=node_type,
                data=payload,
                position=data.get('position', {}) or {},
                metadata=data.get('metadata', {}) or {}
            )
        except ValidationError as e:
            raise WorkflowParseError(f"Invalid configuration for node '{data['id']}': {e}") from e

    def _parse_edge(self, data: Dict[str, Any]) -> Edge:
        """解析边"""
        if not isinstance(data, dict):
            raise WorkflowParseError(f"Edge definition must be a mapping: {data}")

        source = data.get('source', data.get('from'))
        target = data.get('target', data.get('to'))
        if not source or not target:
            raise WorkflowParseError(f"Edge must have a source and a target: {data}")

        edge = Edge(
            source=str(source),
            target=str(target),
            handle=data.get('sourceHandle', data.get('handle')),
            label=data.get('label'),
            metadata=data.get('metadata', {}) or {}
        )
        if data.get('id'):
            edge.id = str(data['id'])
        return edge

    def to_dict(self, workflow: Workflow) -> Dict[str, Any]:
        """序列化为可持久化的字典（camelCase 配置字段）"""
        return {
            'id': workflow.id,
            'name': workflow.name,
            'version': workflow.version,
            'description': workflow.description,
            'metadata': workflow.metadata,
            'createdAt': workflow.created_at.isoformat(),
            'updatedAt': workflow.updated_at.isoformat(),
            'nodes': [
                {
                    'id': node.id,
                    'type': node.type.value,
                    'position': node.position,
                    'data': node.data.model_dump(by_alias=True, exclude_none=True),
                    **({'metadata': node.metadata} if node.metadata else {}),
                }
                for node in workflow.nodes
            ],
            'edges': [
                {
                    'id': edge.id,
                    'source': edge.source,
                    'target': edge.target,
                    **({'sourceHandle': edge.handle} if edge.handle else {}),
                    **({'label': edge.label} if edge.label else {}),
                    **({'metadata': edge.metadata} if edge.metadata else {}),
                }
                for edge in workflow.edges
            ],
        }

    def to_yaml(self, workflow: Workflow) -> str:
        return yaml.safe_dump(self.to_dict(workflow), sort_keys=False, allow_unicode=True)

    def to_json(self, workflow: Workflow) -> str:
        return json.dumps(self.to_dict(workflow), indent=2, ensure_ascii=False)


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)
