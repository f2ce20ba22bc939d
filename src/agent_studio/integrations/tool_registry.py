"""
工具注册表与执行器
"""
from typing import Dict, Any, Optional, List, Callable
from dataclasses import dataclass, field
from abc import ABC, abstractmethod
from enum import Enum
import asyncio
import inspect
import time
import logging

from ..exceptions import ToolValidationError
from .exceptions import ToolNotFoundError, ToolExecutionError
from .validators import SchemaValidator


logger = logging.getLogger(__name__)


class ParameterType(Enum):
    """工具参数类型"""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


@dataclass
class ParameterValidation:
    """参数校验规则"""
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None


@dataclass
class ToolParameter:
    """工具参数定义"""
    name: str
    type: ParameterType
    description: str = ""
    required: bool = False
    default: Any = None
    options: Optional[List[Any]] = None
    validation: Optional[ParameterValidation] = None

    def to_json_schema(self) -> Dict[str, Any]:
        """编译为 JSON Schema 属性定义"""
        schema: Dict[str, Any] = {"type": self.type.value}
        if self.description:
            schema["description"] = self.description
        if self.options:
            schema["enum"] = list(self.options)

        rules = self.validation
        if rules:
            if rules.min_length is not None:
                schema["minLength"] = rules.min_length
            if rules.max_length is not None:
                schema["maxLength"] = rules.max_length
            if rules.pattern is not None:
                schema["pattern"] = rules.pattern
            if rules.min is not None:
                schema["minimum"] = rules.min
            if rules.max is not None:
                schema["maximum"] = rules.max
        return schema


@dataclass
class ToolDefinition:
    """工具定义，timeout 单位为毫秒"""
    tool_id: str
    name: str
    description: str
    parameters: List[ToolParameter] = field(default_factory=list)
    handler: Optional[Callable] = None
    category: str = "custom"
    return_type: ParameterType = ParameterType.OBJECT
    tags: List[str] = field(default_factory=list)
    timeout: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def parameters_schema(self) -> Dict[str, Any]:
        """参数列表对应的 Draft 7 JSON Schema"""
        return {
            "type": "object",
            "properties": {p.name: p.to_json_schema() for p in self.parameters},
            "required": [p.name for p in self.parameters if p.required],
        }

    async def execute(self, params: Dict[str, Any]) -> Any:
        """直接调用工具处理函数（不做校验）"""
        if self.handler is None:
            raise ToolExecutionError(self.tool_id, f"Tool execution not implemented: {self.tool_id}")
        result = self.handler(params)
        if inspect.isawaitable(result):
            return await result
        return result


class ToolExecutor:
    """工具执行器：整理参数、校验、在超时内调用"""

    def __init__(self, validator: Optional[SchemaValidator] = None):
        self.validator = validator or SchemaValidator()

    def prepare_parameters(self, tool: ToolDefinition, params: Dict[str, Any]) -> Dict[str, Any]:
        """去掉空值并填充默认值"""
        prepared = {key: value for key, value in params.items() if value is not None}
        for param in tool.parameters:
            if param.name not in prepared and param.default is not None:
                prepared[param.name] = param.default
        return prepared

    def validate(self, tool: ToolDefinition, params: Dict[str, Any]) -> List[str]:
        return self.validator.validate(params, tool.parameters_schema)

    async def execute(
        self,
        tool: ToolDefinition,
        params: Dict[str, Any],
        timeout_ms: Optional[int] = None
    ) -> Any:
        """
        校验并执行工具

        Raises:
            ToolValidationError: 参数不合法，工具不会被调用
            ToolExecutionError: 工具执行失败或超时
        """
        prepared = self.prepare_parameters(tool, params)
        errors = self.validate(tool, prepared)
        if errors:
            raise ToolValidationError(tool.tool_id, errors)

        timeout_ms = timeout_ms or tool.timeout
        start_time = time.time()

        try:
            if timeout_ms:
                result = await asyncio.wait_for(tool.execute(prepared), timeout_ms / 1000)
            else:
                result = await tool.execute(prepared)
        except asyncio.TimeoutError as e:
            logger.error(f"Tool {tool.tool_id} timed out after {timeout_ms}ms")
            raise ToolExecutionError(
                tool.tool_id, f"Tool {tool.tool_id} timed out after {timeout_ms}ms", e
            ) from e
        except (ToolExecutionError, asyncio.CancelledError):
            raise
        except Exception as e:
            logger.error(f"Tool {tool.tool_id} invocation failed: {e}", exc_info=True)
            raise ToolExecutionError(tool.tool_id, str(e), e) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.info(f"Tool {tool.tool_id} invoked successfully in {duration_ms:.2f}ms")
        return result


class ToolRegistry(ABC):
    """工具注册表接口"""

    @abstractmethod
    async def register_tool(self, tool_def: ToolDefinition, handler: Optional[Callable] = None):
        """注册工具"""
        pass

    @abstractmethod
    async def unregister_tool(self, tool_id: str):
        """注销工具"""
        pass

    @abstractmethod
    async def get_tool(self, tool_id: str) -> Optional[ToolDefinition]:
        """获取工具定义"""
        pass

    @abstractmethod
    async def list_tools(self) -> List[ToolDefinition]:
        """列出所有工具"""
        pass

    @abstractmethod
    async def invoke_tool(
        self,
        tool_id: str,
        parameters: Dict[str, Any],
        timeout_ms: Optional[int] = None
    ) -> Any:
        """调用工具"""
        pass

    @abstractmethod
    async def validate_parameters(
        self,
        tool_id: str,
        parameters: Dict[str, Any]
    ) -> List[str]:
        """验证参数"""
        pass


class LocalToolRegistry(ToolRegistry):
    """本地工具注册表实现"""

    def __init__(self, executor: Optional[ToolExecutor] = None):
        self.tools: Dict[str, ToolDefinition] = {}
        self.executor = executor or ToolExecutor()

    async def register_tool(self, tool_def: ToolDefinition, handler: Optional[Callable] = None):
        """注册工具"""
        if handler is not None:
            tool_def.handler = handler
        if not callable(tool_def.handler):
            raise ValueError(f"Handler for tool {tool_def.tool_id} must be callable")

        self.tools[tool_def.tool_id] = tool_def
        logger.info(f"Registered tool: {tool_def.tool_id}")

    async def unregister_tool(self, tool_id: str):
        """注销工具"""
        if tool_id in self.tools:
            del self.tools[tool_id]
            logger.info(f"Unregistered tool: {tool_id}")

    async def get_tool(self, tool_id: str) -> Optional[ToolDefinition]:
        """获取工具定义"""
        return self.tools.get(tool_id)

    async def list_tools(self) -> List[ToolDefinition]:
        """列出所有工具"""
        return list(self.tools.values())

    async def invoke_tool(
        self,
        tool_id: str,
        parameters: Dict[str, Any],
        timeout_ms: Optional[int] = None
    ) -> Any:
        """调用工具"""
        tool_def = self.tools.get(tool_id)
        if not tool_def:
            raise ToolNotFoundError(tool_id)

        return await self.executor.execute(tool_def, parameters, timeout_ms)

    async def validate_parameters(
        self,
        tool_id: str,
        parameters: Dict[str, Any]
    ) -> List[str]:
        """验证参数"""
        tool_def = self.tools.get(tool_id)
        if not tool_def:
            return [f"Tool not found: {tool_id}"]

        prepared = self.executor.prepare_parameters(tool_def, parameters)
        return self.executor.validate(tool_def, prepared)
