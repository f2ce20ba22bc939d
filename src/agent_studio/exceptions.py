"""
工作流引擎异常定义
"""
from typing import List, Optional


class WorkflowEngineError(Exception):
    """工作流引擎基础异常"""
    pass


class WorkflowParseError(WorkflowEngineError):
    """工作流解析异常"""
    pass


class GraphError(WorkflowEngineError):
    """工作流图结构异常（缺少开始节点、悬空边、条件分支无法解析等）"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        if self.errors:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message)


class WorkflowExecutionError(WorkflowEngineError):
    """工作流执行异常"""
    pass


class NodeExecutionError(WorkflowExecutionError):
    """节点执行异常"""
    def __init__(self, node_id: str, message: str, cause: Exception = None):
        self.node_id = node_id
        self.cause = cause
        self.reason = message
        super().__init__(f"Node '{node_id}' execution failed: {message}")


class WorkflowCancelledError(WorkflowExecutionError):
    """工作流取消异常"""
    pass


class StateTransitionError(WorkflowEngineError):
    """状态转换异常"""
    def __init__(self, current_state: str, target_state: str, message: str = None):
        self.current_state = current_state
        self.target_state = target_state
        msg = f"Invalid state transition from '{current_state}' to '{target_state}'"
        if message:
            msg += f": {message}"
        super().__init__(msg)


class ExpressionError(WorkflowEngineError):
    """沙箱表达式求值异常"""
    def __init__(self, expression: str, message: str):
        self.expression = expression
        super().__init__(f"Failed to evaluate expression '{expression}': {message}")


class ToolValidationError(WorkflowEngineError):
    """工具参数校验异常，在工具执行前抛出"""
    def __init__(self, tool_id: str, errors: List[str]):
        self.tool_id = tool_id
        self.errors = errors
        super().__init__(f"Invalid parameters for tool {tool_id}: {'; '.join(errors)}")
